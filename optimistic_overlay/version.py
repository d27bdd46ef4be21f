"""Version identifier and dev-build detection."""
from __future__ import annotations

import os
import re
from typing import Mapping, Optional

from .settings import coerce_bool_token

__all__ = ["__version__", "is_dev_build", "DEV_MODE_ENV_VAR"]

__version__ = "0.3.0.dev0"
DEV_MODE_ENV_VAR = "OPTIMISTIC_OVERLAY_DEV_MODE"

# Matches PEP 440 ".devN" segments as well as "-dev" style suffixes.
_DEV_SEGMENT = re.compile(r"(?:^|[.\-+_])dev\d*(?=$|[.\-+_])")


def is_dev_build(version: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> bool:
    """Return True when developer-only behaviour (verbose logging) should be on.

    ``OPTIMISTIC_OVERLAY_DEV_MODE`` wins over the version string when it holds a
    recognisable boolean.
    """

    env = os.environ if environ is None else environ
    override = coerce_bool_token(env.get(DEV_MODE_ENV_VAR))
    if override is not None:
        return override
    identifier = (version or __version__ or "").strip().lower()
    if not identifier:
        return False
    return _DEV_SEGMENT.search(identifier) is not None
