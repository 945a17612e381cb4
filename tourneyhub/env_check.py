"""Startup check for environment configuration.

Missing values are reported as warnings; the service still starts.
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from tourneyhub.utils import mask_secret

logger = logging.getLogger(__name__)

# Any one name in a group satisfies it.
_EXPECTED = {
    "database": ("DATABASE_URL", "POSTGRES_URL", "PGHOST"),
    "jwt secret": ("JWT_SECRET",),
    "legacy supabase url": ("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    "legacy supabase key": ("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
}


def check_environment(env: Optional[Mapping[str, str]] = None) -> dict[str, bool]:
    """Log which settings are present (masked) and warn about missing ones."""

    env = os.environ if env is None else env
    report: dict[str, bool] = {}
    for label, names in _EXPECTED.items():
        found = next((name for name in names if env.get(name)), None)
        report[label] = found is not None
        if found is None:
            logger.warning("%s is not configured (expected one of: %s)", label, ", ".join(names))
        else:
            logger.info("%s loaded from %s (%s)", label, found, mask_secret(env[found]))
    return report
