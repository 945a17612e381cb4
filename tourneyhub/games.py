"""Per-game settings: roster caps, live duration, and game-mode roster minimums."""

from __future__ import annotations

import enum
import os
from datetime import timedelta
from typing import Mapping, Optional


class GameType(str, enum.Enum):
    BGMI = "BGMI"
    COD = "COD"
    FREEFIRE = "FREEFIRE"


class GameMode(str, enum.Enum):
    solo = "Solo"
    duo = "Duo"
    squad = "Squad"


DEFAULT_ROSTER_CAP = 4
DEFAULT_LIVE_DURATION_MINUTES = 120

_MODE_MINIMUM = {
    GameMode.solo: 1,
    GameMode.duo: 2,
    GameMode.squad: 4,
}


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def roster_cap(game_type: str, env: Optional[Mapping[str, str]] = None) -> int:
    """Maximum roster size for ``game_type`` (``ROSTER_CAP_<GAME>`` overrides)."""
    env = os.environ if env is None else env
    return _int_env(env, f"ROSTER_CAP_{str(game_type).upper()}", DEFAULT_ROSTER_CAP)


def live_duration(game_type: str, env: Optional[Mapping[str, str]] = None) -> timedelta:
    """How long a tournament stays live when it has no explicit end time."""
    env = os.environ if env is None else env
    base = _int_env(env, "TOURNAMENT_DURATION_MINUTES", DEFAULT_LIVE_DURATION_MINUTES)
    minutes = _int_env(env, f"TOURNAMENT_DURATION_MINUTES_{str(game_type).upper()}", base)
    return timedelta(minutes=minutes)


def minimum_roster(game_mode: str) -> int:
    try:
        mode = GameMode(str(game_mode).capitalize())
    except ValueError:
        return _MODE_MINIMUM[GameMode.squad]
    return _MODE_MINIMUM[mode]
