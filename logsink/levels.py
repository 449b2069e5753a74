LEVEL_RANKS = {
    "debug": 10,
    "info": 20,
    "warn": 30,
    "error": 40,
}

DEFAULT_LEVEL = "info"

_ALIASES = {
    "warning": "warn",
    "log": "info",
    "notice": "info",
    "trace": "debug",
    "fatal": "error",
    "critical": "error",
    "err": "error",
}


def canonical_level(level) -> str:
    """Map a sender-supplied level onto debug/info/warn/error."""
    if not isinstance(level, str):
        return DEFAULT_LEVEL
    key = level.strip().lower()
    key = _ALIASES.get(key, key)
    return key if key in LEVEL_RANKS else DEFAULT_LEVEL


def level_to_rank(level) -> int:
    return LEVEL_RANKS[canonical_level(level)]
