from __future__ import annotations

SYSTEM_ACTOR = "System"


def resolve_actor(value: str | None, default: str = SYSTEM_ACTOR) -> str:
    if value is None:
        return default
    stripped = value.strip()
    return stripped or default


def optional_actor(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
