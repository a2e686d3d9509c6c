"""Environment name validation."""

from __future__ import annotations

from sandkit.exceptions import SandkitUsageError

MAX_NAME_LENGTH = 64


def validate_name(name: str) -> bool:
    """
    Check whether name is usable as an environment (chroot) name.

    A valid name is a single path component: non-empty, at most
    MAX_NAME_LENGTH characters, no slash, no leading dot, and no
    whitespace or control characters.
    """
    if not name or len(name) > MAX_NAME_LENGTH:
        return False
    if "/" in name or name.startswith("."):
        return False
    return all(ch.isprintable() and not ch.isspace() for ch in name)


def require_valid_name(name: str) -> str:
    """Return name unchanged, or raise SandkitUsageError if it is invalid."""
    if not validate_name(name):
        raise SandkitUsageError(
            f"Invalid environment name: {name!r}",
            code="invalid_name",
            details={"name": name},
        )
    return name
