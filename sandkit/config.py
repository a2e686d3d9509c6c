"""
Settings from environment variables.

Usage:
    from sandkit.config import get_settings

    settings = get_settings()
    print(settings.relay_dir, settings.relay_timeout)
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
import os

from sandkit.exceptions import SandkitConfigError


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise SandkitConfigError(
            f"{name} must be a number", details={"value": raw}
        ) from None
    if value <= 0:
        raise SandkitConfigError(f"{name} must be > 0", details={"value": raw})
    return value


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise SandkitConfigError(
            f"{name} must be an integer", details={"value": raw}
        ) from None


class Settings:
    """sandkit configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Command relay
        self.relay_dir: Path = Path(os.getenv("SANDKIT_RELAY_DIR", "/tmp/sandkit-relay"))
        self.lock_dir: Path = Path(os.getenv("SANDKIT_LOCK_DIR", "/tmp/sandkit-lock"))
        self.relay_timeout: float = _float_env("SANDKIT_RELAY_TIMEOUT", "3")

        # Cleanup traps
        self.trap_exit_code: int = _int_env("SANDKIT_TRAP_EXIT_CODE", "2")

        # Plumbing helpers
        self.proc_sys_root: Path = Path(os.getenv("SANDKIT_PROC_SYS", "/proc/sys"))
        self.awk: Optional[str] = os.getenv("SANDKIT_AWK") or None

        self.log_level: str = os.getenv("SANDKIT_LOG_LEVEL", "WARNING").upper()

    @property
    def lock_path(self) -> Path:
        """Advisory lock file serializing relay transactions."""
        return self.lock_dir / "relay"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()
