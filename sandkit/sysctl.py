"""
Kernel sysctl access under /proc/sys.

tweak_sysctl() is the one most setup code wants: it writes a new value
and pushes a cleanup action that puts the old value back when the
process exits.

    from sandkit.sysctl import tweak_sysctl

    tweak_sysctl("kernel.hung_task_timeout_secs", "0")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from sandkit.config import get_settings
from sandkit.exceptions import SandkitSystemError, SandkitUsageError
from sandkit.trap import TrapStack, get_trap_stack

logger = logging.getLogger(__name__)


def sysctl_path(key: str, root: Optional[Path] = None) -> Path:
    """
    Map a sysctl key to its file.

    Accepts dotted ("vm.swappiness") or slashed ("vm/swappiness") keys.
    """
    parts = key.split("/" if "/" in key else ".")
    if any(part in ("", ".", "..") for part in parts):
        raise SandkitUsageError(
            f"Malformed sysctl key: {key!r}",
            code="invalid_sysctl_key",
            details={"key": key},
        )
    base = root if root is not None else get_settings().proc_sys_root
    return base.joinpath(*parts)


def read_sysctl(key: str, root: Optional[Path] = None) -> str:
    path = sysctl_path(key, root)
    try:
        return path.read_text().strip()
    except OSError as e:
        raise SandkitSystemError(
            f"Cannot read sysctl {key}: {e.strerror}", path=str(path)
        ) from e


def write_sysctl(key: str, value: str, root: Optional[Path] = None) -> str:
    """Write value to the sysctl and return the value it replaced."""
    path = sysctl_path(key, root)
    previous = read_sysctl(key, root)
    try:
        path.write_text(f"{value}\n")
    except OSError as e:
        raise SandkitSystemError(
            f"Cannot write sysctl {key}: {e.strerror}", path=str(path)
        ) from e
    logger.info("sysctl %s: %s -> %s", key, previous, value)
    return previous


def tweak_sysctl(
    key: str,
    value: str,
    stack: Optional[TrapStack] = None,
    root: Optional[Path] = None,
) -> str:
    """
    Write value now and restore the previous value at exit.

    Args:
        key: sysctl key
        value: New value
        stack: Trap stack receiving the restore action
               (default: the process-wide stack)
        root: /proc/sys replacement (default: SANDKIT_PROC_SYS)

    Returns:
        The previous value
    """
    previous = write_sysctl(key, value, root)
    if previous != str(value):

        def restore_sysctl() -> None:
            write_sysctl(key, previous, root)

        (stack or get_trap_stack()).addtrap(restore_sysctl)
    return previous
