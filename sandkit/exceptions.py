"""
Typed exceptions for sandkit.

Provides structured error handling with:
- SandkitError: Base exception for all sandkit errors
- SandkitConfigError: Invalid settings values
- SandkitUsageError: Precondition violations by the calling script
- SandkitSystemError: OS-level failures in plumbing helpers

Usage and system errors carry an exit_code so command-line callers can
terminate through fail() with a meaningful status.

The command relay never raises for transport problems; see sandkit.relay.
"""

from __future__ import annotations

import sys
from typing import Any, Dict, NoReturn, Optional


class SandkitError(Exception):
    """Base exception for all sandkit errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or CLI output."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class SandkitConfigError(SandkitError):
    """Configuration error.

    Raised when an environment variable holds a value that cannot be
    parsed or is out of range.

    Examples:
        SandkitConfigError("SANDKIT_RELAY_TIMEOUT must be > 0",
                           details={"value": "-1"})
    """

    pass


class _ExitCodeError(SandkitError):
    """Error that maps onto a process exit status."""

    default_exit_code = 1

    def __init__(
        self,
        message: str,
        *,
        exit_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.exit_code = self.default_exit_code if exit_code is None else exit_code
        details = dict(details or {})
        details["exit_code"] = self.exit_code
        super().__init__(message, code=code, details=details)


class SandkitUsageError(_ExitCodeError):
    """Precondition violated by the calling script.

    Raised when:
    - An environment name is invalid
    - A release name is unknown
    - A sysctl key is malformed
    - A script template leaves placeholders unresolved

    These indicate a bug in the caller, not a runtime condition.
    """

    default_exit_code = 2


class SandkitSystemError(_ExitCodeError):
    """OS-level failure in a plumbing helper.

    Raised when:
    - A sysctl cannot be read or written
    - A script cannot be installed at its destination

    Attributes:
        path: Filesystem path involved, if any
    """

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        exit_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        if path:
            details["path"] = path
        self.path = path
        super().__init__(message, exit_code=exit_code, code=code, details=details)


def fail(exit_code: int, *message: object) -> NoReturn:
    """Report a message on stderr and terminate with exit_code."""
    print(" ".join(str(part) for part in message), file=sys.stderr)
    raise SystemExit(exit_code)


__all__ = [
    "SandkitError",
    "SandkitConfigError",
    "SandkitUsageError",
    "SandkitSystemError",
    "fail",
]
