"""
sandkit - Helpers for bootstrapping and managing sandboxed Linux environments.

Cleanup traps (run once on exit, interrupt or termination):
    from sandkit import addtrap, undotrap

    addtrap("umount /mnt/stage")
    ...
    undotrap()

Command relay to an external agent over named pipes:
    from sandkit import send, request

    reply = send("notify done\\n")    # "E..." on transport failure
    result = request("status\\n")     # tagged RelayResult

Plumbing:
    from sandkit.names import validate_name
    from sandkit.releases import release_ge
    from sandkit.sysctl import tweak_sysctl
    from sandkit.install import install_script
    from sandkit.unbuffered import run_awk
"""

# =============================================================================
# Cleanup traps
# =============================================================================
from sandkit.trap import (  # noqa: F401
    TrapStack,
    addtrap,
    get_trap_stack,
    reset_trap_stack,
    settrap,
    trap_scope,
    undotrap,
)

# =============================================================================
# Command relay
# =============================================================================
from sandkit.relay import (  # noqa: F401
    ERROR_MARKER,
    CommandRelay,
    RelayResult,
    ResultKind,
    request,
    send,
)

# =============================================================================
# Errors and configuration
# =============================================================================
from sandkit.exceptions import (  # noqa: F401
    SandkitConfigError,
    SandkitError,
    SandkitSystemError,
    SandkitUsageError,
    fail,
)
from sandkit.config import Settings, get_settings, reset_settings  # noqa: F401

__all__ = [
    "TrapStack",
    "addtrap",
    "get_trap_stack",
    "reset_trap_stack",
    "settrap",
    "trap_scope",
    "undotrap",
    "ERROR_MARKER",
    "CommandRelay",
    "RelayResult",
    "ResultKind",
    "request",
    "send",
    "SandkitConfigError",
    "SandkitError",
    "SandkitSystemError",
    "SandkitUsageError",
    "fail",
    "Settings",
    "get_settings",
    "reset_settings",
]
