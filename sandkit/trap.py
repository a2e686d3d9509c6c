"""
Cleanup-trap stack: teardown actions that run exactly once on exit.

A bootstrap script accumulates cleanup duties as it goes (unmount this,
restore that sysctl, remove a temp dir). The trap stack keeps them as one
composed sequence and runs it when the process ends, however it ends:

- SIGINT, SIGHUP, SIGTERM: run the actions, then exit with the sentinel
  code (default 2)
- normal interpreter exit: run the actions, keep the natural exit status
  unless an action fails, in which case the process exits with 1

The handler marks itself fired before running anything. A signal that
arrives while the actions run is swallowed, so the sequence neither
starts again nor gets cut short; the original handlers come back once
it finishes.

Usage:
    from sandkit.trap import addtrap, undotrap

    addtrap(lambda: shutil.rmtree(tmpdir))
    addtrap("umount /mnt/stage")     # runs first, then the rmtree
    ...
    undotrap()                       # drop the umount again

addtrap/undotrap remember a single saved level. Code that nests deeper
should use trap_scope(), which keeps its own saved state:

    with trap_scope(release_loop_device):
        build_image()

Signal handlers can only be installed from the main thread.
"""

from __future__ import annotations

import atexit
import logging
import os
import signal
import subprocess
import sys
import threading
import traceback
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Dict, Iterator, Optional, Tuple, Union

from sandkit.config import get_settings

logger = logging.getLogger(__name__)

# A cleanup action: a no-argument callable or a shell command string
TrapAction = Union[Callable[[], Any], str]

TRAP_SIGNALS: Tuple[signal.Signals, ...] = (
    signal.SIGINT,
    signal.SIGHUP,
    signal.SIGTERM,
)


def describe_action(action: TrapAction) -> str:
    """Printable form of an action, as it appears in a composed trap."""
    if isinstance(action, str):
        return action
    return getattr(action, "__qualname__", None) or repr(action)


def run_action(action: TrapAction) -> None:
    """Run one action. Failures propagate to the caller."""
    if isinstance(action, str):
        subprocess.run(["sh", "-c", action], check=True)
    else:
        action()


class TrapStack:
    """
    Process-wide composed cleanup action with one level of save/restore.

    Attributes:
        current: Actions installed as the active handler, in run order
        previous: Actions saved by the last addtrap(), restored by undotrap()
    """

    def __init__(
        self,
        exit_code: int = 2,
        signals: Tuple[signal.Signals, ...] = TRAP_SIGNALS,
    ) -> None:
        """
        Args:
            exit_code: Status used when a signal triggered the cleanup
            signals: Signals routed to the cleanup handler
        """
        self.exit_code = exit_code
        self.current: Tuple[TrapAction, ...] = ()
        self.previous: Tuple[TrapAction, ...] = ()
        self._signals = signals
        self._fired = False
        self._original_handlers: Dict[int, Any] = {}
        self._exit_hook_registered = False

    @property
    def fired(self) -> bool:
        """True once the installed actions have started running."""
        return self._fired

    def describe(self) -> str:
        """Installed actions joined the way a shell trap string would read."""
        return "; ".join(describe_action(a) for a in self.current)

    def settrap(self, *actions: TrapAction) -> None:
        """
        Install actions as the cleanup handler for signals and normal exit.

        The most recent call wins. Installing re-arms a handler that has
        already fired.
        """
        self.current = tuple(actions)
        self._fired = False
        for sig in self._signals:
            previous = signal.signal(sig, self._handle_signal)
            self._original_handlers.setdefault(sig, previous)
        if not self._exit_hook_registered:
            atexit.register(self._handle_exit)
            self._exit_hook_registered = True
        logger.debug("Trap set: %s", self.describe())

    def addtrap(self, action: TrapAction) -> None:
        """Save the installed actions and install action in front of them."""
        self.previous = self.current
        self.settrap(action, *self.current)

    def undotrap(self) -> None:
        """Reinstall the actions saved by the last addtrap()."""
        self.settrap(*self.previous)

    @contextmanager
    def trap_scope(self, action: TrapAction) -> Iterator[None]:
        """
        addtrap() for the duration of a block.

        On exit the exact state from before the block is restored,
        including the saved slot, so scopes nest to any depth. If the
        cleanup fired inside the block nothing is reinstalled.
        """
        saved_current, saved_previous = self.current, self.previous
        self.addtrap(action)
        try:
            yield
        finally:
            if not self._fired:
                self.settrap(*saved_current)
                self.previous = saved_previous

    def fire(self) -> bool:
        """
        Run the installed actions unless they already ran.

        Returns:
            True if this call ran the actions, False if already fired
        """
        if self._fired:
            return False
        self._fired = True
        logger.debug("Running trap: %s", self.describe())
        try:
            for action in self.current:
                run_action(action)
        finally:
            self._restore_handlers()
        return True

    def uninstall(self) -> None:
        """Put back the original signal handlers and drop the exit hook."""
        self._restore_handlers()
        self._original_handlers.clear()
        if self._exit_hook_registered:
            atexit.unregister(self._handle_exit)
            self._exit_hook_registered = False
        self.current = ()
        self.previous = ()

    def _restore_handlers(self) -> None:
        for sig, handler in self._original_handlers.items():
            # Handlers installed outside Python come back as None
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)

    def _handle_signal(self, signum: int, frame: Any) -> None:
        if not self.fire():
            return
        logger.info(
            "Cleanup ran after %s, exiting with %d",
            signal.Signals(signum).name,
            self.exit_code,
        )
        sys.exit(self.exit_code)

    def _handle_exit(self) -> None:
        # atexit ignores exceptions from its callbacks, so a failed cleanup
        # has to end the process itself to show up in the exit status.
        try:
            self.fire()
        except Exception as e:
            logger.error("Cleanup failed during exit: %s", e)
            traceback.print_exc()
            sys.stdout.flush()
            sys.stderr.flush()
            os._exit(1)


# Global trap stack (lazy init)
_global_stack: Optional[TrapStack] = None
_global_lock = threading.Lock()


def get_trap_stack() -> TrapStack:
    """
    Get or create the process-wide trap stack.

    The sentinel exit code comes from SANDKIT_TRAP_EXIT_CODE.
    """
    global _global_stack
    with _global_lock:
        if _global_stack is None:
            _global_stack = TrapStack(exit_code=get_settings().trap_exit_code)
        return _global_stack


def reset_trap_stack() -> None:
    """
    Uninstall and forget the process-wide trap stack.

    Used for testing.
    """
    global _global_stack
    with _global_lock:
        if _global_stack is not None:
            _global_stack.uninstall()
            _global_stack = None


def settrap(*actions: TrapAction) -> None:
    get_trap_stack().settrap(*actions)


def addtrap(action: TrapAction) -> None:
    get_trap_stack().addtrap(action)


def undotrap() -> None:
    get_trap_stack().undotrap()


def trap_scope(action: TrapAction) -> ContextManager[None]:
    return get_trap_stack().trap_scope(action)
