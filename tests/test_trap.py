"""
Tests for the cleanup-trap stack.

These tests verify:
1. Composition: addtrap prepends, undotrap restores the single saved level
2. Exactly-once: the handler never runs twice, even when re-entered
3. Exit paths: signals exit with the sentinel code, normal exit keeps its own
4. Handler bookkeeping: installation and restoration of signal handlers

End-to-end behaviour runs in a subprocess so real signals and interpreter
exit can be observed.
"""
from __future__ import annotations

import os
import signal
import subprocess
import sys
import textwrap
from pathlib import Path
from typing import List

import pytest

from sandkit.trap import (
    TrapStack,
    addtrap,
    get_trap_stack,
    reset_trap_stack,
    trap_scope,
    undotrap,
)

PROJECT_ROOT = Path(__file__).parent.parent


@pytest.fixture
def stack():
    trap_stack = TrapStack(exit_code=2)
    yield trap_stack
    trap_stack.uninstall()


def _recorder(calls: List[str], tag: str):
    def record() -> None:
        calls.append(tag)

    record.__qualname__ = tag
    return record


# =============================================================================
# Composition
# =============================================================================

class TestTrapComposition:
    """addtrap / undotrap / trap_scope bookkeeping."""

    def test_addtrap_runs_newest_first(self, stack):
        """Most recently pushed action runs first, then the earlier ones."""
        calls: List[str] = []
        stack.addtrap(_recorder(calls, "first"))
        stack.addtrap(_recorder(calls, "second"))

        assert stack.fire() is True
        assert calls == ["second", "first"]

    def test_undotrap_restores_previous(self, stack):
        calls: List[str] = []
        stack.addtrap(_recorder(calls, "outer"))
        stack.addtrap(_recorder(calls, "inner"))
        stack.undotrap()

        stack.fire()
        assert calls == ["outer"]

    def test_single_saved_level(self, stack):
        """Only one level is remembered: a second undotrap changes nothing."""
        stack.addtrap("a")
        stack.addtrap("b")
        stack.addtrap("c")

        stack.undotrap()
        assert stack.current == ("b", "a")
        stack.undotrap()
        assert stack.current == ("b", "a")

    def test_settrap_replaces(self, stack):
        stack.addtrap("old")
        stack.settrap("new")
        assert stack.current == ("new",)

    def test_describe_joins_actions(self, stack):
        calls: List[str] = []
        stack.addtrap("rm -rf /tmp/stage")
        stack.addtrap(_recorder(calls, "unmount"))
        assert stack.describe() == "unmount; rm -rf /tmp/stage"

    def test_trap_scope_nests(self, stack):
        """Scopes keep their own saved state, so any depth unwinds exactly."""
        stack.addtrap("base")
        with stack.trap_scope("one"):
            with stack.trap_scope("two"):
                with stack.trap_scope("three"):
                    assert stack.current == ("three", "two", "one", "base")
                assert stack.current == ("two", "one", "base")
            assert stack.current == ("one", "base")
        assert stack.current == ("base",)

    def test_trap_scope_restores_on_error(self, stack):
        stack.addtrap("base")
        with pytest.raises(RuntimeError):
            with stack.trap_scope("scoped"):
                raise RuntimeError("boom")
        assert stack.current == ("base",)

    def test_trap_scope_after_fire_does_not_rearm(self, stack):
        calls: List[str] = []
        with stack.trap_scope(_recorder(calls, "scoped")):
            stack.fire()
        assert stack.fired
        assert stack.fire() is False
        assert calls == ["scoped"]


# =============================================================================
# Exactly-once execution
# =============================================================================

class TestTrapFiring:
    """The composed action runs once per terminating event."""

    def test_fire_only_once(self, stack):
        calls: List[str] = []
        stack.addtrap(_recorder(calls, "cleanup"))

        assert stack.fire() is True
        assert stack.fire() is False
        assert calls == ["cleanup"]

    def test_signal_exits_with_sentinel(self, stack):
        calls: List[str] = []
        stack.addtrap(_recorder(calls, "cleanup"))

        with pytest.raises(SystemExit) as exc_info:
            stack._handle_signal(signal.SIGTERM, None)

        assert exc_info.value.code == 2
        assert calls == ["cleanup"]

    def test_exit_hook_after_signal_is_noop(self, stack):
        calls: List[str] = []
        stack.addtrap(_recorder(calls, "cleanup"))

        with pytest.raises(SystemExit):
            stack._handle_signal(signal.SIGINT, None)
        stack._handle_exit()

        assert calls == ["cleanup"]

    def test_reentrant_signal_is_ignored(self, stack):
        """A signal arriving while the actions run neither restarts nor aborts them."""
        calls: List[str] = []

        def interrupted() -> None:
            calls.append("before")
            stack._handle_signal(signal.SIGINT, None)
            calls.append("after")

        stack.addtrap(interrupted)
        stack._handle_exit()

        assert calls == ["before", "after"]

    def test_settrap_rearms(self, stack):
        calls: List[str] = []
        stack.settrap(_recorder(calls, "one"))
        stack.fire()
        stack.settrap(_recorder(calls, "two"))
        stack.fire()
        assert calls == ["one", "two"]

    def test_shell_action(self, stack, tmp_path):
        marker = tmp_path / "marker"
        stack.addtrap(f"echo cleaned >> {marker}")
        stack.fire()
        assert marker.read_text() == "cleaned\n"

    def test_failing_action_propagates(self, stack):
        calls: List[str] = []

        def broken() -> None:
            raise RuntimeError("cleanup failed")

        stack.addtrap(_recorder(calls, "later"))
        stack.addtrap(broken)

        with pytest.raises(RuntimeError, match="cleanup failed"):
            stack.fire()
        assert calls == []

    def test_failing_shell_action_propagates(self, stack):
        stack.addtrap("exit 3")
        with pytest.raises(subprocess.CalledProcessError) as exc_info:
            stack.fire()
        assert exc_info.value.returncode == 3


# =============================================================================
# Signal handler bookkeeping
# =============================================================================

class TestTrapHandlers:
    """Handlers are installed, disabled after firing, and restorable."""

    def test_settrap_installs_handlers(self, stack):
        stack.settrap("true")
        for sig in (signal.SIGINT, signal.SIGHUP, signal.SIGTERM):
            assert signal.getsignal(sig) == stack._handle_signal

    def test_handlers_restored_after_fire(self, stack):
        original = signal.getsignal(signal.SIGTERM)
        stack.settrap("true")
        stack.fire()
        assert signal.getsignal(signal.SIGTERM) == original

    def test_uninstall_restores_handlers(self):
        original = signal.getsignal(signal.SIGINT)
        trap_stack = TrapStack()
        trap_stack.addtrap("true")
        trap_stack.addtrap("true")
        trap_stack.uninstall()

        assert signal.getsignal(signal.SIGINT) == original
        assert trap_stack.current == ()


# =============================================================================
# Process-wide stack
# =============================================================================

class TestGlobalTrapStack:
    """Module-level functions act on one shared stack."""

    def test_singleton(self):
        assert get_trap_stack() is get_trap_stack()

    def test_module_functions(self):
        addtrap("outer")
        addtrap("inner")
        assert get_trap_stack().current == ("inner", "outer")
        undotrap()
        assert get_trap_stack().current == ("outer",)
        with trap_scope("scoped"):
            assert get_trap_stack().current == ("scoped", "outer")
        assert get_trap_stack().current == ("outer",)

    def test_exit_code_from_settings(self, monkeypatch):
        monkeypatch.setenv("SANDKIT_TRAP_EXIT_CODE", "5")
        reset_trap_stack()
        assert get_trap_stack().exit_code == 5


# =============================================================================
# End-to-end (subprocess)
# =============================================================================

_SCRIPT = textwrap.dedent(
    """
    import os, signal, sys, time
    from sandkit.trap import addtrap

    out, mode = sys.argv[1], sys.argv[2]

    def mark(tag):
        def record():
            with open(out, "a") as f:
                f.write(tag + "\\n")
            if mode == "double" and tag == "second":
                os.kill(os.getpid(), signal.SIGTERM)
                time.sleep(0.1)
        return record

    addtrap(mark("first"))
    addtrap(mark("second"))
    if mode == "fail":
        addtrap("exit 3")

    if mode in ("signal", "double"):
        os.kill(os.getpid(), signal.SIGTERM)
        time.sleep(5)
    sys.exit(0 if mode == "fail" else 7)
    """
)


def _run_script(tmp_path: Path, mode: str) -> subprocess.CompletedProcess:
    env = dict(os.environ)
    env["PYTHONPATH"] = str(PROJECT_ROOT)
    env.pop("SANDKIT_TRAP_EXIT_CODE", None)
    return subprocess.run(
        [sys.executable, "-c", _SCRIPT, str(tmp_path / "out"), mode],
        env=env,
        capture_output=True,
        text=True,
        timeout=30,
    )


class TestTrapEndToEnd:
    """Real signals and interpreter exit in a child process."""

    def test_signal_runs_cleanup_and_exits_2(self, tmp_path):
        proc = _run_script(tmp_path, "signal")
        assert proc.returncode == 2, proc.stderr
        assert (tmp_path / "out").read_text() == "second\nfirst\n"

    def test_normal_exit_keeps_status(self, tmp_path):
        proc = _run_script(tmp_path, "exit")
        assert proc.returncode == 7, proc.stderr
        assert (tmp_path / "out").read_text() == "second\nfirst\n"

    def test_signal_during_cleanup_runs_once(self, tmp_path):
        proc = _run_script(tmp_path, "double")
        assert proc.returncode == 2, proc.stderr
        assert (tmp_path / "out").read_text() == "second\nfirst\n"

    def test_failing_cleanup_on_normal_exit_fails_process(self, tmp_path):
        proc = _run_script(tmp_path, "fail")
        assert proc.returncode == 1
        assert "CalledProcessError" in proc.stderr
        assert not (tmp_path / "out").exists()
