"""
Command relay over a pair of named pipes.

Lets a process inside the sandbox ask an external agent to do something
and wait for the answer. The agent owns a directory holding two FIFOs:

    <relay_dir>/in     requests, written by us, read by the agent
    <relay_dir>/out    responses, written by the agent, read by us

Protocol:
    1. take an exclusive flock on the lock file
    2. write the payload to `in` and close it (EOF ends the request)
    3. read `out` until EOF; that is the response
    4. release the lock

One write, one read, no framing: the lock is what keeps concurrent
callers from reading each other's responses. One deadline (3 seconds by
default) bounds the whole transaction, lock wait included.

Transport problems never raise. A missing pipe pair, an I/O error or an
expired deadline comes back as a response starting with
ERROR_MARKER followed by a diagnostic, the same convention the agent uses
for its own errors. Callers that want to branch without parsing use
request(), which returns a tagged RelayResult.

Usage:
    from sandkit.relay import ERROR_MARKER, request, send

    reply = send("notify Build finished\\n")
    if reply.startswith(ERROR_MARKER):
        ...

    result = request("status\\n")
    if result.ok:
        print(result.payload)
"""

from __future__ import annotations

import errno
import fcntl
import logging
import os
import select
import stat
import time
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from sandkit.config import get_settings

logger = logging.getLogger(__name__)

ERROR_MARKER = "E"
REQUEST_PIPE = "in"
RESPONSE_PIPE = "out"

DEFAULT_TIMEOUT_SECONDS = 3.0

# How often to retry a contended lock or an agent that has not opened its end
_POLL_INTERVAL = 0.02
_READ_CHUNK = 65536


class RelayState(str, Enum):
    """Where a relay call is, or where it ended."""

    IDLE = "idle"
    CHECKING_TRANSPORT = "checking_transport"
    FAILED = "failed"
    ACQUIRING_LOCK = "acquiring_lock"
    WRITING = "writing"
    READING = "reading"
    RETURNED = "returned"
    TIMED_OUT = "timed_out"


class ResultKind(str, Enum):
    """Origin of a relay response."""

    REPLY = "reply"
    AGENT_ERROR = "agent_error"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"


class RelayResult(BaseModel):
    """
    Tagged outcome of one relay call.

    REPLY and AGENT_ERROR come from the agent; TRANSPORT and TIMEOUT are
    produced locally. payload holds the reply text, or the diagnostic
    without the error marker.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ResultKind
    payload: str

    @property
    def ok(self) -> bool:
        return self.kind == ResultKind.REPLY

    @classmethod
    def from_wire(cls, text: str) -> "RelayResult":
        """Classify a raw agent response."""
        if text.startswith(ERROR_MARKER):
            return cls(kind=ResultKind.AGENT_ERROR, payload=text[len(ERROR_MARKER):])
        return cls(kind=ResultKind.REPLY, payload=text)

    def to_wire(self) -> str:
        """Render the response string callers of send() receive."""
        if self.ok:
            return self.payload
        return ERROR_MARKER + self.payload


class _RelayTimeout(Exception):
    """Deadline expired; the message says what we were waiting for."""


class CommandRelay:
    """
    Synchronous request/response over the relay pipe pair.

    Thread-safe across processes and threads: each call opens its own
    lock descriptor, so flock serializes every transaction.

    Example:
        relay = CommandRelay(relay_dir="/tmp/sandkit-relay", timeout=1.5)
        relay.send("ping\\n")
    """

    def __init__(
        self,
        relay_dir: Optional[Union[str, Path]] = None,
        lock_path: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Args:
            relay_dir: Directory holding the `in`/`out` FIFOs
                       (default: SANDKIT_RELAY_DIR)
            lock_path: Advisory lock file (default: SANDKIT_LOCK_DIR/relay)
            timeout: Seconds allowed for one whole transaction
                     (default: SANDKIT_RELAY_TIMEOUT)
        """
        settings = get_settings()
        self.relay_dir = Path(relay_dir) if relay_dir is not None else settings.relay_dir
        self.lock_path = Path(lock_path) if lock_path is not None else settings.lock_path
        self.timeout = settings.relay_timeout if timeout is None else float(timeout)
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.state = RelayState.IDLE

    @property
    def request_pipe(self) -> Path:
        return self.relay_dir / REQUEST_PIPE

    @property
    def response_pipe(self) -> Path:
        return self.relay_dir / RESPONSE_PIPE

    def check_transport(self) -> Optional[str]:
        """
        Verify the directory and both FIFOs exist.

        Returns:
            None when usable, otherwise a diagnostic naming the bad path
        """
        if not self.relay_dir.is_dir():
            return f"relay directory {self.relay_dir} does not exist"
        for pipe in (self.request_pipe, self.response_pipe):
            try:
                mode = os.stat(pipe).st_mode
            except FileNotFoundError:
                return f"relay pipe {pipe} does not exist"
            except OSError as e:
                return f"relay pipe {pipe} is not accessible: {e.strerror}"
            if not stat.S_ISFIFO(mode):
                return f"relay pipe {pipe} is not a named pipe"
        return None

    def send(self, payload: str) -> str:
        """Send payload and return the agent's response, or ERROR_MARKER + diagnostic."""
        return self.request(payload).to_wire()

    def request(self, payload: str) -> RelayResult:
        """
        Run one locked write/read transaction.

        Args:
            payload: Request text, written verbatim

        Returns:
            RelayResult; never raises for transport problems
        """
        self._transition(RelayState.CHECKING_TRANSPORT)
        problem = self.check_transport()
        if problem is not None:
            self._transition(RelayState.FAILED)
            logger.warning("Relay unavailable: %s", problem)
            return RelayResult(
                kind=ResultKind.TRANSPORT,
                payload=f"Unable to reach the relay agent: {problem}",
            )

        try:
            data = payload.encode("utf-8")
        except UnicodeEncodeError as e:
            self._transition(RelayState.FAILED)
            logger.warning("Relay payload not encodable: %s", e)
            return RelayResult(
                kind=ResultKind.TRANSPORT,
                payload=f"Relay payload is not valid UTF-8 text: {e}",
            )

        deadline = time.monotonic() + self.timeout
        try:
            with self._locked(deadline):
                self._transition(RelayState.WRITING)
                self._write_request(data, deadline)
                self._transition(RelayState.READING)
                raw = self._read_response(deadline)
        except _RelayTimeout as e:
            self._transition(RelayState.TIMED_OUT)
            logger.warning("Relay timed out after %gs %s", self.timeout, e)
            return RelayResult(
                kind=ResultKind.TIMEOUT,
                payload=f"Relay agent did not answer within {self.timeout:g}s ({e})",
            )
        except OSError as e:
            self._transition(RelayState.FAILED)
            logger.warning("Relay I/O failed: %s", e)
            return RelayResult(
                kind=ResultKind.TRANSPORT,
                payload=f"Relay I/O failed: {e}",
            )

        self._transition(RelayState.RETURNED)
        return RelayResult.from_wire(raw.decode("utf-8", errors="replace"))

    def _transition(self, state: RelayState) -> None:
        self.state = state
        logger.debug("Relay %s: %s", state.value, self.relay_dir)

    @contextmanager
    def _locked(self, deadline: float) -> Iterator[None]:
        """Hold an exclusive flock on the lock file, waiting until deadline."""
        self._transition(RelayState.ACQUIRING_LOCK)
        # Same semantics as a shell `>>` redirection: create if missing, never truncate
        fd = os.open(self.lock_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o666)
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise _RelayTimeout(f"waiting for lock {self.lock_path}")
                    time.sleep(_POLL_INTERVAL)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def _write_request(self, data: bytes, deadline: float) -> None:
        fd = self._open_request_pipe(deadline)
        try:
            view = memoryview(data)
            while view:
                _wait_ready(fd, deadline, write=True, what=f"agent to drain {self.request_pipe}")
                try:
                    written = os.write(fd, view)
                except BlockingIOError:
                    continue
                view = view[written:]
        finally:
            os.close(fd)

    def _open_request_pipe(self, deadline: float) -> int:
        # Non-blocking open fails with ENXIO until the agent has the read end open
        while True:
            try:
                return os.open(self.request_pipe, os.O_WRONLY | os.O_NONBLOCK)
            except OSError as e:
                if e.errno != errno.ENXIO:
                    raise
            if time.monotonic() >= deadline:
                raise _RelayTimeout(f"waiting for agent to open {self.request_pipe}")
            time.sleep(_POLL_INTERVAL)

    def _read_response(self, deadline: float) -> bytes:
        # Linux does not report hangup on a non-blocking FIFO reader until a
        # writer has connected, so select() waits for the agent to show up.
        fd = os.open(self.response_pipe, os.O_RDONLY | os.O_NONBLOCK)
        chunks: List[bytes] = []
        try:
            while True:
                _wait_ready(fd, deadline, write=False, what=f"response on {self.response_pipe}")
                try:
                    chunk = os.read(fd, _READ_CHUNK)
                except BlockingIOError:
                    continue
                if not chunk:
                    break
                chunks.append(chunk)
        finally:
            os.close(fd)
        return b"".join(chunks)


def _wait_ready(fd: int, deadline: float, *, write: bool, what: str) -> None:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise _RelayTimeout(f"waiting for {what}")
    if write:
        _, ready, _ = select.select([], [fd], [], remaining)
    else:
        ready, _, _ = select.select([fd], [], [], remaining)
    if not ready:
        raise _RelayTimeout(f"waiting for {what}")


def send(payload: str) -> str:
    """Relay payload using the configured pipe pair; see CommandRelay.send."""
    return CommandRelay().send(payload)


def request(payload: str) -> RelayResult:
    """Relay payload using the configured pipe pair; see CommandRelay.request."""
    return CommandRelay().request(payload)
