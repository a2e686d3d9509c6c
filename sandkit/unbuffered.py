"""
Line-buffered awk.

mawk buffers its output when writing to a pipe, which stalls any
pipeline that expects results line by line. It flushes per line only
with `-W interactive`. Other awks are run unchanged.

Usage:
    for line in run_awk('{ print $2 }', ["a b", "c d"]):
        print(line)
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
from typing import Iterable, Iterator, List, Optional

from sandkit.config import get_settings

logger = logging.getLogger(__name__)


def find_awk() -> str:
    """Return the awk to run: SANDKIT_AWK, else the awk on PATH."""
    configured = get_settings().awk
    if configured:
        return configured
    found = shutil.which("awk") or shutil.which("mawk")
    if found is None:
        raise FileNotFoundError("awk not found on PATH")
    return found


def _is_mawk(executable: str) -> bool:
    return os.path.basename(os.path.realpath(executable)).startswith("mawk")


def awk_command(program: str, *args: str, awk: Optional[str] = None) -> List[str]:
    """Build the argv for an awk that flushes after every output line."""
    executable = awk or find_awk()
    argv = [executable]
    if _is_mawk(executable):
        argv += ["-W", "interactive"]
    return argv + [program, *args]


def run_awk(
    program: str,
    lines: Iterable[str] = (),
    *args: str,
    awk: Optional[str] = None,
) -> Iterator[str]:
    """
    Feed lines to awk and yield its output lines as they appear.

    Input is written from a background thread so long inputs cannot
    deadlock against a full output pipe.

    Raises:
        subprocess.CalledProcessError: If awk exits non-zero
    """
    argv = awk_command(program, *args, awk=awk)
    logger.debug("Running %s", argv)
    proc = subprocess.Popen(
        argv,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        text=True,
        bufsize=1,
    )

    def feed() -> None:
        try:
            for line in lines:
                proc.stdin.write(line if line.endswith("\n") else line + "\n")
        except BrokenPipeError:
            pass
        finally:
            try:
                proc.stdin.close()
            except BrokenPipeError:
                pass

    feeder = threading.Thread(target=feed, daemon=True)
    feeder.start()
    try:
        for out in proc.stdout:
            yield out.rstrip("\n")
    finally:
        proc.stdout.close()
        returncode = proc.wait()
        feeder.join()
    if returncode != 0:
        raise subprocess.CalledProcessError(returncode, argv)
