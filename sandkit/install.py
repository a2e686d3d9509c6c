"""
Script installation: copy a script into place, filling in placeholders.

Placeholders look like @@NAME@@. Every placeholder in the source must
have a substitution; a leftover one means the installer forgot a value.

Usage:
    install_script(
        "host-bin/enter-env",
        "/usr/local/bin/enter-env",
        {"RELAY_DIR": "/tmp/sandkit-relay"},
    )
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Mapping, Optional, Union

from sandkit.exceptions import SandkitSystemError, SandkitUsageError

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"@@([A-Z0-9_]+)@@")


def render_template(text: str, substitutions: Optional[Mapping[str, str]] = None) -> str:
    """Replace @@NAME@@ placeholders; raise SandkitUsageError on missing ones."""
    values = dict(substitutions or {})
    missing = sorted({m for m in PLACEHOLDER_RE.findall(text) if m not in values})
    if missing:
        raise SandkitUsageError(
            f"Unresolved placeholders: {', '.join(missing)}",
            code="unresolved_placeholder",
            details={"placeholders": missing},
        )
    return PLACEHOLDER_RE.sub(lambda m: str(values[m.group(1)]), text)


def install_script(
    src: Union[str, Path],
    dest: Union[str, Path],
    substitutions: Optional[Mapping[str, str]] = None,
    mode: int = 0o755,
) -> Path:
    """
    Render src into dest and set its mode.

    The file is written to a temporary name in the destination directory
    and renamed over dest, so a reader never sees a half-written script.

    Returns:
        The destination path
    """
    src, dest = Path(src), Path(dest)
    try:
        text = src.read_text()
    except OSError as e:
        raise SandkitSystemError(
            f"Cannot read script {src}: {e.strerror}", path=str(src)
        ) from e

    rendered = render_template(text, substitutions)

    try:
        fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(rendered)
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, dest)
        except BaseException:
            os.unlink(tmp_name)
            raise
    except OSError as e:
        raise SandkitSystemError(
            f"Cannot install {dest}: {e.strerror}", path=str(dest)
        ) from e

    logger.info("Installed %s -> %s", src, dest)
    return dest
