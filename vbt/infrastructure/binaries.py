"""Locating the encoder and probe executables and making them runnable.

Bundled binaries copied out of an archive often lose their execute bit, and
on macOS they may carry the download quarantine attribute. Both are repaired
once per binary before the first batch; if that fails the user gets a
remediation message instead of an opaque spawn error.
"""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional

from vbt.domain.errors import ExecutablePermissionError, LaunchError

logger = logging.getLogger(__name__)


def executable_name(tool: str) -> str:
    return f"{tool}.exe" if os.name == "nt" else tool


def permission_remediation(path: str) -> str:
    return (
        "The transcoder doesn't have permission to run on this system.\n\n"
        f"The {Path(path).name} binary needs execution rights to work.\n\n"
        "How to fix:\n"
        "1. Open your Terminal\n"
        f"2. Run: chmod +x \"{path}\"\n"
        f"3. On macOS also run: xattr -dr com.apple.quarantine \"{path}\"\n\n"
        "Then start the batch again."
    )


def resolve_executable(tool: str, bin_dir: Optional[Path] = None) -> str:
    """Return the path of `tool`, preferring `bin_dir` over PATH.

    Raises LaunchError when neither location has it.
    """
    name = executable_name(tool)
    if bin_dir is not None:
        candidate = Path(bin_dir) / name
        if candidate.exists():
            return str(candidate)
        raise LaunchError(str(candidate), "file not found")

    found = shutil.which(name)
    if found is None:
        raise LaunchError(name, "not found on PATH")
    return found


def ensure_executable(path: str) -> None:
    """Grant execute rights (POSIX) and clear quarantine (macOS) on `path`."""
    if os.name == "nt":
        return

    target = Path(path)
    try:
        mode = target.stat().st_mode
        if not os.access(target, os.X_OK):
            target.chmod(mode | 0o111)
            logger.info(f"BINARY_CHMOD: {target}")
    except FileNotFoundError as exc:
        raise LaunchError(path, "file not found") from exc
    except OSError as exc:
        logger.error(f"Permission initialization failed. Path={path} | {exc}")
        raise ExecutablePermissionError(path, permission_remediation(path)) from exc

    if sys.platform == "darwin":
        # Missing attribute makes xattr exit nonzero; that is fine.
        try:
            subprocess.run(
                ["xattr", "-dr", "com.apple.quarantine", str(target)],
                capture_output=True,
                check=False,
            )
        except OSError as exc:
            logger.warning(f"xattr failed for {path}: {exc}")

    if not os.access(target, os.X_OK):
        raise ExecutablePermissionError(path, permission_remediation(path))
