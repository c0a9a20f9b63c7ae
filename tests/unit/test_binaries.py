import os
import stat
import pytest
from unittest.mock import patch

from vbt.domain.errors import ExecutablePermissionError, LaunchError
from vbt.infrastructure.binaries import (
    ensure_executable,
    executable_name,
    permission_remediation,
    resolve_executable,
)

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX execute bits")


def test_resolve_prefers_bin_dir(tmp_path):
    binary = tmp_path / executable_name("ffmpeg")
    binary.write_text("#!/bin/sh\n")
    assert resolve_executable("ffmpeg", tmp_path) == str(binary)


def test_resolve_missing_in_bin_dir(tmp_path):
    with pytest.raises(LaunchError, match="file not found"):
        resolve_executable("ffprobe", tmp_path)


def test_resolve_from_path():
    with patch("vbt.infrastructure.binaries.shutil.which", return_value="/usr/bin/ffmpeg"):
        assert resolve_executable("ffmpeg") == "/usr/bin/ffmpeg"


def test_resolve_not_on_path():
    with patch("vbt.infrastructure.binaries.shutil.which", return_value=None):
        with pytest.raises(LaunchError, match="not found on PATH"):
            resolve_executable("ffmpeg")


def test_remediation_names_the_fix():
    text = permission_remediation("/opt/tools/ffmpeg")
    assert 'chmod +x "/opt/tools/ffmpeg"' in text
    assert "com.apple.quarantine" in text


@posix_only
def test_ensure_executable_sets_execute_bit(tmp_path):
    binary = tmp_path / "ffmpeg"
    binary.write_text("#!/bin/sh\nexit 0\n")
    binary.chmod(0o644)

    ensure_executable(str(binary))

    assert binary.stat().st_mode & stat.S_IXUSR
    assert os.access(binary, os.X_OK)


@posix_only
def test_ensure_executable_missing_file(tmp_path):
    with pytest.raises(LaunchError) as exc_info:
        ensure_executable(str(tmp_path / "ffmpeg"))
    assert not isinstance(exc_info.value, ExecutablePermissionError)


@posix_only
def test_ensure_executable_chmod_denied(tmp_path):
    binary = tmp_path / "ffmpeg"
    binary.write_text("#!/bin/sh\n")
    binary.chmod(0o644)

    with patch("pathlib.Path.chmod", side_effect=PermissionError("read-only volume")):
        with pytest.raises(ExecutablePermissionError) as exc_info:
            ensure_executable(str(binary))
    assert "chmod +x" in str(exc_info.value)


@posix_only
def test_ensure_executable_clears_quarantine_on_macos(tmp_path, monkeypatch):
    binary = tmp_path / "ffmpeg"
    binary.write_text("#!/bin/sh\n")
    binary.chmod(0o755)
    monkeypatch.setattr("vbt.infrastructure.binaries.sys.platform", "darwin")

    with patch("vbt.infrastructure.binaries.subprocess.run") as mock_run:
        ensure_executable(str(binary))

    assert mock_run.call_args.args[0] == ["xattr", "-dr", "com.apple.quarantine", str(binary)]
