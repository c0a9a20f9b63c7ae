"""Lifecycle of the one external encoder subprocess a batch runs at a time."""

import logging
import os
import signal
import subprocess
import threading
from typing import Iterator, List, Optional, Protocol

import psutil

from vbt.domain.errors import ExecutablePermissionError, ExecutionFailure, LaunchError
from vbt.infrastructure.binaries import permission_remediation


class ProcessSuspender(Protocol):
    def suspend(self, pid: int) -> None: ...

    def resume(self, pid: int) -> None: ...


class NativeSuspender:
    """Suspend through the OS process handle (NtSuspendProcess on Windows)."""

    def suspend(self, pid: int) -> None:
        psutil.Process(pid).suspend()

    def resume(self, pid: int) -> None:
        psutil.Process(pid).resume()


class SignalSuspender:
    """SIGSTOP / SIGCONT for platforms without a native suspend primitive."""

    def suspend(self, pid: int) -> None:
        os.kill(pid, signal.SIGSTOP)

    def resume(self, pid: int) -> None:
        os.kill(pid, signal.SIGCONT)


def default_suspender() -> ProcessSuspender:
    if os.name == "nt":
        return NativeSuspender()
    return SignalSuspender()


class ProcessSupervisor:
    """Starts, streams, suspends, kills and reaps a single subprocess.

    The handle is owned by this instance. `kill()`, `suspend()` and `resume()`
    may be called from another thread (keyboard listener) while the owning
    thread is blocked in `read_output()`.
    """

    def __init__(self, suspender: Optional[ProcessSuspender] = None):
        self.suspender = suspender or default_suspender()
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._executable: Optional[str] = None
        self._kill_requested = False
        self._suspended = False

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._process is not None and self._process.poll() is None

    @property
    def is_suspended(self) -> bool:
        return self._suspended

    def start(self, executable: str, args: List[str]) -> subprocess.Popen:
        cmd = [executable, *args]
        self.logger.debug(f"PROCESS_CMD: {' '.join(cmd)}")
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except PermissionError as exc:
            raise ExecutablePermissionError(executable, permission_remediation(executable)) from exc
        except FileNotFoundError as exc:
            raise LaunchError(executable, "file not found") from exc
        except OSError as exc:
            raise LaunchError(executable, str(exc)) from exc

        with self._lock:
            self._process = process
            self._executable = executable
            self._kill_requested = False
            self._suspended = False
        self.logger.debug(f"PROCESS_START: pid={process.pid}")
        return process

    def read_output(self) -> Iterator[str]:
        """Yield diagnostic lines until the process closes stderr.

        Text mode translates ffmpeg's carriage-return progress updates into
        separate lines.
        """
        with self._lock:
            process = self._process
        if process is None or process.stderr is None:
            return
        for line in process.stderr:
            yield line.rstrip("\n")

    def suspend(self) -> None:
        with self._lock:
            process = self._process
            if process is None or process.poll() is not None or self._suspended:
                return
            try:
                self.suspender.suspend(process.pid)
                self._suspended = True
                self.logger.info(f"PROCESS_SUSPEND: pid={process.pid}")
            except (psutil.NoSuchProcess, ProcessLookupError):
                pass

    def resume(self) -> None:
        with self._lock:
            process = self._process
            if process is None or process.poll() is not None or not self._suspended:
                return
            try:
                self.suspender.resume(process.pid)
                self.logger.info(f"PROCESS_RESUME: pid={process.pid}")
            except (psutil.NoSuchProcess, ProcessLookupError):
                pass
            self._suspended = False

    def kill(self) -> None:
        """Forcefully kill the process tree. Racing a natural exit is not an error."""
        with self._lock:
            process = self._process
            if process is None:
                return
            self._kill_requested = True

        try:
            parent = psutil.Process(process.pid)
            children = parent.children(recursive=True)
        except psutil.NoSuchProcess:
            children = []
        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
        try:
            process.kill()
        except ProcessLookupError:
            pass
        self.logger.info(f"PROCESS_KILL: pid={process.pid}")

    def wait(self) -> int:
        """Reap the process and return its exit code.

        Raises ExecutionFailure for a nonzero exit that was not caused by
        `kill()` or a signal.
        """
        with self._lock:
            process = self._process
            executable = self._executable
        if process is None:
            return 0

        code = process.wait()
        with self._lock:
            killed = self._kill_requested
            self._process = None
            self._kill_requested = False
            self._suspended = False

        if code != 0 and code >= 0 and not killed:
            raise ExecutionFailure(code, executable)
        return code
