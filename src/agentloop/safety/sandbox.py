"""Subprocess helpers for running agent-requested shell commands."""

from __future__ import annotations

import functools
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable

_TRUNCATED_MARKER = "\n[output truncated]"
_READ_CHUNK = 64 * 1024


@dataclass
class SandboxCommandResult:
    stdout: str
    stderr: str
    exit_code: int | None
    timed_out: bool = False
    truncated: bool = False


class _PipeCollector(threading.Thread):
    """Drain one pipe into memory, stopping at ``limit`` bytes."""

    def __init__(self, stream: IO[bytes], limit: int, on_overflow: Callable[[], None]) -> None:
        super().__init__(daemon=True)
        self._stream = stream
        self._limit = limit
        self._on_overflow = on_overflow
        self.data = bytearray()
        self.truncated = False

    def run(self) -> None:
        try:
            while True:
                chunk = self._stream.read1(_READ_CHUNK)
                if not chunk:
                    return
                room = self._limit - len(self.data)
                if len(chunk) > room:
                    self.data.extend(chunk[: max(room, 0)])
                    self.truncated = True
                    self._on_overflow()
                    return
                self.data.extend(chunk)
        finally:
            self._stream.close()

    def text(self) -> str:
        decoded = bytes(self.data).decode("utf-8", errors="replace")
        return decoded + _TRUNCATED_MARKER if self.truncated else decoded


def run_shell_command(
    command: str,
    timeout_seconds: float,
    max_output_bytes: int,
    cwd: Path | str | None = None,
    env: dict[str, str] | None = None,
) -> SandboxCommandResult:
    """Run ``command`` through the shell with a hard timeout and an output cap.

    The child gets its own process group. Pipes are read incrementally and the
    whole group is killed on timeout or as soon as either stream passes
    ``max_output_bytes``. Output captured before the kill is returned.
    """
    safe_env = sanitize_env(env if env is not None else os.environ.copy())
    process = subprocess.Popen(
        command,
        shell=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
        env=safe_env,
        start_new_session=os.name == "posix",
    )
    kill = functools.partial(_kill_process_group, process)
    collectors = [
        _PipeCollector(process.stdout, max_output_bytes, kill),
        _PipeCollector(process.stderr, max_output_bytes, kill),
    ]
    for collector in collectors:
        collector.start()

    deadline = time.monotonic() + timeout_seconds
    timed_out = False
    try:
        process.wait(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        timed_out = True
        kill()
        process.wait()
    for collector in collectors:
        collector.join(timeout=max(deadline - time.monotonic(), 0.1))
        if collector.is_alive():
            # a background descendant still holds the pipe open
            kill()
            collector.join()

    stdout, stderr = collectors
    return SandboxCommandResult(
        stdout=stdout.text(),
        stderr=stderr.text(),
        exit_code=process.returncode,
        timed_out=timed_out,
        truncated=stdout.truncated or stderr.truncated,
    )


def _kill_process_group(process: subprocess.Popen) -> None:
    if os.name == "posix":
        try:
            os.killpg(process.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except PermissionError:
            pass
    try:
        process.kill()
    except ProcessLookupError:
        pass


def sanitize_env(env: dict[str, str]) -> dict[str, str]:
    """Return a sanitized environment for sandboxed subprocesses."""
    allowlist = {"PATH", "HOME", "TMPDIR", "USER", "LANG", "LC_ALL", "SHELL", "PYTHONPATH"}
    allowlist.update(_parse_passthrough_env())
    return {
        key: value
        for key, value in env.items()
        if key in allowlist and not _is_sensitive_key(key)
    }


def _parse_passthrough_env() -> set[str]:
    raw = os.environ.get("SANDBOX_PASSTHROUGH_ENV", "")
    return {item.strip() for item in raw.split(",") if item.strip()}


def _is_sensitive_key(key: str) -> bool:
    upper = key.upper()
    return upper.startswith(("OPENAI_", "ANTHROPIC_", "API_KEY", "TOKEN", "SECRET"))
