"""Whitelist and pattern gate for agent-initiated shell commands.

Validation runs in a fixed order and the first match wins:

1. sandbox disabled: allow everything (trusted environments only);
2. the trimmed command matches a dangerous pattern: reject, naming it;
3. the base command (leading token split on whitespace, ``|``, ``&``, ``;``)
   is not whitelisted: reject, listing the allowed set;
4. otherwise allow.

Only the leading token is checked against the whitelist. A compound command
such as ``ls && <something else>`` passes step 3 whenever ``ls`` is allowed,
so anything not caught by the dangerous patterns in its tail will run. The
gate narrows the blast radius; it is not a shell parser.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from agentloop.safety.sandbox import run_shell_command
from agentloop.util.logging import get_logger, redact

logger = get_logger(__name__)

DANGEROUS_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (
        "recursive root deletion",
        re.compile(
            r"\brm\s+"
            r"(?=(?:-\S+\s+)*?(?:-\w*r\w*|--recursive)\s)"
            r"(?=(?:-\S+\s+)*?(?:-\w*f\w*|--force)\s)"
            r"(?:-\S+\s+)+/\*?(?=$|[\s;&|])",
            re.IGNORECASE,
        ),
    ),
    ("raw block device write", re.compile(r">\s*/dev/(?:sd|hd|nvme|xvd|vd|mmcblk|disk)")),
    ("filesystem formatting", re.compile(r"\bmkfs(?:\.\w+)?\b")),
    ("raw disk imaging", re.compile(r"\bdd\s+(?:[^|;&]*\s)?(?:if|of)=")),
    (
        "network fetch piped to shell",
        re.compile(r"\b(?:curl|wget)\b.*\|\s*(?:sudo\s+)?(?:ba|da|z|k|c|tc)?sh\b"),
    ),
    ("eval/exec construct", re.compile(r"\b(?:eval|exec)\b")),
    ("fork bomb", re.compile(r":\s*\(\s*\)\s*\{.*:\s*\|\s*:\s*&.*\}")),
]

_BASE_COMMAND_SPLIT = re.compile(r"[\s|&;]")


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str | None = None
    pattern: str | None = None


@dataclass
class CommandResult:
    success: bool
    command: str
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    exit_code: int | None = None
    timed_out: bool = False
    blocked: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "command": self.command,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "error": self.error,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "blocked": self.blocked,
        }


def base_command(command: str) -> str:
    return _BASE_COMMAND_SPLIT.split(command.strip(), maxsplit=1)[0]


class SecureCommandGate:
    """Validate shell commands, then run the allowed ones under resource bounds."""

    def __init__(
        self,
        allowed_commands: Iterable[str],
        enabled: bool = True,
        timeout_seconds: float = 30.0,
        max_output_bytes: int = 1024 * 1024,
        cwd: Path | str | None = None,
    ) -> None:
        self._allowed = {item.strip() for item in allowed_commands if item and item.strip()}
        self._lock = threading.Lock()
        self.enabled = enabled
        self.timeout_seconds = timeout_seconds
        self.max_output_bytes = max_output_bytes
        self.cwd = cwd

    def allowed_commands(self) -> list[str]:
        with self._lock:
            return sorted(self._allowed)

    def add_allowed_command(self, command: str) -> None:
        with self._lock:
            self._allowed.add(command.strip())
        logger.info("Added allowed command %s", command)

    def remove_allowed_command(self, command: str) -> None:
        with self._lock:
            self._allowed.discard(command.strip())
        logger.info("Removed allowed command %s", command)

    def validate(self, command: str) -> GateDecision:
        if not self.enabled:
            return GateDecision(allowed=True)
        trimmed = command.strip()
        if not trimmed:
            return GateDecision(allowed=False, reason="Empty command")
        for name, pattern in DANGEROUS_PATTERNS:
            if pattern.search(trimmed):
                return GateDecision(
                    allowed=False,
                    reason=f"Command contains dangerous pattern ({name}): {pattern.pattern}",
                    pattern=name,
                )
        base = base_command(trimmed)
        with self._lock:
            allowed = base in self._allowed
            allowed_list = ", ".join(sorted(self._allowed)) or "(none)"
        if not allowed:
            return GateDecision(
                allowed=False,
                reason=(
                    f"Command '{base}' is not in the allowed list. "
                    f"Allowed commands: {allowed_list}"
                ),
            )
        return GateDecision(allowed=True)

    def execute(self, command: str) -> CommandResult:
        logger.info("Attempting to execute shell command: %s", redact(command))
        decision = self.validate(command)
        if not decision.allowed:
            logger.warning(
                "Shell command blocked by security policy: %s (%s)",
                redact(command),
                decision.reason,
            )
            return CommandResult(
                success=False,
                command=command,
                error=f"Security policy violation: {decision.reason}",
                blocked=True,
            )
        try:
            outcome = run_shell_command(
                command,
                timeout_seconds=self.timeout_seconds,
                max_output_bytes=self.max_output_bytes,
                cwd=self.cwd,
            )
        except OSError as exc:
            logger.error("Shell command could not start: %s", exc)
            return CommandResult(success=False, command=command, error=str(exc))
        if outcome.timed_out:
            logger.warning("Shell command timed out after %ss", self.timeout_seconds)
            return CommandResult(
                success=False,
                command=command,
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                error=f"Command timed out after {self.timeout_seconds:g} seconds",
                exit_code=outcome.exit_code,
                timed_out=True,
            )
        if outcome.truncated:
            error = f"Command output exceeded {self.max_output_bytes} bytes and was stopped"
            logger.warning("Shell command stopped: %s", error)
            return CommandResult(
                success=False,
                command=command,
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                error=error,
                exit_code=outcome.exit_code,
            )
        if outcome.exit_code != 0:
            detail = outcome.stderr.strip().splitlines()[-1] if outcome.stderr.strip() else ""
            error = f"Command failed with exit code {outcome.exit_code}"
            if detail:
                error = f"{error}: {detail}"
            logger.error("Shell command failed: %s", error)
            return CommandResult(
                success=False,
                command=command,
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                error=error,
                exit_code=outcome.exit_code,
            )
        logger.info("Shell command executed successfully")
        return CommandResult(
            success=True,
            command=command,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            exit_code=0,
        )
