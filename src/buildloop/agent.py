"""Subprocess wrapper around the AI agent CLI."""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Exit codes reported when the process could not produce one itself
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


@dataclass
class AgentResult:
    """Output of one agent invocation."""

    output: str
    exit_code: int
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


def is_cursor_agent(agent_cmd: str) -> bool:
    """Check if the command is a cursor-style agent."""
    cmd = agent_cmd.lower()
    return "cursor-agent" in cmd or ("cursor" in cmd and "claude" not in cmd)


def build_agent_command(agent_cmd: str, prompt: str) -> list[str]:
    """Build the argv for an agent invocation.

    cursor-style agents take ``--print --force <prompt>``; others take
    ``--permission-mode acceptEdits -p <prompt>``.
    """
    base = shlex.split(agent_cmd)
    if is_cursor_agent(agent_cmd):
        return [*base, "--print", "--force", prompt]
    return [*base, "--permission-mode", "acceptEdits", "-p", prompt]


def _decode(stream: str | bytes | None) -> str:
    if isinstance(stream, bytes):
        return stream.decode(errors="replace")
    return stream or ""


def _combine(stdout: str, stderr: str) -> str:
    output = stdout.strip()
    if stderr.strip():
        output = f"{output}\n{stderr.strip()}" if output else stderr.strip()
    return output


def run_agent(
    agent_cmd: str,
    prompt: str,
    timeout: int | None = None,
    cwd: Path | None = None,
) -> AgentResult:
    """Run the agent to completion and capture its output.

    Args:
        agent_cmd: Agent executable, optionally with leading arguments.
        prompt: Prompt text passed on the command line.
        timeout: Seconds before the agent is killed (None or 0 = no limit).
        cwd: Working directory for the agent.

    Returns:
        AgentResult with stdout and stderr combined. A missing executable
        reports exit code 127, a timeout exit code 124.
    """
    args = build_agent_command(agent_cmd, prompt)
    logger.debug("Running agent: %s (prompt: %d chars)", args[0], len(prompt))

    start_time = time.time()
    try:
        result = subprocess.run(
            args,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout or None,
        )
    except FileNotFoundError:
        logger.error("Agent command not found: %s", args[0])
        return AgentResult(
            output=f"error: agent command not found: {args[0]}",
            exit_code=EXIT_NOT_FOUND,
            duration_seconds=time.time() - start_time,
        )
    except subprocess.TimeoutExpired as e:
        logger.warning("Agent timed out after %ss", timeout)
        partial = _combine(_decode(e.stdout), _decode(e.stderr))
        message = f"Agent execution timed out after {timeout}s"
        return AgentResult(
            output=f"{partial}\n{message}" if partial else message,
            exit_code=EXIT_TIMEOUT,
            duration_seconds=time.time() - start_time,
            timed_out=True,
        )

    duration = time.time() - start_time
    logger.debug("Agent exited with %d after %.1fs", result.returncode, duration)
    return AgentResult(
        output=_combine(result.stdout, result.stderr),
        exit_code=result.returncode,
        duration_seconds=duration,
    )
