"""OpenClaw gateway lifecycle control through the ``openclaw gateway`` CLI.

The gateway is an external process.  Its state is never cached: every
call asks the CLI (``openclaw gateway status``) and parses the
``Runtime: <word>`` line of its report.

:class:`GatewayStatusController` never raises to its caller.  Spawn
failures, timeouts and unparseable output all become
``GatewayState(status="error", last_error=...)``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

logger = logging.getLogger("openclaw_desktop.gateway")

GATEWAY_STATUSES = frozenset({"running", "stopped", "starting", "stopping", "error"})

_RUNTIME_PATTERN = re.compile(r"^Runtime:\s*(\w+)", re.MULTILINE)
_PARSEABLE = frozenset({"running", "stopped", "starting", "stopping"})

DEFAULT_GATEWAY_COMMAND: tuple[str, ...] = ("openclaw", "gateway")
DEFAULT_GATEWAY_TIMEOUT = 60.0
# Output beyond this is discarded before parsing.
_MAX_OUTPUT_BYTES = 5 * 1024 * 1024

GatewayRunner = Callable[[Sequence[str]], Awaitable[str]]


class GatewayCommandError(Exception):
    """The gateway CLI could not be run, timed out, or exited non-zero."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


@dataclass
class GatewayState:
    status: str
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        result: dict = {"status": self.status}
        if self.last_error is not None:
            result["lastError"] = {"message": self.last_error}
        return result


def parse_gateway_status(output: str) -> GatewayState:
    """Map CLI output to a :class:`GatewayState`.

    Only the first ``Runtime:`` line counts.  Anything other than
    running/stopped/starting/stopping is a recoverable ``error``.
    """
    match = _RUNTIME_PATTERN.search(output)
    raw = match.group(1).lower() if match else ""
    if raw in _PARSEABLE:
        return GatewayState(status=raw)
    return GatewayState(
        status="error",
        last_error=(
            "Unable to parse gateway status from CLI output "
            f"(Runtime: {raw or 'missing'})"
        ),
    )


class GatewayCliRunner:
    """Runs ``<command> <subcommand>`` and returns stdout + stderr.

    Args:
        command: Base command, ``("openclaw", "gateway")`` by default.
        timeout: Seconds before the child is killed.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_GATEWAY_COMMAND,
        timeout: float = DEFAULT_GATEWAY_TIMEOUT,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self._command = list(command)
        self._timeout = timeout

    async def __call__(self, args: Sequence[str]) -> str:
        argv = [*self._command, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise GatewayCommandError(
                f"Failed to run {' '.join(argv)}: {e}"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise GatewayCommandError(
                f"{' '.join(argv)} timed out after {self._timeout:g}s"
            ) from None

        output = "\n".join(
            part.decode("utf-8", errors="replace")
            for part in (stdout[:_MAX_OUTPUT_BYTES], stderr[:_MAX_OUTPUT_BYTES])
        ).strip()

        if proc.returncode != 0:
            raise GatewayCommandError(
                f"{' '.join(argv)} exited with code {proc.returncode}",
                output=output,
            )
        return output


class GatewayStatusController:
    """Status queries and gated start/stop/restart.

    * ``start()`` is a no-op when the gateway is running or starting.
    * ``stop()`` is a no-op when it is stopped or stopping.
    * ``restart()`` of a stopped gateway is ``start()``.

    Args:
        runner: Async callable taking the subcommand argv and returning
            the CLI output.  Defaults to :class:`GatewayCliRunner`.
    """

    def __init__(self, runner: Optional[GatewayRunner] = None) -> None:
        self._run = runner if runner is not None else GatewayCliRunner()

    async def _invoke(self, subcommand: str) -> Optional[GatewayState]:
        """Run a lifecycle subcommand; an error state on failure, else ``None``."""
        try:
            await self._run([subcommand])
        except Exception as e:
            logger.warning("Gateway %s failed: %s", subcommand, e)
            return GatewayState(status="error", last_error=str(e))
        return None

    async def status(self) -> GatewayState:
        try:
            output = await self._run(["status"])
        except Exception as e:
            logger.warning("Gateway status query failed: %s", e)
            return GatewayState(status="error", last_error=str(e))
        return parse_gateway_status(output)

    async def start(self) -> GatewayState:
        current = await self.status()
        if current.status in ("running", "starting"):
            return current
        failed = await self._invoke("start")
        return failed if failed is not None else await self.status()

    async def stop(self) -> GatewayState:
        current = await self.status()
        if current.status in ("stopped", "stopping"):
            return current
        failed = await self._invoke("stop")
        return failed if failed is not None else await self.status()

    async def restart(self) -> GatewayState:
        current = await self.status()
        if current.status == "stopped":
            return await self.start()
        failed = await self._invoke("restart")
        return failed if failed is not None else await self.status()
