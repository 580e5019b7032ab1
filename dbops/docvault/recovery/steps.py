"""
External recovery steps.

A recovery step is any awaitable callable taking the target database URI.
Migrations and post-migration checks are opaque to DocVault; the shipped
CommandStep runs an operator-configured command with the target exported
as MONGO_URI / MONGODB_URI.

Invariants:
    - A step either returns normally or raises StepError
    - A timed-out or cancelled command is killed before the error leaves
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from typing import Awaitable, Callable, Dict, Optional

from ..errors import StepError

logger = logging.getLogger(__name__)

RecoveryStep = Callable[[str], Awaitable[None]]

OUTPUT_TAIL_LENGTH = 2000


def output_tail(output: bytes, limit: int = OUTPUT_TAIL_LENGTH) -> str:
    text = output.decode("utf-8", errors="replace")
    return text[-limit:]


class CommandStep:
    """Run a shell-style command against the target database.

    Example:
        >>> migrate = CommandStep("migrate", "npm run migrate:up", timeout=600)
        >>> await migrate("mongodb://db:27017/app")
    """

    def __init__(
        self,
        name: str,
        command: str,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        self.name = name
        self.command = command
        self.timeout = timeout
        self.cwd = cwd
        self.env = env or {}

    def __repr__(self) -> str:
        return f"CommandStep(name={self.name!r}, command={self.command!r})"

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            process.kill()
            await process.wait()

    async def __call__(self, target_uri: str) -> None:
        args = shlex.split(self.command)
        if not args:
            raise StepError(f"Step {self.name} has an empty command", step=self.name)

        env = {**os.environ, **self.env, "MONGO_URI": target_uri, "MONGODB_URI": target_uri}
        logger.info(f"Running {self.name} step", extra={"step": self.name, "command": args[0]})

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.cwd,
                env=env,
            )
        except OSError as e:
            raise StepError(f"Step {self.name} could not start: {e}", step=self.name) from e

        try:
            output, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await self._kill(process)
            raise StepError(
                f"Step {self.name} timed out after {self.timeout}s",
                step=self.name,
            ) from e
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        tail = output_tail(output or b"")
        if process.returncode != 0:
            logger.error(
                f"Step {self.name} failed",
                extra={"step": self.name, "returncode": process.returncode},
            )
            raise StepError(
                f"{self.command} failed with code {process.returncode}",
                step=self.name,
                returncode=process.returncode,
                output=tail,
            )

        logger.info(f"Step {self.name} succeeded", extra={"step": self.name})
        logger.debug(tail)
