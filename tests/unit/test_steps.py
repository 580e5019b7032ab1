"""
Unit tests for external recovery steps.

Tests run small interpreter one-liners as the configured command.
"""

import shlex
import sys

import pytest

from dbops.docvault.errors import StepError
from dbops.docvault.recovery import CommandStep

PYTHON = shlex.quote(sys.executable)


def script(code: str) -> str:
    return f"{PYTHON} -c {shlex.quote(code)}"


class TestCommandStep:
    """Tests for CommandStep."""

    @pytest.mark.asyncio
    async def test_success_exports_target(self, tmp_path):
        out = tmp_path / "uri.txt"
        step = CommandStep(
            "migrate",
            script(
                "import os, sys; "
                f"open({str(out)!r}, 'w').write(os.environ['MONGO_URI'] + '|' + os.environ['MONGODB_URI'])"
            ),
        )

        await step("mongodb://dr-host:27017/app")

        assert out.read_text() == "mongodb://dr-host:27017/app|mongodb://dr-host:27017/app"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        step = CommandStep("verify", script("import sys; print('3 checks failed'); sys.exit(3)"))

        with pytest.raises(StepError) as exc_info:
            await step("mongodb://localhost/app")

        error = exc_info.value
        assert error.step == "verify"
        assert error.returncode == 3
        assert "3 checks failed" in error.output

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        step = CommandStep("migrate", script("import time; time.sleep(30)"), timeout=0.2)

        with pytest.raises(StepError, match="timed out"):
            await step("mongodb://localhost/app")

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        step = CommandStep("migrate", "definitely-not-a-real-binary-docvault --up")

        with pytest.raises(StepError, match="could not start"):
            await step("mongodb://localhost/app")

    @pytest.mark.asyncio
    async def test_empty_command(self):
        with pytest.raises(StepError):
            await CommandStep("migrate", "   ")("mongodb://localhost/app")

    @pytest.mark.asyncio
    async def test_extra_env(self, tmp_path):
        out = tmp_path / "env.txt"
        step = CommandStep(
            "migrate",
            script(f"import os; open({str(out)!r}, 'w').write(os.environ['MIGRATE_DIR'])"),
            env={"MIGRATE_DIR": "migrations"},
        )

        await step("mongodb://localhost/app")

        assert out.read_text() == "migrations"
