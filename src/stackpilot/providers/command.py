"""Shell command execution for package installation steps."""

from __future__ import annotations

import asyncio
import hashlib
import shlex
from typing import Any, Dict, List, Sequence

import structlog

from stackpilot.core.errors import ConfigurationError, ProviderError
from stackpilot.specs.models import ResourceKind

logger = structlog.get_logger()

OUTPUT_TAIL_CHARS = 2000


class ShellCommandRunner:
    """Runs a command and reports only its exit status."""

    def __init__(self, cwd: str | None = None, env: Dict[str, str] | None = None) -> None:
        self._cwd = cwd
        self._env = env

    async def run(self, command: str | Sequence[str]) -> int:
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise ConfigurationError("Empty command")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self._cwd,
                env=self._env,
            )
        except OSError as e:
            raise ProviderError.permanent_error(f"Cannot start {argv[0]}: {e}", command=argv[0]) from e

        output, _ = await process.communicate()
        returncode = process.returncode if process.returncode is not None else -1
        log = logger.bind(command=argv[0], returncode=returncode)
        if returncode != 0:
            log.warning("command_failed", output=output.decode(errors="replace")[-OUTPUT_TAIL_CHARS:])
        else:
            log.info("command_succeeded")
        return returncode


class PackageInstallHandler:
    """
    Runs ``commands`` in order, e.g. ``dnf install -y httpd``.

    A non-zero exit fails the step. Exit codes listed in
    ``retry_exit_codes`` (a package manager holding its lock, say) are
    reported as transient so the step is retried.
    """

    kind = ResourceKind.PACKAGE_INSTALL

    def __init__(self, runner: ShellCommandRunner) -> None:
        self._runner = runner

    async def create(self, config: Dict[str, Any]) -> str:
        commands = self._commands(config)
        retry_codes = {int(code) for code in config.get("retry_exit_codes") or []}
        for command in commands:
            returncode = await self._runner.run(command)
            if returncode == 0:
                continue
            raise ProviderError(
                f"Command exited with {returncode}: {command}",
                transient=returncode in retry_codes,
                details={"returncode": returncode},
            )
        digest = hashlib.sha256("\n".join(map(str, commands)).encode("utf-8")).hexdigest()
        return f"commands:{digest[:16]}"

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        await self.create(config)

    @staticmethod
    def _commands(config: Dict[str, Any]) -> List[Any]:
        commands = config.get("commands")
        if isinstance(commands, str):
            commands = [commands]
        if not commands:
            raise ConfigurationError(
                "package_install requires 'commands'", details={"kind": "package_install"}
            )
        return list(commands)
