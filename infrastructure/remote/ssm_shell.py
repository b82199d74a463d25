"""Shell access to the instance over Systems Manager."""

import shlex
from dataclasses import dataclass
from typing import Optional

from infrastructure.aws.ssm_client import SSMClient
from core.utils.logger import get_infrastructure_logger


class RemoteCommandError(RuntimeError):
    """A remote command finished unsuccessfully."""

    def __init__(self, command: str, result: "CommandResult"):
        super().__init__(
            f"Remote command failed ({result.status}, exit {result.exit_code}): {command}: "
            f"{result.stderr.strip()[-500:]}"
        )
        self.command = command
        self.result = result


@dataclass
class CommandResult:
    """Outcome of one remote command."""
    status: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "Success" and self.exit_code == 0


class SSMRemoteShell:
    """Runs shell commands on a single instance."""

    def __init__(
        self,
        ssm_client: SSMClient,
        instance_id: str,
        timeout: int = 900,
        poll_interval: int = 5,
    ):
        self.ssm_client = ssm_client
        self.instance_id = instance_id
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.logger = get_infrastructure_logger(__name__)

    async def run(
        self,
        command: str,
        working_directory: Optional[str] = None,
        timeout: Optional[int] = None,
        check: bool = False,
    ) -> CommandResult:
        """Run ``command`` as root; raise RemoteCommandError when ``check`` and it fails."""
        timeout = timeout or self.timeout
        sent = await self.ssm_client.send_command(
            instance_ids=[self.instance_id],
            commands=[command],
            working_directory=working_directory,
            timeout_seconds=timeout,
            comment=command.split()[0] if command.strip() else None,
        )
        invocation = await self.ssm_client.wait_for_command(
            sent["command_id"],
            self.instance_id,
            max_wait_time=timeout + 60,
            poll_interval=self.poll_interval,
        )
        result = CommandResult(
            status=invocation["status"],
            exit_code=invocation.get("response_code", -1),
            stdout=invocation.get("standard_output", ""),
            stderr=invocation.get("standard_error", ""),
        )
        self.logger.debug(f"{command!r} -> {result.status} ({result.exit_code})")

        if check and not result.ok:
            raise RemoteCommandError(command, result)
        return result

    async def path_exists(self, path: str) -> bool:
        result = await self.run(f"test -e {shlex.quote(path)}")
        return result.ok

    async def read_file(self, path: str) -> str:
        result = await self.run(f"cat {shlex.quote(path)}", check=True)
        return result.stdout
