"""AWS SSM client used as the remote execution channel."""

import asyncio
from typing import List, Dict, Any, Optional
from datetime import datetime

from botocore.exceptions import ClientError
from .session_manager import AWSSessionManager
from core.utils.logger import get_infrastructure_logger


TERMINAL_COMMAND_STATES = ("Success", "Failed", "Cancelled", "TimedOut", "Cancelling")


class SSMClient:
    """AWS SSM client wrapper for running shell commands on the instance."""

    def __init__(
        self,
        region: str,
        session_manager: Optional[AWSSessionManager] = None,
        role_arn: Optional[str] = None,
        run_mode: str = "local",
        client=None,
    ):
        self.region = region
        self.role_arn = role_arn
        self.run_mode = run_mode
        self.logger = get_infrastructure_logger(__name__)
        self._client = client
        self._session_manager = session_manager or AWSSessionManager(region=region)

    def _ensure_client(self) -> None:
        if self._client is None:
            session = self._session_manager.get_session(role_arn=self.role_arn, run_mode=self.run_mode)
            self._client = session.client("ssm", region_name=self.region)

    def _handle_error(self, operation: str, error: Exception) -> None:
        """Centralized error handling and logging."""
        if isinstance(error, ClientError):
            error_code = error.response["Error"]["Code"]
            self.logger.error(f"{operation} failed: {error_code}")
        else:
            self.logger.error(f"{operation} failed: {str(error)}")
        raise error

    async def get_ping_status(self, instance_id: str) -> Optional[str]:
        """Agent ping status (``Online``, ``ConnectionLost``...) or None if unregistered."""
        try:
            self._ensure_client()
            response = self._client.describe_instance_information(
                Filters=[{"Key": "InstanceIds", "Values": [instance_id]}]
            )
            info = response["InstanceInformationList"]
            return info[0]["PingStatus"] if info else None
        except Exception as e:
            self._handle_error("describe_instance_information", e)

    async def send_command(
        self,
        instance_ids: List[str],
        commands: List[str],
        working_directory: Optional[str] = None,
        timeout_seconds: int = 3600,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send a shell script to instances via AWS-RunShellScript."""
        try:
            self._ensure_client()
            parameters = {
                "commands": commands,
                "executionTimeout": [str(timeout_seconds)],
            }
            if working_directory:
                parameters["workingDirectory"] = [working_directory]

            params = {
                "InstanceIds": instance_ids,
                "DocumentName": "AWS-RunShellScript",
                "Parameters": parameters,
                "TimeoutSeconds": 60,
            }
            if comment:
                params["Comment"] = comment[:100]

            response = self._client.send_command(**params)
            command = response["Command"]

            return {
                "command_id": command["CommandId"],
                "command": command,
                "timestamp": datetime.utcnow().isoformat(),
            }

        except Exception as e:
            self._handle_error("send_command", e)

    async def get_command_invocation(self, command_id: str, instance_id: str) -> Dict[str, Any]:
        """Get command invocation details for a specific instance."""
        try:
            self._ensure_client()
            response = self._client.get_command_invocation(
                CommandId=command_id, InstanceId=instance_id
            )

            return {
                "command_id": command_id,
                "instance_id": instance_id,
                "status": response["Status"],
                "status_details": response.get("StatusDetails", ""),
                "standard_output": response.get("StandardOutputContent", ""),
                "standard_error": response.get("StandardErrorContent", ""),
                "response_code": response.get("ResponseCode", -1),
            }

        except ClientError as e:
            if e.response["Error"]["Code"] == "InvocationDoesNotExist":
                return {}
            self._handle_error("get_command_invocation", e)
        except Exception as e:
            self._handle_error("get_command_invocation", e)

    async def wait_for_command(
        self,
        command_id: str,
        instance_id: str,
        max_wait_time: int = 3600,
        poll_interval: int = 5,
    ) -> Dict[str, Any]:
        """Poll until the invocation reaches a terminal state."""
        start_time = datetime.utcnow()

        while (datetime.utcnow() - start_time).total_seconds() < max_wait_time:
            invocation = await self.get_command_invocation(command_id, instance_id)
            if invocation and invocation["status"] in TERMINAL_COMMAND_STATES:
                return invocation
            await asyncio.sleep(poll_interval)

        raise TimeoutError(
            f"Command {command_id} on {instance_id} did not finish within {max_wait_time} seconds"
        )
