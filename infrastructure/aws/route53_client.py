"""AWS Route 53 client for challenge record management."""

from typing import Dict, Any, Optional

from botocore.exceptions import ClientError, WaiterError
from .session_manager import AWSSessionManager
from core.utils.logger import get_infrastructure_logger


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


class Route53Client:
    """AWS Route 53 client wrapper."""

    def __init__(
        self,
        session_manager: Optional[AWSSessionManager] = None,
        role_arn: Optional[str] = None,
        run_mode: str = "local",
        client=None,
    ):
        self.role_arn = role_arn
        self.run_mode = run_mode
        self.logger = get_infrastructure_logger(__name__)
        self._client = client
        self._session_manager = session_manager or AWSSessionManager()

    def _ensure_client(self) -> None:
        if self._client is None:
            session = self._session_manager.get_session(role_arn=self.role_arn, run_mode=self.run_mode)
            self._client = session.client("route53")

    def _handle_error(self, operation: str, error: Exception) -> None:
        """Centralized error handling and logging."""
        if isinstance(error, ClientError):
            self.logger.error(f"{operation} failed: {error.response['Error']['Code']}")
        else:
            self.logger.error(f"{operation} failed: {str(error)}")
        raise error

    async def find_hosted_zone_id(self, zone: str) -> Optional[str]:
        """Public hosted zone id for an exact zone name, or None."""
        try:
            self._ensure_client()
            response = self._client.list_hosted_zones_by_name(DNSName=_fqdn(zone), MaxItems="10")
            for hosted_zone in response["HostedZones"]:
                if hosted_zone["Name"] != _fqdn(zone):
                    continue
                if hosted_zone.get("Config", {}).get("PrivateZone"):
                    continue
                return hosted_zone["Id"].split("/")[-1]
            return None
        except Exception as e:
            self._handle_error("Find hosted zone", e)

    async def get_record(self, zone_id: str, name: str, record_type: str = "A") -> Optional[Dict[str, Any]]:
        """Current record set for ``name``/``record_type``, or None."""
        try:
            self._ensure_client()
            response = self._client.list_resource_record_sets(
                HostedZoneId=zone_id,
                StartRecordName=_fqdn(name),
                StartRecordType=record_type,
                MaxItems="1",
            )
            for record in response["ResourceRecordSets"]:
                if record["Name"] == _fqdn(name) and record["Type"] == record_type:
                    return record
            return None
        except Exception as e:
            self._handle_error("Get record", e)

    async def upsert_a_record(self, zone_id: str, name: str, value: str, ttl: int) -> str:
        """Create or overwrite an A record. Returns the change id."""
        try:
            self._ensure_client()
            response = self._client.change_resource_record_sets(
                HostedZoneId=zone_id,
                ChangeBatch={
                    "Comment": "certificate challenge",
                    "Changes": [
                        {
                            "Action": "UPSERT",
                            "ResourceRecordSet": {
                                "Name": _fqdn(name),
                                "Type": "A",
                                "TTL": ttl,
                                "ResourceRecords": [{"Value": value}],
                            },
                        }
                    ],
                },
            )
            return response["ChangeInfo"]["Id"]
        except Exception as e:
            self._handle_error("Upsert A record", e)

    async def delete_record(self, zone_id: str, record: Dict[str, Any]) -> str:
        """Delete an exact record set as returned by ``get_record``."""
        try:
            self._ensure_client()
            response = self._client.change_resource_record_sets(
                HostedZoneId=zone_id,
                ChangeBatch={
                    "Comment": "certificate challenge cleanup",
                    "Changes": [{"Action": "DELETE", "ResourceRecordSet": record}],
                },
            )
            return response["ChangeInfo"]["Id"]
        except Exception as e:
            self._handle_error("Delete record", e)

    async def wait_for_change(self, change_id: str, max_wait_time: int = 300, delay: int = 10) -> None:
        """Block until the change is INSYNC."""
        try:
            self._ensure_client()
            self._client.get_waiter("resource_record_sets_changed").wait(
                Id=change_id,
                WaiterConfig={"Delay": delay, "MaxAttempts": max(1, max_wait_time // delay)},
            )
        except WaiterError as e:
            self.logger.error(f"Wait for change {change_id} failed: {str(e)}")
            raise TimeoutError(f"Change {change_id} not in sync within {max_wait_time} seconds") from e
        except Exception as e:
            self._handle_error("Wait for change", e)
