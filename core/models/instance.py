"""Provisioned instance data model."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class InstanceStatus(Enum):
    """Instance status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"

    @classmethod
    def from_aws(cls, state: Optional[str]) -> "InstanceStatus":
        try:
            return cls(state)
        except ValueError:
            return cls.UNKNOWN


class ReadinessSignal(Enum):
    """How the provisioner decided the instance was ready for commands."""
    CLOUD_INIT = "cloud_init"
    AGENT_ONLINE = "agent_online"
    FIXED_DELAY = "fixed_delay"


@dataclass
class ProvisionedInstance:
    """The ephemeral host plus the scaffolding around it."""

    instance_id: str
    public_ip: str
    image_id: str
    key_name: str
    vpc_id: str
    subnet_id: str
    security_group_id: str
    instance_profile: str
    role_arn: Optional[str] = None
    status: InstanceStatus = InstanceStatus.PENDING
    reused: bool = False
    readiness: Optional[ReadinessSignal] = None
    launched_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_running(self) -> bool:
        return self.status == InstanceStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "public_ip": self.public_ip,
            "image_id": self.image_id,
            "key_name": self.key_name,
            "vpc_id": self.vpc_id,
            "subnet_id": self.subnet_id,
            "security_group_id": self.security_group_id,
            "instance_profile": self.instance_profile,
            "role_arn": self.role_arn,
            "status": self.status.value,
            "reused": self.reused,
            "readiness": self.readiness.value if self.readiness else None,
            "launched_at": self.launched_at.isoformat(),
        }
