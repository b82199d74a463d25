"""Resource handles and the per-run registry that tracks them."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional


class ResourceKind(Enum):
    """Kinds of ephemeral resources a run can create."""
    KEY_PAIR = "key-pair"
    IDENTITY_ROLE = "identity-role"
    IDENTITY_POLICY = "identity-policy"
    INSTANCE_PROFILE = "instance-profile"
    NETWORK = "network"
    SUBNET = "subnet"
    INTERNET_GATEWAY = "internet-gateway"
    ROUTE_TABLE = "route-table"
    SECURITY_GROUP = "security-group"
    INSTANCE = "instance"
    DNS_RECORD = "dns-record"


@dataclass(frozen=True)
class ResourceHandle:
    """Provider identity of one created resource."""

    kind: ResourceKind
    resource_id: str
    name: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    attributes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "resource_id": self.resource_id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceHandle":
        created_at = data.get("created_at")
        return cls(
            kind=ResourceKind(data["kind"]),
            resource_id=data["resource_id"],
            name=data.get("name"),
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.utcnow(),
            attributes=dict(data.get("attributes") or {}),
        )


class ResourceRegistry:
    """Append-only record of every resource created during a run.

    Handles are never removed: teardown needs a superset of what exists, and
    deleting something already gone is harmless. Each append notifies the
    optional listener so the registry can be journaled to disk immediately.
    """

    def __init__(
        self,
        run_tag: str,
        listener: Optional[Callable[["ResourceRegistry"], None]] = None,
    ):
        self.run_tag = run_tag
        self._handles: List[ResourceHandle] = []
        self._listener = listener

    def record(
        self,
        kind: ResourceKind,
        resource_id: str,
        name: Optional[str] = None,
        **attributes: str,
    ) -> ResourceHandle:
        """Append a handle and notify the listener."""
        handle = ResourceHandle(
            kind=kind, resource_id=resource_id, name=name, attributes=attributes
        )
        self._handles.append(handle)
        if self._listener is not None:
            self._listener(self)
        return handle

    def handles(self, kind: Optional[ResourceKind] = None) -> List[ResourceHandle]:
        if kind is None:
            return list(self._handles)
        return [h for h in self._handles if h.kind == kind]

    def ids(self, kind: ResourceKind) -> List[str]:
        """Distinct resource ids of a kind, in creation order."""
        seen = []
        for handle in self.handles(kind):
            if handle.resource_id not in seen:
                seen.append(handle.resource_id)
        return seen

    def names(self, kind: ResourceKind) -> List[str]:
        seen = []
        for handle in self.handles(kind):
            value = handle.name or handle.resource_id
            if value not in seen:
                seen.append(value)
        return seen

    def __iter__(self) -> Iterator[ResourceHandle]:
        return iter(list(self._handles))

    def __len__(self) -> int:
        return len(self._handles)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_tag": self.run_tag,
            "handles": [h.to_dict() for h in self._handles],
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        listener: Optional[Callable[["ResourceRegistry"], None]] = None,
    ) -> "ResourceRegistry":
        registry = cls(run_tag=data["run_tag"], listener=listener)
        registry._handles = [ResourceHandle.from_dict(h) for h in data.get("handles", [])]
        return registry
