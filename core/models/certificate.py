"""Challenge record and certificate data models."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from core.models.errors import ValidationError


CHALLENGE_TTL = 7200

_STORE_NAME_INVALID = re.compile(r"[^a-z0-9-]")


def derive_zone(domain: str) -> str:
    """Strip the leftmost label: ``api.example.com`` -> ``example.com``."""
    parts = domain.rstrip(".").split(".", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValidationError(f"Domain {domain!r} has no label to strip", domain=domain)
    return parts[1]


def store_name_for(domain: str) -> str:
    """Trust-store entry name for a domain: ``foo.example.com`` -> ``foo-example-com``."""
    return _STORE_NAME_INVALID.sub("-", domain.lower().rstrip("."))


def store_path_for(domain: str, base_path: str = "/") -> str:
    """Trust-store path scoping a domain's entry, always slash-delimited."""
    base = base_path.rstrip("/")
    return f"{base}/{domain.lower().rstrip('.')}/"


@dataclass(frozen=True)
class DomainRecord:
    """A-record that points a domain at the instance during the challenge."""

    domain: str
    zone: str
    value: str
    ttl: int = CHALLENGE_TTL
    zone_id: Optional[str] = None

    @classmethod
    def for_domain(
        cls, domain: str, value: str, zone_id: Optional[str] = None, zone: Optional[str] = None
    ) -> "DomainRecord":
        return cls(
            domain=domain,
            zone=zone or derive_zone(domain),
            value=value,
            zone_id=zone_id,
        )


@dataclass
class CertificateArtifact:
    """Certificate files produced by the agent on the instance."""

    domain: str
    certificate_body: str
    private_key: str
    chain: str
    path: str

    def __repr__(self) -> str:
        return f"CertificateArtifact(domain={self.domain!r}, path={self.path!r})"


@dataclass
class PublishedCertificate:
    """Certificate bundle stored in the trust store."""

    domain: str
    name: str
    path: str
    certificate_body: str
    private_key: str
    chain: str
    arn: Optional[str] = None
    certificate_id: Optional[str] = None
    uploaded_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_artifact(cls, artifact: CertificateArtifact, base_path: str = "/") -> "PublishedCertificate":
        return cls(
            domain=artifact.domain,
            name=store_name_for(artifact.domain),
            path=store_path_for(artifact.domain, base_path),
            certificate_body=artifact.certificate_body,
            private_key=artifact.private_key,
            chain=artifact.chain,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Summary safe to write to reports; omits the key material."""
        return {
            "domain": self.domain,
            "name": self.name,
            "path": self.path,
            "arn": self.arn,
            "certificate_id": self.certificate_id,
            "uploaded_at": self.uploaded_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"PublishedCertificate(name={self.name!r}, path={self.path!r}, arn={self.arn!r})"
