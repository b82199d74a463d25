"""Run configuration models."""

import ipaddress
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
from uuid import uuid4


DOMAIN_PATTERN = re.compile(
    r"^(\*\.)?([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$"
)


class LogLevel(Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ChallengeType(Enum):
    """ACME challenge classes the standalone responder can answer."""
    HTTP_01 = "http-01"
    TLS_SNI_01 = "tls-sni-01"

    @property
    def port(self) -> int:
        return 80 if self is ChallengeType.HTTP_01 else 443

    @property
    def certbot_name(self) -> str:
        return "http" if self is ChallengeType.HTTP_01 else "tls-sni-01"


def generate_run_tag() -> str:
    """Unique label used to namespace every resource of one run."""
    return f"certrun-{uuid4().hex[:8]}"


@dataclass(frozen=True)
class AWSSettings:
    """Cloud placement and instance selectors."""
    region: str = "us-east-1"
    image_id: Optional[str] = None
    image_name: str = "ubuntu/images/hvm-ssd*/ubuntu-*-22.04-amd64-server-*"
    image_owner: str = "099720109477"
    instance_type: str = "t3.micro"
    public_key_file: str = "~/.ssh/id_rsa.pub"
    vpc_cidr: str = "172.22.1.0/24"
    subnet_cidr: Optional[str] = None
    availability_zone: Optional[str] = None
    role_arn: Optional[str] = None
    run_mode: str = "local"

    @property
    def zone(self) -> str:
        return self.availability_zone or f"{self.region}a"

    def network_errors(self) -> List[str]:
        """Problems with the VPC and subnet address ranges."""
        try:
            vpc = ipaddress.ip_network(self.vpc_cidr)
        except ValueError as e:
            return [f"Invalid VPC CIDR {self.vpc_cidr!r}: {str(e)}"]
        if self.subnet_cidr is None:
            return []
        try:
            subnet = ipaddress.ip_network(self.subnet_cidr)
        except ValueError as e:
            return [f"Invalid subnet CIDR {self.subnet_cidr!r}: {str(e)}"]
        if subnet.version != vpc.version or not subnet.subnet_of(vpc):
            return [f"Subnet {self.subnet_cidr} is not inside VPC {self.vpc_cidr}"]
        return []


@dataclass(frozen=True)
class IssuanceSettings:
    """How the issuance agent is driven on the instance."""
    enabled: bool = True
    contact_email: str = ""
    challenge: ChallengeType = ChallengeType.HTTP_01
    certificate_root: str = "/etc/letsencrypt/live"
    staging: bool = False


@dataclass(frozen=True)
class TimingSettings:
    """Bounded waits, in seconds."""
    ssh_initial_delay: int = 20
    ssh_timeout: int = 320
    ssh_poll_interval: int = 5
    agent_ready_timeout: int = 300
    post_ssh_settle: int = 120
    command_timeout: int = 900
    dns_wait_timeout: int = 300
    termination_timeout: int = 600
    post_termination_settle: int = 60


@dataclass(frozen=True)
class RunContext:
    """Immutable configuration for one orchestration run."""

    domains: Tuple[str, ...] = ()
    run_tag: str = field(default_factory=generate_run_tag)
    name: str = "certificate-run"

    aws: AWSSettings = field(default_factory=AWSSettings)
    issuance: IssuanceSettings = field(default_factory=IssuanceSettings)
    timing: TimingSettings = field(default_factory=TimingSettings)

    trust_store_path: str = "/"
    journal_dir: Optional[str] = "runs"
    report_dir: Optional[str] = "reports"
    log_level: LogLevel = LogLevel.INFO

    @property
    def tags(self) -> List[dict]:
        """Tag set applied to every taggable resource."""
        return [
            {"Key": "Name", "Value": self.run_tag},
            {"Key": "ManagedBy", "Value": "certificate-run"},
        ]

    @property
    def ingress_ports(self) -> Tuple[int, ...]:
        ports = [22, 443]
        challenge_port = self.issuance.challenge.port
        if challenge_port not in ports:
            ports.append(challenge_port)
        return tuple(sorted(ports))

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.domains:
            errors.append("At least one domain must be configured")

        for domain in self.domains:
            if not DOMAIN_PATTERN.match(domain):
                errors.append(f"Invalid domain name: {domain!r}")

        if len(set(self.domains)) != len(self.domains):
            errors.append("Domain list contains duplicates")

        if self.issuance.enabled and not self.issuance.contact_email:
            errors.append("A contact email is required when issuance is enabled")

        if not self.run_tag or not re.match(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$", self.run_tag):
            errors.append(f"Invalid run tag: {self.run_tag!r}")

        if self.timing.ssh_timeout <= 0:
            errors.append("SSH reachability timeout must be positive")

        if not self.trust_store_path.startswith("/"):
            errors.append("Trust store path must start with '/'")

        if self.aws.run_mode not in ("local", "pipeline"):
            errors.append(f"Unsupported run mode: {self.aws.run_mode!r}")

        errors.extend(self.aws.network_errors())

        return errors
