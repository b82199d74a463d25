from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from core.models.errors import CertificateRunError


class RunState(Enum):
    """States of the run state machine."""
    VALIDATING = "validating"
    PROVISIONING = "provisioning"
    REACHABLE = "reachable"
    CERTIFYING = "certifying"
    TEARING_DOWN = "tearing_down"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS: Dict[RunState, Tuple[RunState, ...]] = {
    RunState.VALIDATING: (RunState.PROVISIONING, RunState.TEARING_DOWN, RunState.FAILED),
    RunState.PROVISIONING: (RunState.REACHABLE, RunState.TEARING_DOWN),
    RunState.REACHABLE: (RunState.CERTIFYING, RunState.TEARING_DOWN),
    RunState.CERTIFYING: (RunState.TEARING_DOWN,),
    RunState.TEARING_DOWN: (RunState.DONE, RunState.FAILED),
    RunState.DONE: (),
    RunState.FAILED: (),
}


class RunStatus(Enum):
    """Overall outcome reported to the operator."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class DomainStatus(Enum):
    """Per-domain outcome."""
    PENDING = "pending"
    PUBLISHED = "published"
    SKIPPED = "skipped"
    FAILED = "failed"


class IssuanceState(Enum):
    """What the issuer did for a domain."""
    NOT_ATTEMPTED = "not_attempted"
    ISSUED = "issued"
    ALREADY_PRESENT = "already_present"
    DISABLED = "disabled"
    FAILED = "failed"


class StepStatus(Enum):
    """Teardown step outcome."""
    SUCCEEDED = "succeeded"
    ALREADY_ABSENT = "already_absent"
    SKIPPED = "skipped"
    FAILED = "failed"


class InvalidTransition(RuntimeError):
    """Raised when the run tries to move along an edge the table forbids."""


@dataclass
class DomainOutcome:
    """Everything that happened to one domain."""
    domain: str
    status: DomainStatus = DomainStatus.PENDING
    issuance: IssuanceState = IssuanceState.NOT_ATTEMPTED
    dns_published: bool = False
    dns_retracted: bool = False
    certificate_name: Optional[str] = None
    certificate_arn: Optional[str] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def is_failed(self) -> bool:
        return self.status == DomainStatus.FAILED

    def mark_published(self, name: str, arn: Optional[str]) -> None:
        self.status = DomainStatus.PUBLISHED
        self.certificate_name = name
        self.certificate_arn = arn

    def mark_skipped(self, reason: str) -> None:
        self.status = DomainStatus.SKIPPED
        self.warnings.append(reason)

    def mark_failed(self, error: CertificateRunError) -> None:
        self.status = DomainStatus.FAILED
        self.error_type = error.error_type
        self.error_message = str(error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "status": self.status.value,
            "issuance": self.issuance.value,
            "dns_published": self.dns_published,
            "dns_retracted": self.dns_retracted,
            "certificate_name": self.certificate_name,
            "certificate_arn": self.certificate_arn,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "warnings": list(self.warnings),
        }


@dataclass
class TeardownStepResult:
    """Outcome of one independent teardown step."""
    name: str
    status: StepStatus
    detail: str = ""
    resource_ids: List[str] = field(default_factory=list)

    @property
    def is_failed(self) -> bool:
        return self.status == StepStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "detail": self.detail,
            "resource_ids": list(self.resource_ids),
        }


@dataclass
class TeardownReport:
    """Result of a reconciliation pass."""
    run_tag: str
    steps: List[TeardownStepResult] = field(default_factory=list)
    leftovers: Dict[str, List[str]] = field(default_factory=dict)
    start_time: datetime = field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None

    @property
    def failed_steps(self) -> List[TeardownStepResult]:
        return [s for s in self.steps if s.is_failed]

    @property
    def is_clean(self) -> bool:
        """No step failed and verification found nothing left behind."""
        return not self.failed_steps and not any(self.leftovers.values())

    def add(self, step: TeardownStepResult) -> TeardownStepResult:
        self.steps.append(step)
        return step

    def step(self, name: str) -> Optional[TeardownStepResult]:
        return next((s for s in self.steps if s.name == name), None)

    def mark_finished(self) -> None:
        self.end_time = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_tag": self.run_tag,
            "clean": self.is_clean,
            "steps": [s.to_dict() for s in self.steps],
            "leftovers": {k: list(v) for k, v in self.leftovers.items() if v},
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


@dataclass
class RunResult:
    """Complete result of one orchestration run."""

    run_tag: str
    state: RunState = RunState.VALIDATING
    status: RunStatus = RunStatus.PENDING
    start_time: datetime = field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None

    history: List[RunState] = field(default_factory=lambda: [RunState.VALIDATING])
    domains: Dict[str, DomainOutcome] = field(default_factory=dict)
    instance_id: Optional[str] = None
    public_ip: Optional[str] = None
    teardown: Optional[TeardownReport] = None

    fatal_error: Optional[CertificateRunError] = None
    errors: List[str] = field(default_factory=list)
    report_path: Optional[str] = None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return None

    @property
    def failed_domains(self) -> List[DomainOutcome]:
        return [o for o in self.domains.values() if o.is_failed]

    @property
    def published_domains(self) -> List[DomainOutcome]:
        return [o for o in self.domains.values() if o.status == DomainStatus.PUBLISHED]

    @property
    def teardown_clean(self) -> bool:
        return self.teardown is not None and self.teardown.is_clean

    def transition(self, target: RunState) -> None:
        """Move to ``target`` if the transition table allows it."""
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move from {self.state.value} to {target.value}")
        self.state = target
        self.history.append(target)

    def outcome(self, domain: str) -> DomainOutcome:
        if domain not in self.domains:
            self.domains[domain] = DomainOutcome(domain=domain)
        return self.domains[domain]

    def add_error(self, error: str) -> None:
        self.errors.append(error)

    def fail(self, error: CertificateRunError) -> None:
        """Record a fatal error; the state machine still has to tear down."""
        self.fatal_error = error
        self.add_error(f"{error.error_type}: {error}")

    def finish(self) -> None:
        """Settle the overall status once teardown has been attempted."""
        self.end_time = datetime.utcnow()
        if self.fatal_error is not None:
            self.status = RunStatus.FAILED
        elif self.failed_domains and len(self.failed_domains) == len(self.domains):
            self.status = RunStatus.FAILED
        elif self.failed_domains:
            self.status = RunStatus.PARTIAL_SUCCESS
        else:
            self.status = RunStatus.SUCCEEDED

        if self.state == RunState.TEARING_DOWN:
            self.transition(RunState.FAILED if self.fatal_error else RunState.DONE)

    def get_summary(self) -> Dict[str, Any]:
        """Get run execution summary."""
        return {
            "run_tag": self.run_tag,
            "status": self.status.value,
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "duration": str(self.duration) if self.duration else None,
            "instance_id": self.instance_id,
            "public_ip": self.public_ip,
            "domains": [o.to_dict() for o in self.domains.values()],
            "published": len(self.published_domains),
            "failed": len(self.failed_domains),
            "fatal_error": (
                {"type": self.fatal_error.error_type, "message": str(self.fatal_error)}
                if self.fatal_error else None
            ),
            "errors": list(self.errors),
            "teardown": self.teardown.to_dict() if self.teardown else None,
        }
