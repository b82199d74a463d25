"""Core data models for the certificate run."""

from .config import RunContext, AWSSettings, IssuanceSettings, TimingSettings, ChallengeType
from .certificate import DomainRecord, CertificateArtifact, PublishedCertificate
from .errors import (
    CertificateRunError,
    ValidationError,
    ProvisioningError,
    ChallengeError,
    IssuanceError,
    PublicationError,
    TeardownError,
)
from .instance import ProvisionedInstance, InstanceStatus, ReadinessSignal
from .resource import ResourceHandle, ResourceKind, ResourceRegistry
from .workflow import RunResult, RunState, RunStatus, DomainOutcome, TeardownReport

__all__ = [
    'RunContext',
    'AWSSettings',
    'IssuanceSettings',
    'TimingSettings',
    'ChallengeType',
    'DomainRecord',
    'CertificateArtifact',
    'PublishedCertificate',
    'CertificateRunError',
    'ValidationError',
    'ProvisioningError',
    'ChallengeError',
    'IssuanceError',
    'PublicationError',
    'TeardownError',
    'ProvisionedInstance',
    'InstanceStatus',
    'ReadinessSignal',
    'ResourceHandle',
    'ResourceKind',
    'ResourceRegistry',
    'RunResult',
    'RunState',
    'RunStatus',
    'DomainOutcome',
    'TeardownReport'
]
