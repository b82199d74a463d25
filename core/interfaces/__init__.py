"""Core interfaces for the certificate run."""

from .config_interface import IConfigService
from .provisioner_interface import IProvisionerService
from .dns_challenge_interface import IDNSChallengeService
from .certificate_interface import ICertificateIssuerService, ICertificatePublisherService
from .teardown_interface import ITeardownService
from .workflow_interface import IWorkflowOrchestrator

__all__ = [
    'IConfigService',
    'IProvisionerService',
    'IDNSChallengeService',
    'ICertificateIssuerService',
    'ICertificatePublisherService',
    'ITeardownService',
    'IWorkflowOrchestrator'
]
