"""Core business services for the certificate run."""

from .config_service import ConfigService
from .provisioner_service import ProvisionerService
from .dns_challenge_service import DNSChallengeService
from .certificate_issuer_service import CertificateIssuerService
from .certificate_publisher_service import CertificatePublisherService
from .teardown_service import TeardownService

__all__ = [
    'ConfigService',
    'ProvisionerService',
    'DNSChallengeService',
    'CertificateIssuerService',
    'CertificatePublisherService',
    'TeardownService'
]
