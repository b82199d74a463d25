"""AWS infrastructure implementations."""

from .ec2_client import EC2Client
from .iam_client import IAMClient
from .route53_client import Route53Client
from .ssm_client import SSMClient
from .session_manager import AWSSessionManager

__all__ = [
    'EC2Client',
    'IAMClient',
    'Route53Client',
    'SSMClient',
    'AWSSessionManager'
]
