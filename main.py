#!/usr/bin/env python3
"""
Certificate Run - Main Entry Point

Provisions a short-lived EC2 host, obtains TLS certificates for the requested
domains, publishes them to the IAM server certificate store and tears every
temporary resource down again.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from core.models.config import RunContext
from core.models.errors import ValidationError
from core.models.workflow import RunResult, RunStatus
from core.orchestration.workflow_orchestrator import WorkflowOrchestrator
from core.services.certificate_issuer_service import CertificateIssuerService
from core.services.certificate_publisher_service import CertificatePublisherService
from core.services.config_service import ConfigService
from core.services.dns_challenge_service import DNSChallengeService
from core.services.provisioner_service import ProvisionerService
from core.services.teardown_service import TeardownService
from core.utils.logger import configure_root_logging
from infrastructure.aws import AWSSessionManager, EC2Client, IAMClient, Route53Client, SSMClient
from infrastructure.remote import SSMRemoteShell
from infrastructure.storage import JSONStore


EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_VALIDATION = 2
EXIT_TEARDOWN_INCOMPLETE = 3


def build_orchestrator(context: RunContext, profile_name: str = None) -> WorkflowOrchestrator:
    """Wire the AWS clients and services for one run."""
    aws = context.aws
    session_manager = AWSSessionManager(region=aws.region, profile_name=profile_name)
    access = {"session_manager": session_manager, "role_arn": aws.role_arn, "run_mode": aws.run_mode}
    ec2_client = EC2Client(aws.region, **access)
    iam_client = IAMClient(**access)
    route53_client = Route53Client(**access)
    ssm_client = SSMClient(aws.region, **access)

    dns_service = DNSChallengeService(route53_client, wait_timeout=context.timing.dns_wait_timeout)

    def issuer_for(instance):
        shell = SSMRemoteShell(ssm_client, instance.instance_id, timeout=context.timing.command_timeout)
        return CertificateIssuerService(shell, context.issuance, command_timeout=context.timing.command_timeout)

    return WorkflowOrchestrator(
        provisioner=ProvisionerService(ec2_client, iam_client, ssm_client),
        dns_service=dns_service,
        issuer_factory=issuer_for,
        publisher=CertificatePublisherService(iam_client, context.trust_store_path),
        teardown_service=TeardownService(ec2_client, iam_client, dns_service),
        store=JSONStore(),
    )


def exit_code_for(result: RunResult) -> int:
    if not result.teardown_clean:
        return EXIT_TEARDOWN_INCOMPLETE
    if result.status == RunStatus.SUCCEEDED:
        return EXIT_SUCCESS
    return EXIT_FAILED


def collect_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides = {
        "domains": args.domains,
        "run_tag": args.run_tag,
        "aws.region": args.region,
        "issuance.contact_email": args.email,
    }
    if args.no_issue:
        overrides["issuance.enabled"] = False
    if args.staging:
        overrides["issuance.staging"] = True
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    return overrides


async def run_certificates(args: argparse.Namespace) -> int:
    """Run the complete certificate workflow."""
    config_service = ConfigService()
    context = config_service.load_run_context(args.config, collect_overrides(args))
    configure_root_logging(context.log_level.value, args.log_file)
    logger = logging.getLogger(__name__)

    if args.dry_run:
        for line in config_service.describe(context):
            print(line)
        return EXIT_SUCCESS

    orchestrator = build_orchestrator(context, args.profile)
    result = await orchestrator.run(context)

    if result.status == RunStatus.SUCCEEDED:
        logger.info("Certificate run completed successfully")
    else:
        logger.error(f"Certificate run finished with status: {result.status.value}")
        for error in result.errors:
            logger.error(f"Error: {error}")
    logger.info(f"Run tag: {result.run_tag}")
    logger.info(f"Duration: {result.duration}")
    if result.report_path:
        logger.info(f"Report: {result.report_path}")
    return exit_code_for(result)


async def run_teardown_only(args: argparse.Namespace) -> int:
    """Reconcile the resources of an earlier run."""
    if not args.run_tag:
        raise ValidationError("--teardown-only requires --run-tag")

    config_service = ConfigService()
    context = config_service.load_run_context(args.config, collect_overrides(args), validate=False)
    configure_root_logging(context.log_level.value, args.log_file)

    orchestrator = build_orchestrator(context, args.profile)
    result = await orchestrator.teardown_only(context)
    return exit_code_for(result)


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Certificate Run - ephemeral-instance TLS certificate issuance',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Issue and publish certificates for two domains
  python main.py --config config/example.yml --domains a.example.com b.example.com

  # Publish certificates already on a reused instance without issuing new ones
  python main.py --config config/example.yml --run-tag certrun-1a2b3c4d --no-issue

  # Remove whatever an interrupted run left behind
  python main.py --teardown-only --run-tag certrun-1a2b3c4d
        """
    )

    parser.add_argument(
        '--config',
        help='Path to configuration file'
    )
    parser.add_argument(
        '--domains',
        nargs='+',
        metavar='DOMAIN',
        help='Domains to certify (overrides the configuration file)'
    )
    parser.add_argument(
        '--run-tag',
        help='Label for every resource of the run (default: generated)'
    )
    parser.add_argument(
        '--region',
        help='AWS region'
    )
    parser.add_argument(
        '--profile',
        help='AWS named profile'
    )
    parser.add_argument(
        '--email',
        help='Contact email registered with the certificate authority'
    )

    # Workflow options
    parser.add_argument(
        '--no-issue',
        action='store_true',
        help='Only publish certificates already present on the instance'
    )
    parser.add_argument(
        '--staging',
        action='store_true',
        help="Use the certificate authority's staging endpoint"
    )
    parser.add_argument(
        '--teardown-only',
        action='store_true',
        help='Skip issuance and remove the resources of --run-tag'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print the resolved configuration and exit'
    )

    # Output options
    parser.add_argument(
        '--log-file',
        help='Also log to logs/<LOG_FILE>'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    try:
        if args.teardown_only:
            return await run_teardown_only(args)
        return await run_certificates(args)

    except ValidationError as e:
        print(f"Configuration error: {str(e)}")
        return EXIT_VALIDATION
    except FileNotFoundError as e:
        print(f"Configuration error: {str(e)}")
        return EXIT_VALIDATION
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return EXIT_FAILED
    except Exception as e:
        print(f"Unexpected error: {str(e)}")
        return EXIT_FAILED


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    cli()
