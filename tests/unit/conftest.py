"""Shared fixtures for unit tests."""

import dataclasses
import logging
from unittest.mock import AsyncMock

import pytest

from core.models.config import IssuanceSettings, RunContext, TimingSettings
from core.orchestration.workflow_orchestrator import WorkflowOrchestrator
from core.services.certificate_issuer_service import CertificateIssuerService
from core.services.certificate_publisher_service import CertificatePublisherService
from core.services.dns_challenge_service import DNSChallengeService
from core.services.provisioner_service import ProvisionerService
from core.services.teardown_service import TeardownService

from fakes import FakeCloud, FakeEC2, FakeIAM, FakeRoute53, FakeShell, FakeSSM


FAST_TIMING = TimingSettings(
    ssh_initial_delay=0,
    ssh_timeout=5,
    ssh_poll_interval=1,
    agent_ready_timeout=5,
    post_ssh_settle=0,
    command_timeout=30,
    dns_wait_timeout=5,
    termination_timeout=5,
    post_termination_settle=0,
)


def pytest_configure(config):
    logging.basicConfig(level=logging.WARNING, force=True)


@pytest.fixture
def public_key_file(tmp_path):
    path = tmp_path / "id_rsa.pub"
    path.write_text("ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC7 test@example\n")
    return str(path)


@pytest.fixture
def make_context(public_key_file):
    """RunContext factory with instant timings and a readable public key."""

    def factory(domains=("a.example.com",), issuance_enabled=True, **changes):
        context = RunContext(
            domains=tuple(domains),
            run_tag="certrun-test0001",
            issuance=IssuanceSettings(enabled=issuance_enabled, contact_email="ops@example.com"),
            timing=FAST_TIMING,
            journal_dir=None,
            report_dir=None,
        )
        context = dataclasses.replace(
            context, aws=dataclasses.replace(context.aws, public_key_file=public_key_file)
        )
        return dataclasses.replace(context, **changes)

    return factory


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def shell():
    return FakeShell()


@pytest.fixture
def make_orchestrator(cloud, shell):
    """Orchestrator wired to the fake cloud; keyword arguments replace collaborators."""

    def factory(context, ssm=None, port_waiter=None, store=None):
        ec2, iam, route53 = FakeEC2(cloud), FakeIAM(cloud), FakeRoute53(cloud)
        dns_service = DNSChallengeService(route53, wait_timeout=5, poll_delay=1)
        provisioner = ProvisionerService(
            ec2,
            iam,
            ssm or FakeSSM(),
            port_waiter=port_waiter or AsyncMock(return_value=1.0),
            shell_factory=lambda instance_id: shell,
            sleep=AsyncMock(),
        )
        orchestrator = WorkflowOrchestrator(
            provisioner=provisioner,
            dns_service=dns_service,
            issuer_factory=lambda instance: CertificateIssuerService(shell, context.issuance),
            publisher=CertificatePublisherService(iam, context.trust_store_path),
            teardown_service=TeardownService(
                ec2, iam, dns_service, sleep=AsyncMock(), retry_delay=0
            ),
            store=store,
        )
        orchestrator.route53 = route53
        return orchestrator

    return factory
