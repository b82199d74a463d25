import logging
from typing import Callable, Optional

from core.interfaces.certificate_interface import ICertificateIssuerService, ICertificatePublisherService
from core.interfaces.dns_challenge_interface import IDNSChallengeService
from core.interfaces.provisioner_interface import IProvisionerService
from core.interfaces.teardown_interface import ITeardownService
from core.interfaces.workflow_interface import IWorkflowOrchestrator
from core.models.config import RunContext
from core.models.errors import CertificateRunError, ChallengeError, IssuanceError, ValidationError
from core.models.instance import ProvisionedInstance
from core.models.resource import ResourceKind, ResourceRegistry
from core.models.workflow import DomainOutcome, IssuanceState, RunResult, RunState
from infrastructure.storage.json_store import JSONStore, RegistryJournal, write_run_report


IssuerFactory = Callable[[ProvisionedInstance], ICertificateIssuerService]


class WorkflowOrchestrator(IWorkflowOrchestrator):
    """Runs one certificate run as a state machine and always tears down."""

    def __init__(
        self,
        provisioner: IProvisionerService,
        dns_service: IDNSChallengeService,
        issuer_factory: IssuerFactory,
        publisher: ICertificatePublisherService,
        teardown_service: ITeardownService,
        store: Optional[JSONStore] = None,
    ):
        self.provisioner = provisioner
        self.dns_service = dns_service
        self.issuer_factory = issuer_factory
        self.publisher = publisher
        self.teardown_service = teardown_service
        self.store = store
        self.logger = logging.getLogger(__name__)

    def _handle_error(self, message: str, error: Exception) -> str:
        """Centralized error handling."""
        error_msg = f"{message}: {str(error)}"
        self.logger.error(error_msg)
        return error_msg

    def _open_registry(self, context: RunContext) -> ResourceRegistry:
        """Registry for the run tag, continuing an earlier journal if there is one."""
        if self.store is None or context.journal_dir is None:
            return ResourceRegistry(context.run_tag)
        journal = RegistryJournal(self.store, context.journal_dir)
        return journal.load(context.run_tag) or ResourceRegistry(context.run_tag, listener=journal)

    async def run(self, context: RunContext) -> RunResult:
        """Validate, provision, certify every domain and always tear down."""
        self.logger.info(f"Starting run {context.run_tag} for {', '.join(context.domains)}")
        result = RunResult(run_tag=context.run_tag)

        errors = context.validate()
        if errors:
            result.transition(RunState.FAILED)
            raise ValidationError(f"Config validation failed: {'; '.join(errors)}")
        try:
            await self.dns_service.resolve_zones(context.domains)
        except ValidationError:
            result.transition(RunState.FAILED)
            raise

        registry = self._open_registry(context)
        result.transition(RunState.PROVISIONING)
        try:
            instance = await self.provisioner.provision(context, registry)
            result.instance_id = instance.instance_id
            result.public_ip = instance.public_ip
            result.transition(RunState.REACHABLE)

            result.transition(RunState.CERTIFYING)
            await self._certify_domains(context, instance, registry, result)

        except CertificateRunError as e:
            self._handle_error(f"Run {context.run_tag} failed in {result.state.value}", e)
            result.fail(e)
        except Exception as e:
            self._handle_error(f"Run {context.run_tag} failed unexpectedly", e)
            result.fail(CertificateRunError(f"Unexpected error: {str(e)}"))

        finally:
            if result.instance_id is None and registry.ids(ResourceKind.INSTANCE):
                result.instance_id = registry.ids(ResourceKind.INSTANCE)[0]
            await self._teardown(context, registry, result)

        self._log_summary(result)
        return result

    async def teardown_only(self, context: RunContext) -> RunResult:
        """Re-run the reconciler for an earlier run tag."""
        self.logger.info(f"Teardown-only run for {context.run_tag}")
        result = RunResult(run_tag=context.run_tag)
        registry = self._open_registry(context)
        await self._teardown(context, registry, result)
        self._log_summary(result)
        return result

    async def _teardown(self, context: RunContext, registry: ResourceRegistry, result: RunResult) -> None:
        result.transition(RunState.TEARING_DOWN)
        try:
            result.teardown = await self.teardown_service.reconcile(context, registry)
        except Exception as e:
            result.add_error(self._handle_error("Teardown aborted", e))
        result.finish()
        self._write_report(context, result)

    async def _certify_domains(
        self,
        context: RunContext,
        instance: ProvisionedInstance,
        registry: ResourceRegistry,
        result: RunResult,
    ) -> None:
        issuer = self.issuer_factory(instance)

        if context.issuance.enabled:
            try:
                await issuer.prepare_agent()
            except Exception as e:
                error = e if isinstance(e, CertificateRunError) else IssuanceError(str(e))
                for domain in context.domains:
                    outcome = result.outcome(domain)
                    outcome.issuance = IssuanceState.FAILED
                    outcome.mark_failed(error)
                result.add_error(self._handle_error("Issuance agent unavailable", error))
                return

        for domain in context.domains:
            outcome = result.outcome(domain)
            try:
                await self._certify_domain(context, domain, instance, registry, issuer, outcome)
            except CertificateRunError as e:
                outcome.mark_failed(e)
                result.add_error(self._handle_error(f"{domain} failed ({e.error_type})", e))
            except Exception as e:
                error = CertificateRunError(f"Unexpected error: {str(e)}", domain=domain)
                outcome.mark_failed(error)
                result.add_error(self._handle_error(f"{domain} failed unexpectedly", e))

    async def _certify_domain(
        self,
        context: RunContext,
        domain: str,
        instance: ProvisionedInstance,
        registry: ResourceRegistry,
        issuer: ICertificateIssuerService,
        outcome: DomainOutcome,
    ) -> None:
        if await issuer.artifact_exists(domain):
            self.logger.info(f"{domain}: certificate already on instance; publishing it")
            outcome.issuance = IssuanceState.ALREADY_PRESENT
        elif not context.issuance.enabled:
            outcome.issuance = IssuanceState.DISABLED
            outcome.mark_skipped("issuance disabled and no certificate present")
            self.logger.info(f"{domain}: issuance disabled and nothing to publish")
            return
        else:
            await self._issue_with_challenge(domain, instance, registry, issuer, outcome)

        artifact = await issuer.collect_artifact(domain)
        published = await self.publisher.publish(artifact)
        outcome.mark_published(published.name, published.arn)

    async def _issue_with_challenge(
        self,
        domain: str,
        instance: ProvisionedInstance,
        registry: ResourceRegistry,
        issuer: ICertificateIssuerService,
        outcome: DomainOutcome,
    ) -> None:
        """Point the domain at the instance for the duration of issuance only."""
        try:
            await self.dns_service.publish(domain, instance.public_ip, registry)
            outcome.dns_published = True
            outcome.issuance = await issuer.issue(domain)
        except IssuanceError:
            outcome.issuance = IssuanceState.FAILED
            raise
        finally:
            try:
                outcome.dns_retracted = await self.dns_service.retract(domain, instance.public_ip)
            except ChallengeError as e:
                self.logger.warning(f"{domain}: {str(e)}; teardown will retry")
                outcome.warnings.append(str(e))

    def _write_report(self, context: RunContext, result: RunResult) -> None:
        if self.store is None or context.report_dir is None:
            return
        try:
            result.report_path = str(write_run_report(self.store, context.report_dir, result.get_summary()))
            self.logger.info(f"Run report written to {result.report_path}")
        except Exception as e:
            result.add_error(self._handle_error("Could not write run report", e))

    def _log_summary(self, result: RunResult) -> None:
        self.logger.info(
            f"Run {result.run_tag} {result.status.value}: "
            f"{len(result.published_domains)} published, {len(result.failed_domains)} failed, "
            f"teardown {'clean' if result.teardown_clean else 'INCOMPLETE'}"
        )
