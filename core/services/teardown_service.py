"""Teardown reconciler: removes every ephemeral resource of a run."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List

from core.interfaces.dns_challenge_interface import IDNSChallengeService
from core.interfaces.teardown_interface import ITeardownService
from core.models.config import RunContext
from core.models.errors import TeardownError
from core.models.resource import ResourceKind, ResourceRegistry
from core.models.workflow import StepStatus, TeardownReport, TeardownStepResult
from core.utils.waiters import retrying
from infrastructure.aws.ec2_client import EC2Client
from infrastructure.aws.errors import is_dependency_violation, is_not_found
from infrastructure.aws.iam_client import IAMClient


GONE_STATES = ("shutting-down", "terminated")


def _union(*groups: List[str]) -> List[str]:
    merged = []
    for group in groups:
        for item in group:
            if item and item not in merged:
                merged.append(item)
    return merged


class TeardownService(ITeardownService):
    """Best-effort, idempotent removal driven by the registry and by tag rediscovery.

    Steps run in dependency order and never stop each other: a failed step is
    recorded in the report and the next step still runs.
    """

    def __init__(
        self,
        ec2_client: EC2Client,
        iam_client: IAMClient,
        dns_service: IDNSChallengeService,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        retry_attempts: int = 6,
        retry_delay: float = 10,
    ):
        self.ec2_client = ec2_client
        self.iam_client = iam_client
        self.dns_service = dns_service
        self.sleep = sleep
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.logger = logging.getLogger(__name__)

    async def reconcile(self, context: RunContext, registry: ResourceRegistry) -> TeardownReport:
        report = TeardownReport(run_tag=context.run_tag)
        self.logger.info(f"Tearing down run {context.run_tag} ({len(registry)} recorded resources)")

        terminate = await self._run_step(
            report, "terminate instances", self._terminate_instances(context, registry)
        )
        await self._run_step(report, "delete key pair", self._delete_key_pairs(context, registry))
        await self._run_step(
            report, "wait for termination", self._wait_for_termination(context, terminate.resource_ids)
        )
        await self._run_step(
            report, "delete security groups", self._delete_security_groups(context, registry)
        )
        await self._run_step(report, "delete network", self._delete_networks(context, registry))
        await self._run_step(report, "delete identity", self._delete_identity(context, registry))
        await self._run_step(report, "sweep dns records", self._sweep_dns_records(registry))

        verify = await self._run_step(report, "verify", self._verify(context, report))
        if verify.is_failed and not report.leftovers:
            self.logger.warning("Could not verify teardown; leftovers unknown")

        report.mark_finished()
        if report.is_clean:
            self.logger.info(f"Teardown of {context.run_tag} complete")
        else:
            failed = ", ".join(s.name for s in report.failed_steps) or "none"
            self.logger.error(
                f"Teardown of {context.run_tag} incomplete; failed steps: {failed}; "
                f"leftovers: {report.to_dict()['leftovers']}"
            )
        return report

    async def _run_step(self, report: TeardownReport, name: str, step) -> TeardownStepResult:
        try:
            result = await step
        except Exception as e:
            self.logger.error(f"Teardown step '{name}' failed: {str(e)}")
            result = TeardownStepResult(name=name, status=StepStatus.FAILED, detail=str(e))
        result.name = name
        return report.add(result)

    async def _rediscover(
        self, kind: str, lookup: Callable[[], Awaitable[List[Any]]], failures: List[str]
    ) -> List[Any]:
        """Tagged resources of one kind, or nothing when the lookup itself fails.

        The failure is noted so the step reports FAILED after the recorded ids
        have been handled.
        """
        try:
            return await lookup()
        except Exception as e:
            self.logger.warning(f"Tag rediscovery of {kind} failed, using recorded ids only: {str(e)}")
            failures.append(f"{kind} rediscovery failed: {str(e)}")
            return []

    def _step_outcome(self, deleted: List[str], failures: List[str]) -> TeardownStepResult:
        if failures:
            return TeardownStepResult("", StepStatus.FAILED, "; ".join(failures), deleted)
        if not deleted:
            return TeardownStepResult("", StepStatus.ALREADY_ABSENT)
        return TeardownStepResult("", StepStatus.SUCCEEDED, resource_ids=deleted)

    async def _terminate_instances(self, context: RunContext, registry: ResourceRegistry) -> TeardownStepResult:
        failures: List[str] = []
        tagged = await self._rediscover(
            "instances", lambda: self.ec2_client.find_instances_by_tag(context.run_tag), failures
        )
        candidates = [i["InstanceId"] for i in tagged]
        for instance_id in registry.ids(ResourceKind.INSTANCE):
            if instance_id in candidates:
                continue
            try:
                described = await self.ec2_client.describe_instances(instance_ids=[instance_id])
            except Exception as e:
                if is_not_found(e):
                    continue
                raise
            if described and described[0]["State"]["Name"] not in GONE_STATES:
                candidates.append(instance_id)

        if not candidates and not failures:
            return TeardownStepResult("", StepStatus.ALREADY_ABSENT, "no instances")

        terminated = []
        for instance_id in candidates:
            try:
                await self.ec2_client.terminate_instances([instance_id])
                terminated.append(instance_id)
            except Exception as e:
                if not is_not_found(e):
                    raise TeardownError(f"Could not terminate {instance_id}: {str(e)}") from e

        if terminated:
            self.logger.info(f"Terminating {', '.join(terminated)}")
        elif not failures:
            return TeardownStepResult("", StepStatus.ALREADY_ABSENT, "instances already gone")
        return self._step_outcome(terminated, failures)

    async def _delete_key_pairs(self, context: RunContext, registry: ResourceRegistry) -> TeardownStepResult:
        deleted = []
        for key_name in _union(registry.names(ResourceKind.KEY_PAIR), [context.run_tag]):
            if not await self.ec2_client.describe_key_pairs([key_name]):
                continue
            await self.ec2_client.delete_key_pair(key_name)
            deleted.append(key_name)

        if not deleted:
            return TeardownStepResult("", StepStatus.ALREADY_ABSENT)
        return TeardownStepResult("", StepStatus.SUCCEEDED, resource_ids=deleted)

    async def _wait_for_termination(self, context: RunContext, instance_ids: List[str]) -> TeardownStepResult:
        if not instance_ids:
            return TeardownStepResult("", StepStatus.SKIPPED, "nothing to wait for")

        timing = context.timing
        try:
            await self.ec2_client.wait_for_instance_state(
                instance_ids, "terminated", max_wait_time=timing.termination_timeout
            )
            return TeardownStepResult("", StepStatus.SUCCEEDED, resource_ids=list(instance_ids))
        except Exception as e:
            self.logger.warning(
                f"Termination waiter failed ({str(e)}); settling for {timing.post_termination_settle}s"
            )
            await self.sleep(timing.post_termination_settle)
            return TeardownStepResult(
                "", StepStatus.SUCCEEDED, "fell back to settle delay", list(instance_ids)
            )

    async def _delete_with_retry(self, operation, description: str):
        return await retrying(
            is_dependency_violation,
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            sleep=self.sleep,
            description=description,
        )(operation)

    async def _delete_security_groups(self, context: RunContext, registry: ResourceRegistry) -> TeardownStepResult:
        failures: List[str] = []
        group_ids = _union(
            registry.ids(ResourceKind.SECURITY_GROUP),
            await self._rediscover(
                "security groups",
                lambda: self.ec2_client.find_tagged_ids("security-group", context.run_tag),
                failures,
            ),
        )
        deleted = []
        for group_id in group_ids:
            try:
                await self._delete_with_retry(
                    lambda: self.ec2_client.delete_security_group(group_id),
                    f"Delete security group {group_id}",
                )
                deleted.append(group_id)
            except Exception as e:
                if not is_not_found(e):
                    raise TeardownError(f"Could not delete security group {group_id}: {str(e)}") from e

        return self._step_outcome(deleted, failures)

    async def _delete_networks(self, context: RunContext, registry: ResourceRegistry) -> TeardownStepResult:
        failures: List[str] = []
        vpc_ids = _union(
            registry.ids(ResourceKind.NETWORK),
            await self._rediscover(
                "networks", lambda: self.ec2_client.find_tagged_ids("vpc", context.run_tag), failures
            ),
        )
        deleted: List[str] = []
        errors = []
        for vpc_id in vpc_ids:
            try:
                deleted.extend(
                    await self._delete_with_retry(
                        lambda: self.ec2_client.delete_network(vpc_id), f"Delete network {vpc_id}"
                    )
                )
            except Exception as e:
                if not is_not_found(e):
                    errors.append(f"{vpc_id}: {str(e)}")

        # a gateway whose attach failed is not found through its VPC
        gateway_ids = _union(
            registry.ids(ResourceKind.INTERNET_GATEWAY),
            await self._rediscover(
                "internet gateways",
                lambda: self.ec2_client.find_tagged_ids("internet-gateway", context.run_tag),
                failures,
            ),
        )
        for igw_id in gateway_ids:
            if igw_id in deleted:
                continue
            try:
                await self.ec2_client.delete_internet_gateway(igw_id)
                deleted.append(igw_id)
            except Exception as e:
                if not is_not_found(e):
                    errors.append(f"{igw_id}: {str(e)}")

        if errors:
            raise TeardownError(f"Network cleanup incomplete: {'; '.join(errors + failures)}")
        return self._step_outcome(deleted, failures)

    async def _delete_identity(self, context: RunContext, registry: ResourceRegistry) -> TeardownStepResult:
        deleted = []
        errors = []

        async def attempt(description: str, operation) -> None:
            try:
                await self._delete_with_retry(operation, description)
                deleted.append(description)
            except Exception as e:
                if not is_not_found(e):
                    errors.append(f"{description}: {str(e)}")

        for profile in _union(registry.names(ResourceKind.INSTANCE_PROFILE), [context.run_tag]):
            await attempt(f"instance profile {profile}", lambda: self.iam_client.delete_instance_profile(profile))

        policies = [(context.run_tag, context.run_tag)]
        for handle in registry.handles(ResourceKind.IDENTITY_POLICY):
            pair = (handle.attributes.get("role", handle.name), handle.name or handle.resource_id)
            if pair not in policies:
                policies.insert(0, pair)
        for role, policy in policies:
            await attempt(
                f"policy {policy}", lambda: self.iam_client.delete_role_policy(role, policy)
            )

        for role in _union(registry.names(ResourceKind.IDENTITY_ROLE), [context.run_tag]):
            await attempt(f"role {role}", lambda: self.iam_client.delete_role(role))

        if errors:
            raise TeardownError(f"Identity cleanup incomplete: {'; '.join(errors)}")
        if not deleted:
            return TeardownStepResult("", StepStatus.ALREADY_ABSENT)
        return TeardownStepResult("", StepStatus.SUCCEEDED, resource_ids=deleted)

    async def _sweep_dns_records(self, registry: ResourceRegistry) -> TeardownStepResult:
        handles = registry.handles(ResourceKind.DNS_RECORD)
        if not handles:
            return TeardownStepResult("", StepStatus.SKIPPED, "no records published")

        removed = []
        for handle in handles:
            if handle.resource_id in removed:
                continue
            if await self.dns_service.retract(handle.resource_id, handle.attributes.get("value")):
                removed.append(handle.resource_id)

        if not removed:
            return TeardownStepResult("", StepStatus.ALREADY_ABSENT)
        return TeardownStepResult("", StepStatus.SUCCEEDED, resource_ids=removed)

    async def _verify(self, context: RunContext, report: TeardownReport) -> TeardownStepResult:
        run_tag = context.run_tag
        leftovers: Dict[str, List[str]] = {
            "instance": [
                i["InstanceId"] for i in await self.ec2_client.find_instances_by_tag(run_tag)
            ],
            "network": await self.ec2_client.find_tagged_ids("vpc", run_tag),
            "security-group": await self.ec2_client.find_tagged_ids("security-group", run_tag),
            "key-pair": [
                k["KeyName"] for k in await self.ec2_client.describe_key_pairs([run_tag])
            ],
            "identity-role": [run_tag] if await self.iam_client.role_exists(run_tag) else [],
        }
        report.leftovers = {kind: ids for kind, ids in leftovers.items() if ids}

        if report.leftovers:
            return TeardownStepResult(
                "", StepStatus.FAILED, "resources still present",
                [i for ids in report.leftovers.values() for i in ids],
            )
        return TeardownStepResult("", StepStatus.SUCCEEDED, "no tagged resources remain")
