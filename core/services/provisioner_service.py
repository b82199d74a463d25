"""Infrastructure provisioner service implementation."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from core.interfaces.provisioner_interface import IProvisionerService
from core.models.config import RunContext
from core.models.errors import ProvisioningError
from core.models.instance import InstanceStatus, ProvisionedInstance, ReadinessSignal
from core.models.resource import ResourceKind, ResourceRegistry
from core.utils.waiters import poll_until, retrying
from infrastructure.aws.ec2_client import EC2Client
from infrastructure.aws.errors import error_code
from infrastructure.aws.iam_client import IAMClient
from infrastructure.aws.ssm_client import SSMClient
from infrastructure.remote.port_check import wait_for_port
from infrastructure.remote.ssm_shell import SSMRemoteShell


SSM_AGENT_ACTIONS = [
    "ssm:UpdateInstanceInformation",
    "ssmmessages:CreateControlChannel",
    "ssmmessages:CreateDataChannel",
    "ssmmessages:OpenControlChannel",
    "ssmmessages:OpenDataChannel",
    "ec2messages:AcknowledgeMessage",
    "ec2messages:DeleteMessage",
    "ec2messages:FailMessage",
    "ec2messages:GetEndpoint",
    "ec2messages:GetMessages",
    "ec2messages:SendReply",
]


def build_role_policy(context: RunContext) -> Dict[str, Any]:
    """Inline policy: publish server certificates under the trust-store path, talk to SSM."""
    path = context.trust_store_path.rstrip("/")
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "PublishServerCertificates",
                "Effect": "Allow",
                "Action": [
                    "iam:UploadServerCertificate",
                    "iam:DeleteServerCertificate",
                    "iam:GetServerCertificate",
                ],
                "Resource": f"arn:aws:iam::*:server-certificate{path}/*",
            },
            {
                "Sid": "SystemsManagerAgent",
                "Effect": "Allow",
                "Action": SSM_AGENT_ACTIONS,
                "Resource": "*",
            },
        ],
    }


class ProvisionerService(IProvisionerService):
    """Creates the ephemeral host and waits until it can run commands."""

    def __init__(
        self,
        ec2_client: EC2Client,
        iam_client: IAMClient,
        ssm_client: SSMClient,
        port_waiter: Callable[..., Awaitable[float]] = wait_for_port,
        shell_factory: Optional[Callable[[str], SSMRemoteShell]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ec2_client = ec2_client
        self.iam_client = iam_client
        self.ssm_client = ssm_client
        self.port_waiter = port_waiter
        self.shell_factory = shell_factory or (lambda instance_id: SSMRemoteShell(ssm_client, instance_id))
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

    async def provision(self, context: RunContext, registry: ResourceRegistry) -> ProvisionedInstance:
        step = "register key pair"
        try:
            key_name = await self._register_key_pair(context, registry)

            step = "create identity"
            role_arn, profile_name = await self._create_identity(context, registry)

            step = "create network"
            vpc_id, subnet_id = await self._create_network(context, registry)

            step = "create security group"
            group_id = await self._create_security_group(context, vpc_id, registry)

            step = "launch instance"
            instance = await self._launch_instance(
                context, registry, key_name, subnet_id, group_id, profile_name
            )
            instance.vpc_id = vpc_id
            instance.role_arn = role_arn

            step = "wait for reachability"
            await self._wait_until_reachable(context, instance)

            step = "wait for readiness"
            instance.readiness = await self._wait_until_ready(context, instance)

            self.logger.info(
                f"Instance {instance.instance_id} ready at {instance.public_ip} "
                f"({instance.readiness.value})"
            )
            return instance

        except ProvisioningError:
            raise
        except Exception as e:
            self.logger.error(f"Provisioning failed during {step}: {str(e)}")
            raise ProvisioningError(f"Provisioning failed during {step}: {str(e)}") from e

    async def _register_key_pair(self, context: RunContext, registry: ResourceRegistry) -> str:
        key_path = Path(context.aws.public_key_file).expanduser()
        try:
            material = key_path.read_bytes()
        except OSError as e:
            raise ProvisioningError(f"Cannot read public key {key_path}: {e.strerror or e}") from e
        if not material.strip():
            raise ProvisioningError(f"Public key {key_path} is empty")

        key_name = context.run_tag
        registry.record(ResourceKind.KEY_PAIR, key_name, name=key_name)
        await self.ec2_client.import_key_pair(key_name, material, context.tags)
        return key_name

    async def _create_identity(self, context: RunContext, registry: ResourceRegistry):
        name = context.run_tag
        registry.record(ResourceKind.IDENTITY_ROLE, name, name=name)
        role_arn = await self.iam_client.create_role(name, context.tags)

        registry.record(ResourceKind.IDENTITY_POLICY, name, name=name, role=name)
        await self.iam_client.put_role_policy(name, name, build_role_policy(context))

        registry.record(ResourceKind.INSTANCE_PROFILE, name, name=name, role=name)
        await self.iam_client.create_instance_profile(name, name, context.tags)

        self.logger.info(f"Identity ready: role {role_arn}, instance profile {name}")
        return role_arn, name

    async def _create_network(self, context: RunContext, registry: ResourceRegistry):
        vpc_ids = await self.ec2_client.find_tagged_ids("vpc", context.run_tag)
        subnet_ids = await self.ec2_client.find_tagged_ids("subnet", context.run_tag)
        if vpc_ids and subnet_ids:
            registry.record(ResourceKind.NETWORK, vpc_ids[0])
            registry.record(ResourceKind.SUBNET, subnet_ids[0], vpc_id=vpc_ids[0])
            self.logger.info(f"Reusing tagged network {vpc_ids[0]} / {subnet_ids[0]}")
            return vpc_ids[0], subnet_ids[0]

        vpc_cidr = context.aws.vpc_cidr
        subnet_cidr = context.aws.subnet_cidr or vpc_cidr

        vpc_id = await self.ec2_client.create_vpc(vpc_cidr, context.tags)
        registry.record(ResourceKind.NETWORK, vpc_id)
        await self.ec2_client.wait_for_vpc(vpc_id)

        subnet_id = await self.ec2_client.create_subnet(
            vpc_id, subnet_cidr, context.aws.zone, context.tags
        )
        registry.record(ResourceKind.SUBNET, subnet_id, vpc_id=vpc_id)
        await self.ec2_client.enable_public_ip_on_launch(subnet_id)

        igw_id = await self.ec2_client.create_internet_gateway(context.tags)
        registry.record(ResourceKind.INTERNET_GATEWAY, igw_id, vpc_id=vpc_id)
        await self.ec2_client.attach_internet_gateway(igw_id, vpc_id)

        route_table_id = await self.ec2_client.create_route_table(vpc_id, context.tags)
        registry.record(ResourceKind.ROUTE_TABLE, route_table_id, vpc_id=vpc_id)
        await self.ec2_client.route_to_internet(route_table_id, igw_id, subnet_id)

        self.logger.info(f"Network ready: {vpc_id} / {subnet_id} via {igw_id}")
        return vpc_id, subnet_id

    async def _create_security_group(
        self, context: RunContext, vpc_id: str, registry: ResourceRegistry
    ) -> str:
        existing = await self.ec2_client.find_tagged_ids("security-group", context.run_tag)
        if existing:
            registry.record(ResourceKind.SECURITY_GROUP, existing[0], name=context.run_tag, vpc_id=vpc_id)
            self.logger.info(f"Reusing tagged security group {existing[0]}")
            return existing[0]

        group_id = await self.ec2_client.create_security_group(
            context.run_tag,
            f"Temporary security group for {context.run_tag} certificate issuance",
            vpc_id,
            context.tags,
        )
        registry.record(ResourceKind.SECURITY_GROUP, group_id, name=context.run_tag, vpc_id=vpc_id)
        await self.ec2_client.authorize_ingress(group_id, context.ingress_ports)
        return group_id

    async def _launch_instance(
        self,
        context: RunContext,
        registry: ResourceRegistry,
        key_name: str,
        subnet_id: str,
        group_id: str,
        profile_name: str,
    ) -> ProvisionedInstance:
        """Converge to exactly one tagged instance."""
        existing = await self.ec2_client.find_instances_by_tag(
            context.run_tag, states=["pending", "running"]
        )
        for extra in existing[1:]:
            registry.record(ResourceKind.INSTANCE, extra["InstanceId"])
        if len(existing) > 1:
            surplus = [i["InstanceId"] for i in existing[1:]]
            self.logger.warning(f"Terminating surplus tagged instances: {', '.join(surplus)}")
            await self.ec2_client.terminate_instances(surplus)

        if existing:
            raw = existing[0]
            registry.record(ResourceKind.INSTANCE, raw["InstanceId"])
            image_id = raw.get("ImageId", "")
            reused = True
            self.logger.info(f"Reusing tagged instance {raw['InstanceId']}")
        else:
            image_id = context.aws.image_id or await self.ec2_client.find_latest_image(
                context.aws.image_name, context.aws.image_owner
            )

            async def launch():
                return await self.ec2_client.run_instance(
                    image_id=image_id,
                    instance_type=context.aws.instance_type,
                    key_name=key_name,
                    subnet_id=subnet_id,
                    security_group_id=group_id,
                    instance_profile=profile_name,
                    tags=context.tags,
                )

            # a fresh instance profile is not visible to EC2 straight away
            raw = await retrying(
                lambda e: error_code(e) == "InvalidParameterValue",
                attempts=6,
                delay=5,
                sleep=self.sleep,
                description="Launch instance",
            )(launch)
            registry.record(ResourceKind.INSTANCE, raw["InstanceId"])
            reused = False
            self.logger.info(f"Launched instance {raw['InstanceId']} from {image_id}")

        instance_id = raw["InstanceId"]
        await self.ec2_client.wait_for_instance_state(
            [instance_id], "running", max_wait_time=context.timing.termination_timeout
        )
        described = await self.ec2_client.describe_instances(instance_ids=[instance_id])
        details = described[0] if described else raw
        public_ip = details.get("PublicIpAddress")
        if not public_ip:
            raise ProvisioningError(f"Instance {instance_id} has no public address")

        return ProvisionedInstance(
            instance_id=instance_id,
            public_ip=public_ip,
            image_id=image_id,
            key_name=key_name,
            vpc_id="",
            subnet_id=subnet_id,
            security_group_id=group_id,
            instance_profile=profile_name,
            status=InstanceStatus.from_aws(details.get("State", {}).get("Name")),
            reused=reused,
        )

    async def _wait_until_reachable(self, context: RunContext, instance: ProvisionedInstance) -> None:
        timing = context.timing
        try:
            elapsed = await self.port_waiter(
                instance.public_ip,
                22,
                delay=timing.ssh_initial_delay,
                timeout=timing.ssh_timeout,
                poll_interval=timing.ssh_poll_interval,
            )
        except TimeoutError as e:
            raise ProvisioningError(
                f"Instance {instance.instance_id} not reachable on port 22 "
                f"within {timing.ssh_timeout}s"
            ) from e
        self.logger.info(f"Port 22 open on {instance.public_ip} after {elapsed:.0f}s")

    async def _wait_until_ready(
        self, context: RunContext, instance: ProvisionedInstance
    ) -> ReadinessSignal:
        """Prefer real readiness signals; fall back to the fixed settle delay."""
        timing = context.timing

        async def agent_online() -> bool:
            return await self.ssm_client.get_ping_status(instance.instance_id) == "Online"

        try:
            await poll_until(
                agent_online,
                timing.agent_ready_timeout,
                poll_interval=10,
                description=f"SSM agent on {instance.instance_id}",
            )
        except TimeoutError:
            self.logger.warning(
                f"No agent signal from {instance.instance_id}; "
                f"settling for {timing.post_ssh_settle}s"
            )
            await self.sleep(timing.post_ssh_settle)
            return ReadinessSignal.FIXED_DELAY

        shell = self.shell_factory(instance.instance_id)
        result = await shell.run("cloud-init status --wait", timeout=timing.command_timeout)
        # exit 2 is "done with recoverable errors"
        if result.exit_code in (0, 2):
            return ReadinessSignal.CLOUD_INIT

        self.logger.warning(
            f"cloud-init status unavailable ({result.status}, exit {result.exit_code}); "
            f"settling for {timing.post_ssh_settle}s"
        )
        await self.sleep(timing.post_ssh_settle)
        return ReadinessSignal.AGENT_ONLINE
