"""AWS EC2 client for network, key pair and instance lifecycle operations."""

import asyncio
from typing import List, Dict, Any, Optional, Sequence
from datetime import datetime

from botocore.exceptions import ClientError, WaiterError
from .errors import is_not_found
from .session_manager import AWSSessionManager
from core.utils.logger import get_infrastructure_logger


ACTIVE_INSTANCE_STATES = ["pending", "running", "stopping", "stopped"]

# resource type -> (describe call, response key, id field)
_TAGGED_RESOURCES = {
    "vpc": ("describe_vpcs", "Vpcs", "VpcId"),
    "subnet": ("describe_subnets", "Subnets", "SubnetId"),
    "internet-gateway": ("describe_internet_gateways", "InternetGateways", "InternetGatewayId"),
    "route-table": ("describe_route_tables", "RouteTables", "RouteTableId"),
    "security-group": ("describe_security_groups", "SecurityGroups", "GroupId"),
}


def tag_specification(resource_type: str, tags: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    return [{"ResourceType": resource_type, "Tags": list(tags)}]


class EC2Client:
    """AWS EC2 client wrapper for the ephemeral certificate host."""

    def __init__(
        self,
        region: str,
        session_manager: Optional[AWSSessionManager] = None,
        role_arn: Optional[str] = None,
        run_mode: str = "local",
        client=None,
    ):
        self.region = region
        self.role_arn = role_arn
        self.run_mode = run_mode
        self.logger = get_infrastructure_logger(__name__)
        self._client = client
        self._session_manager = session_manager or AWSSessionManager(region=region)

    def _ensure_client(self) -> None:
        """Ensure the EC2 client is initialized (lazy initialization)."""
        if self._client is None:
            session = self._session_manager.get_session(role_arn=self.role_arn, run_mode=self.run_mode)
            self._client = session.client("ec2", region_name=self.region)

    def _handle_error(self, operation: str, error: Exception) -> None:
        """Handle AWS client errors with consistent logging."""
        if isinstance(error, ClientError):
            error_code = error.response["Error"]["Code"]
            if is_not_found(error):
                self.logger.info(f"{operation}: {error_code}")
            else:
                self.logger.error(f"{operation} failed: {error_code}")
        else:
            self.logger.error(f"{operation} failed: {str(error)}")
        raise error

    # Key pairs

    async def import_key_pair(
        self, key_name: str, public_key_material: bytes, tags: List[Dict[str, str]]
    ) -> str:
        """Import a public key; an existing pair with the same name is reused."""
        try:
            self._ensure_client()
            try:
                response = self._client.import_key_pair(
                    KeyName=key_name,
                    PublicKeyMaterial=public_key_material,
                    TagSpecifications=tag_specification("key-pair", tags),
                )
                self.logger.info(f"Imported key pair {key_name}")
                return response["KeyPairId"]
            except ClientError as e:
                if e.response["Error"]["Code"] != "InvalidKeyPair.Duplicate":
                    raise
                existing = self._client.describe_key_pairs(KeyNames=[key_name])["KeyPairs"]
                self.logger.info(f"Reusing existing key pair {key_name}")
                return existing[0]["KeyPairId"]
        except Exception as e:
            self._handle_error("Import key pair", e)

    async def describe_key_pairs(self, key_names: List[str]) -> List[Dict[str, Any]]:
        """Describe key pairs by name; missing names yield an empty list."""
        try:
            self._ensure_client()
            response = self._client.describe_key_pairs(KeyNames=key_names)
            return response["KeyPairs"]
        except ClientError as e:
            if is_not_found(e):
                return []
            self._handle_error("Describe key pairs", e)
        except Exception as e:
            self._handle_error("Describe key pairs", e)

    async def delete_key_pair(self, key_name: str) -> None:
        try:
            self._ensure_client()
            self._client.delete_key_pair(KeyName=key_name)
        except Exception as e:
            self._handle_error("Delete key pair", e)

    # Images

    async def describe_images(
        self,
        image_ids: Optional[List[str]] = None,
        owners: Optional[List[str]] = None,
        filters: Optional[List[Dict[str, Any]]] = None,
    ) -> List[Dict[str, Any]]:
        """Describe AMI images."""
        try:
            self._ensure_client()
            params = {}
            if image_ids:
                params["ImageIds"] = image_ids
            if owners:
                params["Owners"] = owners
            if filters:
                params["Filters"] = filters

            response = self._client.describe_images(**params)
            return response["Images"]
        except Exception as e:
            self._handle_error("Describe images", e)

    async def find_latest_image(self, name_pattern: str, owner: str) -> str:
        """Newest available image whose name matches the pattern."""
        images = await self.describe_images(
            owners=[owner],
            filters=[
                {"Name": "name", "Values": [name_pattern]},
                {"Name": "state", "Values": ["available"]},
            ],
        )
        if not images:
            raise LookupError(f"No image matches {name_pattern!r} for owner {owner}")
        images.sort(key=lambda image: image.get("CreationDate", ""), reverse=True)
        return images[0]["ImageId"]

    # Network. Every create returns its id before any follow-up call, so the
    # caller can record it even when the follow-up fails.

    async def create_vpc(self, cidr_block: str, tags: List[Dict[str, str]]) -> str:
        try:
            self._ensure_client()
            response = self._client.create_vpc(
                CidrBlock=cidr_block, TagSpecifications=tag_specification("vpc", tags)
            )
            return response["Vpc"]["VpcId"]
        except Exception as e:
            self._handle_error("Create VPC", e)

    async def wait_for_vpc(self, vpc_id: str) -> None:
        try:
            self._ensure_client()
            self._client.get_waiter("vpc_available").wait(VpcIds=[vpc_id])
        except Exception as e:
            self._handle_error("Wait for VPC", e)

    async def create_subnet(
        self, vpc_id: str, cidr_block: str, availability_zone: str, tags: List[Dict[str, str]]
    ) -> str:
        try:
            self._ensure_client()
            response = self._client.create_subnet(
                VpcId=vpc_id,
                CidrBlock=cidr_block,
                AvailabilityZone=availability_zone,
                TagSpecifications=tag_specification("subnet", tags),
            )
            return response["Subnet"]["SubnetId"]
        except Exception as e:
            self._handle_error("Create subnet", e)

    async def enable_public_ip_on_launch(self, subnet_id: str) -> None:
        try:
            self._ensure_client()
            self._client.modify_subnet_attribute(
                SubnetId=subnet_id, MapPublicIpOnLaunch={"Value": True}
            )
        except Exception as e:
            self._handle_error("Modify subnet", e)

    async def create_internet_gateway(self, tags: List[Dict[str, str]]) -> str:
        try:
            self._ensure_client()
            response = self._client.create_internet_gateway(
                TagSpecifications=tag_specification("internet-gateway", tags)
            )
            return response["InternetGateway"]["InternetGatewayId"]
        except Exception as e:
            self._handle_error("Create internet gateway", e)

    async def attach_internet_gateway(self, igw_id: str, vpc_id: str) -> None:
        try:
            self._ensure_client()
            self._client.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)
        except Exception as e:
            self._handle_error("Attach internet gateway", e)

    async def create_route_table(self, vpc_id: str, tags: List[Dict[str, str]]) -> str:
        try:
            self._ensure_client()
            response = self._client.create_route_table(
                VpcId=vpc_id, TagSpecifications=tag_specification("route-table", tags)
            )
            return response["RouteTable"]["RouteTableId"]
        except Exception as e:
            self._handle_error("Create route table", e)

    async def route_to_internet(self, route_table_id: str, igw_id: str, subnet_id: str) -> None:
        """Send 0.0.0.0/0 through the gateway and associate the table with the subnet."""
        try:
            self._ensure_client()
            self._client.create_route(
                RouteTableId=route_table_id,
                DestinationCidrBlock="0.0.0.0/0",
                GatewayId=igw_id,
            )
            self._client.associate_route_table(RouteTableId=route_table_id, SubnetId=subnet_id)
        except Exception as e:
            self._handle_error("Create default route", e)

    async def create_security_group(
        self, name: str, description: str, vpc_id: str, tags: List[Dict[str, str]]
    ) -> str:
        try:
            self._ensure_client()
            response = self._client.create_security_group(
                GroupName=name,
                Description=description,
                VpcId=vpc_id,
                TagSpecifications=tag_specification("security-group", tags),
            )
            return response["GroupId"]
        except Exception as e:
            self._handle_error("Create security group", e)

    async def authorize_ingress(
        self, group_id: str, ports: Sequence[int], cidr_ip: str = "0.0.0.0/0"
    ) -> None:
        """Admit TCP on ``ports`` from ``cidr_ip``."""
        try:
            self._ensure_client()
            self._client.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[
                    {
                        "IpProtocol": "tcp",
                        "FromPort": port,
                        "ToPort": port,
                        "IpRanges": [{"CidrIp": cidr_ip}],
                    }
                    for port in ports
                ],
            )
        except Exception as e:
            self._handle_error("Authorize ingress", e)

    async def find_tagged_ids(self, resource_type: str, run_tag: str) -> List[str]:
        """Ids of network resources carrying ``Name=<run_tag>``."""
        try:
            self._ensure_client()
            method, key, id_field = _TAGGED_RESOURCES[resource_type]
            response = getattr(self._client, method)(
                Filters=[{"Name": "tag:Name", "Values": [run_tag]}]
            )
            return [item[id_field] for item in response[key]]
        except Exception as e:
            self._handle_error(f"Find tagged {resource_type}", e)

    async def delete_security_group(self, group_id: str) -> None:
        try:
            self._ensure_client()
            self._client.delete_security_group(GroupId=group_id)
        except Exception as e:
            self._handle_error("Delete security group", e)

    async def delete_network(self, vpc_id: str) -> List[str]:
        """Delete a VPC after its route tables, subnets and gateways.

        Returns the ids deleted along the way. Pieces already gone are skipped.
        """
        try:
            self._ensure_client()
            deleted = []
            vpc_filter = [{"Name": "vpc-id", "Values": [vpc_id]}]

            for table in self._client.describe_route_tables(Filters=vpc_filter)["RouteTables"]:
                if any(assoc.get("Main") for assoc in table.get("Associations", [])):
                    continue
                for assoc in table.get("Associations", []):
                    self._ignore_missing(
                        self._client.disassociate_route_table,
                        AssociationId=assoc["RouteTableAssociationId"],
                    )
                self._ignore_missing(
                    self._client.delete_route_table, RouteTableId=table["RouteTableId"]
                )
                deleted.append(table["RouteTableId"])

            for subnet in self._client.describe_subnets(Filters=vpc_filter)["Subnets"]:
                self._ignore_missing(self._client.delete_subnet, SubnetId=subnet["SubnetId"])
                deleted.append(subnet["SubnetId"])

            gateways = self._client.describe_internet_gateways(
                Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}]
            )["InternetGateways"]
            for gateway in gateways:
                igw_id = gateway["InternetGatewayId"]
                self._ignore_missing(
                    self._client.detach_internet_gateway, InternetGatewayId=igw_id, VpcId=vpc_id
                )
                self._ignore_missing(self._client.delete_internet_gateway, InternetGatewayId=igw_id)
                deleted.append(igw_id)

            self._client.delete_vpc(VpcId=vpc_id)
            deleted.append(vpc_id)
            return deleted
        except Exception as e:
            self._handle_error("Delete network", e)

    async def delete_internet_gateway(self, igw_id: str) -> None:
        """Delete a gateway that may have outlived its VPC."""
        try:
            self._ensure_client()
            gateway = self._client.describe_internet_gateways(InternetGatewayIds=[igw_id])
            for attachment in gateway["InternetGateways"][0].get("Attachments", []):
                self._ignore_missing(
                    self._client.detach_internet_gateway,
                    InternetGatewayId=igw_id,
                    VpcId=attachment["VpcId"],
                )
            self._client.delete_internet_gateway(InternetGatewayId=igw_id)
        except Exception as e:
            self._handle_error("Delete internet gateway", e)

    def _ignore_missing(self, call, **params) -> None:
        try:
            call(**params)
        except ClientError as e:
            if not is_not_found(e):
                raise

    # Instances

    async def run_instance(
        self,
        image_id: str,
        instance_type: str,
        key_name: str,
        subnet_id: str,
        security_group_id: str,
        instance_profile: str,
        tags: List[Dict[str, str]],
    ) -> Dict[str, Any]:
        """Launch exactly one instance with a public address."""
        try:
            self._ensure_client()
            response = self._client.run_instances(
                ImageId=image_id,
                InstanceType=instance_type,
                KeyName=key_name,
                MinCount=1,
                MaxCount=1,
                IamInstanceProfile={"Name": instance_profile},
                NetworkInterfaces=[
                    {
                        "DeviceIndex": 0,
                        "SubnetId": subnet_id,
                        "Groups": [security_group_id],
                        "AssociatePublicIpAddress": True,
                    }
                ],
                TagSpecifications=tag_specification("instance", tags),
                DisableApiTermination=False,
            )
            return response["Instances"][0]
        except Exception as e:
            self._handle_error("Run instance", e)

    async def describe_instances(
        self,
        instance_ids: Optional[List[str]] = None,
        filters: Optional[List[Dict[str, Any]]] = None,
    ) -> List[Dict[str, Any]]:
        """Describe EC2 instances with optional filtering."""
        try:
            self._ensure_client()
            params = {}
            if instance_ids:
                params["InstanceIds"] = instance_ids
            if filters:
                params["Filters"] = filters

            instances = []
            paginator = self._client.get_paginator("describe_instances")
            for page in paginator.paginate(**params):
                for reservation in page["Reservations"]:
                    instances.extend(reservation["Instances"])

            return instances
        except Exception as e:
            self._handle_error("Describe instances", e)

    async def find_instances_by_tag(
        self, run_tag: str, states: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """Instances tagged ``Name=<run_tag>`` in the given states."""
        return await self.describe_instances(
            filters=[
                {"Name": "tag:Name", "Values": [run_tag]},
                {"Name": "instance-state-name", "Values": states or ACTIVE_INSTANCE_STATES},
            ]
        )

    async def terminate_instances(self, instance_ids: List[str]) -> Dict[str, Any]:
        """Terminate EC2 instances."""
        try:
            self._ensure_client()
            response = self._client.terminate_instances(InstanceIds=instance_ids)
            return {
                "terminating_instances": response["TerminatingInstances"],
                "timestamp": datetime.utcnow().isoformat(),
            }
        except Exception as e:
            self._handle_error("Terminate instances", e)

    async def wait_for_instance_state(
        self, instance_ids: List[str], target_state: str, max_wait_time: int = 600
    ) -> Dict[str, Any]:
        """Wait for instances to reach target state."""
        try:
            self._ensure_client()
            waiter_name = f"instance_{target_state}"

            if waiter_name in self._client.waiter_names:
                waiter = self._client.get_waiter(waiter_name)
                waiter.wait(
                    InstanceIds=instance_ids,
                    WaiterConfig={"Delay": 15, "MaxAttempts": max(1, max_wait_time // 15)},
                )
            else:
                await self._poll_instance_state(instance_ids, target_state, max_wait_time)

            return {
                "instance_ids": instance_ids,
                "target_state": target_state,
                "success": True,
                "timestamp": datetime.utcnow().isoformat(),
            }
        except WaiterError as e:
            self.logger.error(f"Wait for instance state failed: {str(e)}")
            raise TimeoutError(
                f"Instances did not reach state '{target_state}' within {max_wait_time} seconds"
            ) from e
        except Exception as e:
            self._handle_error("Wait for instance state", e)

    async def _poll_instance_state(
        self, instance_ids: List[str], target_state: str, max_wait_time: int
    ) -> None:
        """Poll instance state manually."""
        start_time = datetime.utcnow()
        poll_interval = 15

        while (datetime.utcnow() - start_time).total_seconds() < max_wait_time:
            try:
                instances = await self.describe_instances(instance_ids=instance_ids)
                if all(instance["State"]["Name"] == target_state for instance in instances):
                    return
            except ClientError as e:
                self.logger.debug(f"Polling instance state: {e.response['Error']['Code']}")
            await asyncio.sleep(poll_interval)

        raise TimeoutError(
            f"Instances did not reach state '{target_state}' within {max_wait_time} seconds"
        )
