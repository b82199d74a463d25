from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError, WaiterError

from infrastructure.aws import session_manager as session_manager_module
from infrastructure.aws.ec2_client import EC2Client
from infrastructure.aws.errors import is_dependency_violation, is_not_found
from infrastructure.aws.iam_client import IAMClient
from infrastructure.aws.route53_client import Route53Client
from infrastructure.aws.session_manager import AWSSessionManager
from infrastructure.aws.ssm_client import SSMClient
from infrastructure.remote.ssm_shell import RemoteCommandError, SSMRemoteShell

from fakes import client_error


class TestErrorClassification:
    def test_not_found(self):
        assert is_not_found(client_error("InvalidVpcID.NotFound"))
        assert is_not_found(client_error("NoSuchEntity"))
        assert not is_not_found(client_error("DependencyViolation"))
        assert not is_not_found(ValueError("NoSuchEntity"))

    def test_dependency_violation(self):
        assert is_dependency_violation(client_error("DependencyViolation"))
        assert is_dependency_violation(client_error("DeleteConflict"))
        assert not is_dependency_violation(client_error("Throttling"))


class TestEC2Client:
    """Test cases for the EC2 wrapper."""

    def setup_method(self):
        self.boto = MagicMock()
        self.client = EC2Client("us-east-1", client=self.boto)

    @pytest.mark.asyncio
    async def test_import_key_pair_reuses_duplicate(self):
        self.boto.import_key_pair.side_effect = client_error("InvalidKeyPair.Duplicate")
        self.boto.describe_key_pairs.return_value = {"KeyPairs": [{"KeyPairId": "key-1"}]}

        assert await self.client.import_key_pair("certrun-1", b"ssh-rsa AAA", []) == "key-1"

    @pytest.mark.asyncio
    async def test_describe_missing_key_pair(self):
        self.boto.describe_key_pairs.side_effect = client_error("InvalidKeyPair.NotFound")

        assert await self.client.describe_key_pairs(["certrun-1"]) == []

    @pytest.mark.asyncio
    async def test_errors_are_reraised(self):
        self.boto.create_vpc.side_effect = client_error("VpcLimitExceeded")

        with pytest.raises(ClientError):
            await self.client.create_vpc("10.0.0.0/24", [])

    @pytest.mark.asyncio
    async def test_create_vpc_tags(self):
        self.boto.create_vpc.return_value = {"Vpc": {"VpcId": "vpc-1"}}
        tags = [{"Key": "Name", "Value": "certrun-1"}]

        assert await self.client.create_vpc("10.0.0.0/24", tags) == "vpc-1"
        tag_spec = self.boto.create_vpc.call_args.kwargs["TagSpecifications"]
        assert tag_spec == [{"ResourceType": "vpc", "Tags": tags}]

    @pytest.mark.asyncio
    async def test_find_latest_image(self):
        self.boto.describe_images.return_value = {"Images": [
            {"ImageId": "ami-old", "CreationDate": "2023-01-01T00:00:00.000Z"},
            {"ImageId": "ami-new", "CreationDate": "2024-06-01T00:00:00.000Z"},
        ]}

        assert await self.client.find_latest_image("ubuntu/*", "099720109477") == "ami-new"

    @pytest.mark.asyncio
    async def test_find_latest_image_none(self):
        self.boto.describe_images.return_value = {"Images": []}

        with pytest.raises(LookupError):
            await self.client.find_latest_image("ubuntu/*", "099720109477")

    @pytest.mark.asyncio
    async def test_find_tagged_ids(self):
        self.boto.describe_security_groups.return_value = {"SecurityGroups": [{"GroupId": "sg-1"}]}

        assert await self.client.find_tagged_ids("security-group", "certrun-1") == ["sg-1"]
        filters = self.boto.describe_security_groups.call_args.kwargs["Filters"]
        assert filters == [{"Name": "tag:Name", "Values": ["certrun-1"]}]

    @pytest.mark.asyncio
    async def test_delete_network_cascade(self):
        """Dependents go first and the main route table is left to the VPC."""
        self.boto.describe_route_tables.return_value = {"RouteTables": [
            {"RouteTableId": "rtb-main", "Associations": [{"Main": True, "RouteTableAssociationId": "a-0"}]},
            {"RouteTableId": "rtb-1", "Associations": [{"Main": False, "RouteTableAssociationId": "a-1"}]},
        ]}
        self.boto.describe_subnets.return_value = {"Subnets": [{"SubnetId": "subnet-1"}]}
        self.boto.describe_internet_gateways.return_value = {
            "InternetGateways": [{"InternetGatewayId": "igw-1"}]
        }
        self.boto.delete_subnet.side_effect = client_error("InvalidSubnetID.NotFound")

        deleted = await self.client.delete_network("vpc-1")

        assert deleted == ["rtb-1", "subnet-1", "igw-1", "vpc-1"]
        self.boto.disassociate_route_table.assert_called_once_with(AssociationId="a-1")
        self.boto.delete_route_table.assert_called_once_with(RouteTableId="rtb-1")
        self.boto.detach_internet_gateway.assert_called_once_with(InternetGatewayId="igw-1", VpcId="vpc-1")
        self.boto.delete_vpc.assert_called_once_with(VpcId="vpc-1")

    @pytest.mark.asyncio
    async def test_delete_network_dependency_violation_propagates(self):
        self.boto.describe_route_tables.return_value = {"RouteTables": []}
        self.boto.describe_subnets.return_value = {"Subnets": []}
        self.boto.describe_internet_gateways.return_value = {"InternetGateways": []}
        self.boto.delete_vpc.side_effect = client_error("DependencyViolation")

        with pytest.raises(ClientError) as excinfo:
            await self.client.delete_network("vpc-1")
        assert is_dependency_violation(excinfo.value)

    @pytest.mark.asyncio
    async def test_run_instance(self):
        self.boto.run_instances.return_value = {"Instances": [{"InstanceId": "i-1"}]}

        raw = await self.client.run_instance("ami-1", "t3.micro", "key", "subnet-1", "sg-1", "profile", [])

        assert raw["InstanceId"] == "i-1"
        params = self.boto.run_instances.call_args.kwargs
        assert params["MinCount"] == params["MaxCount"] == 1
        assert params["IamInstanceProfile"] == {"Name": "profile"}
        assert params["NetworkInterfaces"][0]["AssociatePublicIpAddress"] is True

    @pytest.mark.asyncio
    async def test_waiter_failure_is_timeout(self):
        self.boto.waiter_names = ["instance_terminated"]
        self.boto.get_waiter.return_value.wait.side_effect = WaiterError(
            name="InstanceTerminated", reason="Max attempts exceeded", last_response={}
        )

        with pytest.raises(TimeoutError):
            await self.client.wait_for_instance_state(["i-1"], "terminated", max_wait_time=30)


class TestIAMClient:
    """Test cases for the IAM wrapper."""

    def setup_method(self):
        self.boto = MagicMock()
        self.client = IAMClient(client=self.boto)

    @pytest.mark.asyncio
    async def test_create_role_reuses_existing(self):
        self.boto.create_role.side_effect = client_error("EntityAlreadyExists")
        self.boto.get_role.return_value = {"Role": {"Arn": "arn:aws:iam::1:role/certrun-1"}}

        assert await self.client.create_role("certrun-1", []) == "arn:aws:iam::1:role/certrun-1"

    @pytest.mark.asyncio
    async def test_create_instance_profile_adds_role_once(self):
        self.boto.create_instance_profile.return_value = {
            "InstanceProfile": {"Arn": "arn:profile", "Roles": []}
        }

        assert await self.client.create_instance_profile("certrun-1", "certrun-1", []) == "arn:profile"
        self.boto.add_role_to_instance_profile.assert_called_once_with(
            InstanceProfileName="certrun-1", RoleName="certrun-1"
        )
        self.boto.get_waiter.assert_called_once_with("instance_profile_exists")

    @pytest.mark.asyncio
    async def test_delete_instance_profile_detaches_roles(self):
        self.boto.get_instance_profile.return_value = {
            "InstanceProfile": {"Roles": [{"RoleName": "certrun-1"}]}
        }

        await self.client.delete_instance_profile("certrun-1")

        self.boto.remove_role_from_instance_profile.assert_called_once_with(
            InstanceProfileName="certrun-1", RoleName="certrun-1"
        )
        self.boto.delete_instance_profile.assert_called_once_with(InstanceProfileName="certrun-1")

    @pytest.mark.asyncio
    async def test_role_exists(self):
        self.boto.get_role.side_effect = client_error("NoSuchEntity")

        assert await self.client.role_exists("certrun-1") is False

    @pytest.mark.asyncio
    async def test_upload_without_chain(self):
        self.boto.upload_server_certificate.return_value = {
            "ServerCertificateMetadata": {"Arn": "arn:cert", "ServerCertificateId": "ASCA1"}
        }

        metadata = await self.client.upload_server_certificate("a-example-com", "CERT", "KEY", "", "/a.example.com/")

        assert metadata["Arn"] == "arn:cert"
        params = self.boto.upload_server_certificate.call_args.kwargs
        assert "CertificateChain" not in params
        assert params["Path"] == "/a.example.com/"


class TestRoute53Client:
    """Test cases for the Route 53 wrapper."""

    def setup_method(self):
        self.boto = MagicMock()
        self.client = Route53Client(client=self.boto)

    @pytest.mark.asyncio
    async def test_find_public_zone(self):
        self.boto.list_hosted_zones_by_name.return_value = {"HostedZones": [
            {"Id": "/hostedzone/ZPRIVATE", "Name": "example.com.", "Config": {"PrivateZone": True}},
            {"Id": "/hostedzone/ZPUBLIC", "Name": "example.com.", "Config": {"PrivateZone": False}},
            {"Id": "/hostedzone/ZOTHER", "Name": "example.org.", "Config": {}},
        ]}

        assert await self.client.find_hosted_zone_id("example.com") == "ZPUBLIC"
        assert await self.client.find_hosted_zone_id("example.net") is None

    @pytest.mark.asyncio
    async def test_get_record_requires_exact_match(self):
        self.boto.list_resource_record_sets.return_value = {"ResourceRecordSets": [
            {"Name": "b.example.com.", "Type": "A", "ResourceRecords": []},
        ]}

        assert await self.client.get_record("Z1", "a.example.com") is None

    @pytest.mark.asyncio
    async def test_upsert_payload(self):
        self.boto.change_resource_record_sets.return_value = {"ChangeInfo": {"Id": "/change/C1"}}

        assert await self.client.upsert_a_record("Z1", "a.example.com", "203.0.113.10", 7200) == "/change/C1"
        change = self.boto.change_resource_record_sets.call_args.kwargs["ChangeBatch"]["Changes"][0]
        assert change["Action"] == "UPSERT"
        assert change["ResourceRecordSet"] == {
            "Name": "a.example.com.",
            "Type": "A",
            "TTL": 7200,
            "ResourceRecords": [{"Value": "203.0.113.10"}],
        }

    @pytest.mark.asyncio
    async def test_wait_for_change_timeout(self):
        self.boto.get_waiter.return_value.wait.side_effect = WaiterError(
            name="ResourceRecordSetsChanged", reason="Max attempts exceeded", last_response={}
        )

        with pytest.raises(TimeoutError):
            await self.client.wait_for_change("/change/C1", max_wait_time=20, delay=10)


class TestSSMRemoteShell:
    """Test cases for command execution over Systems Manager."""

    def setup_method(self):
        self.ssm = MagicMock()
        self.ssm.send_command = AsyncMock(return_value={"command_id": "cmd-1"})
        self.ssm.wait_for_command = AsyncMock()
        self.shell = SSMRemoteShell(self.ssm, "i-1", timeout=60)

    @pytest.mark.asyncio
    async def test_run(self):
        self.ssm.wait_for_command.return_value = {
            "status": "Success", "response_code": 0, "standard_output": "ok\n"
        }

        result = await self.shell.run("echo ok", working_directory="/tmp")

        assert result.ok and result.stdout == "ok\n"
        kwargs = self.ssm.send_command.call_args.kwargs
        assert kwargs["commands"] == ["echo ok"]
        assert kwargs["working_directory"] == "/tmp"
        assert kwargs["timeout_seconds"] == 60

    @pytest.mark.asyncio
    async def test_run_check_raises(self):
        self.ssm.wait_for_command.return_value = {
            "status": "Failed", "response_code": 1, "standard_error": "cat: nope\n"
        }

        with pytest.raises(RemoteCommandError, match="cat: nope"):
            await self.shell.read_file("/nope")

    @pytest.mark.asyncio
    async def test_path_exists_quotes_path(self):
        self.ssm.wait_for_command.return_value = {"status": "Failed", "response_code": 1}

        assert await self.shell.path_exists("/etc/my dir/cert.pem") is False
        assert self.ssm.send_command.call_args.kwargs["commands"] == ["test -e '/etc/my dir/cert.pem'"]


class TestSSMClient:
    @pytest.mark.asyncio
    async def test_ping_status(self):
        boto = MagicMock()
        boto.describe_instance_information.return_value = {
            "InstanceInformationList": [{"PingStatus": "Online"}]
        }

        assert await SSMClient("us-east-1", client=boto).get_ping_status("i-1") == "Online"

    @pytest.mark.asyncio
    async def test_unregistered(self):
        boto = MagicMock()
        boto.describe_instance_information.return_value = {"InstanceInformationList": []}

        assert await SSMClient("us-east-1", client=boto).get_ping_status("i-1") is None

    @pytest.mark.asyncio
    async def test_send_command(self):
        boto = MagicMock()
        boto.send_command.return_value = {"Command": {"CommandId": "cmd-1"}}

        sent = await SSMClient("us-east-1", client=boto).send_command(
            ["i-1"], ["certbot --version"], working_directory="/tmp", timeout_seconds=900
        )

        assert sent["command_id"] == "cmd-1"
        params = boto.send_command.call_args.kwargs
        assert params["DocumentName"] == "AWS-RunShellScript"
        assert params["Parameters"]["workingDirectory"] == ["/tmp"]
        assert params["Parameters"]["executionTimeout"] == ["900"]


class TestAWSSessionManager:
    """Test cases for session selection."""

    @pytest.fixture
    def boto3_mock(self, monkeypatch):
        mock = MagicMock()
        monkeypatch.setattr(session_manager_module, "boto3", mock)
        monkeypatch.setattr(AWSSessionManager, "_sessions", {})
        return mock

    def test_local_session_uses_profile(self, boto3_mock):
        AWSSessionManager(region="eu-west-1", profile_name="certs").get_session()

        boto3_mock.Session.assert_called_once_with(region_name="eu-west-1", profile_name="certs")

    def test_assume_role(self, boto3_mock):
        sts = boto3_mock.Session.return_value.client.return_value
        sts.assume_role.return_value = {"Credentials": {
            "AccessKeyId": "AKIA", "SecretAccessKey": "secret", "SessionToken": "token",
        }}

        AWSSessionManager(region="eu-west-1").get_session(role_arn="arn:aws:iam::123456789012:role/certs")

        assert sts.assume_role.call_args.kwargs["RoleArn"] == "arn:aws:iam::123456789012:role/certs"
        assert boto3_mock.Session.call_args.kwargs["aws_session_token"] == "token"

    def test_assume_role_failure(self, boto3_mock):
        boto3_mock.Session.return_value.client.return_value.assume_role.side_effect = client_error("AccessDenied")

        with pytest.raises(RuntimeError, match="Role assumption failed"):
            AWSSessionManager().get_session(role_arn="arn:aws:iam::123456789012:role/certs")

    def test_pipeline_requires_environment(self, boto3_mock, monkeypatch):
        monkeypatch.delenv("AWS_ACCESS_KEY_ID", raising=False)
        monkeypatch.delenv("AWS_SECRET_ACCESS_KEY", raising=False)

        with pytest.raises(ValueError, match="AWS_ACCESS_KEY_ID"):
            AWSSessionManager().get_session(run_mode="pipeline")

    def test_pipeline_session_cached(self, boto3_mock, monkeypatch):
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
        manager = AWSSessionManager()

        assert manager.get_session(run_mode="pipeline") is manager.get_session(run_mode="pipeline")
        assert boto3_mock.Session.call_count == 1

    def test_unknown_mode(self, boto3_mock):
        with pytest.raises(ValueError, match="Unsupported run_mode"):
            AWSSessionManager().get_session(run_mode="lambda")
