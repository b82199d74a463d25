"""AWS IAM client for roles, instance profiles and server certificates."""

import json
from typing import List, Dict, Any, Optional

from botocore.exceptions import ClientError
from .errors import is_not_found
from .session_manager import AWSSessionManager
from core.utils.logger import get_infrastructure_logger


EC2_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ec2.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}


class IAMClient:
    """AWS IAM client wrapper."""

    def __init__(
        self,
        session_manager: Optional[AWSSessionManager] = None,
        role_arn: Optional[str] = None,
        run_mode: str = "local",
        client=None,
    ):
        self.role_arn = role_arn
        self.run_mode = run_mode
        self.logger = get_infrastructure_logger(__name__)
        self._client = client
        self._session_manager = session_manager or AWSSessionManager()

    def _ensure_client(self) -> None:
        if self._client is None:
            session = self._session_manager.get_session(role_arn=self.role_arn, run_mode=self.run_mode)
            self._client = session.client("iam")

    def _handle_error(self, operation: str, error: Exception) -> None:
        """Centralized error handling and logging."""
        if isinstance(error, ClientError):
            error_code = error.response["Error"]["Code"]
            if is_not_found(error):
                self.logger.info(f"{operation}: {error_code}")
            else:
                self.logger.error(f"{operation} failed: {error_code}")
        else:
            self.logger.error(f"{operation} failed: {str(error)}")
        raise error

    async def create_role(self, role_name: str, tags: List[Dict[str, str]]) -> str:
        """Create an EC2-assumable role; an existing role is reused. Returns the ARN."""
        try:
            self._ensure_client()
            try:
                response = self._client.create_role(
                    RoleName=role_name,
                    AssumeRolePolicyDocument=json.dumps(EC2_TRUST_POLICY),
                    Description="Temporary role for certificate issuance",
                    Tags=tags,
                )
                self.logger.info(f"Created IAM role {role_name}")
            except ClientError as e:
                if e.response["Error"]["Code"] != "EntityAlreadyExists":
                    raise
                response = self._client.get_role(RoleName=role_name)
                self.logger.info(f"Reusing IAM role {role_name}")
            return response["Role"]["Arn"]
        except Exception as e:
            self._handle_error("Create role", e)

    async def put_role_policy(self, role_name: str, policy_name: str, document: Dict[str, Any]) -> None:
        """Attach (or replace) an inline policy on a role."""
        try:
            self._ensure_client()
            self._client.put_role_policy(
                RoleName=role_name,
                PolicyName=policy_name,
                PolicyDocument=json.dumps(document),
            )
        except Exception as e:
            self._handle_error("Put role policy", e)

    async def create_instance_profile(
        self, profile_name: str, role_name: str, tags: List[Dict[str, str]], max_wait_time: int = 120
    ) -> str:
        """Create an instance profile holding the role and wait until it exists."""
        try:
            self._ensure_client()
            try:
                response = self._client.create_instance_profile(
                    InstanceProfileName=profile_name, Tags=tags
                )
            except ClientError as e:
                if e.response["Error"]["Code"] != "EntityAlreadyExists":
                    raise
                response = self._client.get_instance_profile(InstanceProfileName=profile_name)

            profile = response["InstanceProfile"]
            if not any(r["RoleName"] == role_name for r in profile.get("Roles", [])):
                self._client.add_role_to_instance_profile(
                    InstanceProfileName=profile_name, RoleName=role_name
                )

            self._client.get_waiter("instance_profile_exists").wait(
                InstanceProfileName=profile_name,
                WaiterConfig={"Delay": 2, "MaxAttempts": max(1, max_wait_time // 2)},
            )
            return profile["Arn"]
        except Exception as e:
            self._handle_error("Create instance profile", e)

    async def role_exists(self, role_name: str) -> bool:
        try:
            self._ensure_client()
            self._client.get_role(RoleName=role_name)
            return True
        except ClientError as e:
            if is_not_found(e):
                return False
            self._handle_error("Get role", e)

    async def delete_instance_profile(self, profile_name: str) -> None:
        """Detach every role from the profile, then delete it."""
        try:
            self._ensure_client()
            profile = self._client.get_instance_profile(InstanceProfileName=profile_name)
            for role in profile["InstanceProfile"].get("Roles", []):
                self._client.remove_role_from_instance_profile(
                    InstanceProfileName=profile_name, RoleName=role["RoleName"]
                )
            self._client.delete_instance_profile(InstanceProfileName=profile_name)
        except Exception as e:
            self._handle_error("Delete instance profile", e)

    async def delete_role_policy(self, role_name: str, policy_name: str) -> None:
        try:
            self._ensure_client()
            self._client.delete_role_policy(RoleName=role_name, PolicyName=policy_name)
        except Exception as e:
            self._handle_error("Delete role policy", e)

    async def delete_role(self, role_name: str) -> None:
        try:
            self._ensure_client()
            self._client.delete_role(RoleName=role_name)
        except Exception as e:
            self._handle_error("Delete role", e)

    async def upload_server_certificate(
        self,
        name: str,
        certificate_body: str,
        private_key: str,
        certificate_chain: str,
        path: str,
    ) -> Dict[str, Any]:
        """Upload a certificate bundle. Returns its metadata (ARN, id)."""
        try:
            self._ensure_client()
            params = {
                "Path": path,
                "ServerCertificateName": name,
                "CertificateBody": certificate_body,
                "PrivateKey": private_key,
            }
            if certificate_chain:
                params["CertificateChain"] = certificate_chain
            response = self._client.upload_server_certificate(**params)
            return response["ServerCertificateMetadata"]
        except Exception as e:
            self._handle_error("Upload server certificate", e)

    async def delete_server_certificate(self, name: str) -> None:
        try:
            self._ensure_client()
            self._client.delete_server_certificate(ServerCertificateName=name)
        except Exception as e:
            self._handle_error("Delete server certificate", e)
