"""Amazon Web Services adapter backed by boto3.

Every (service, region) call gets its own client built from one
``boto3.session.Session``; client construction is serialised because boto3
sessions are not thread-safe, while the clients themselves are.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote_plus

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cloudrecon.cloud.base import (
    RESOURCE_TYPE_ALL,
    ProviderTag,
    format_timestamp,
    operation_attempted,
    require_keys,
    takeover_attempted,
)
from cloudrecon.cloud.fanout import FanOut, Service, plan_units
from cloudrecon.config import Settings, get_settings
from cloudrecon.core.exceptions import (
    AdapterInitError,
    BadRequestError,
    UnsupportedResourceTypeError,
    UpstreamError,
)
from cloudrecon.core.logging import get_logger

logger = get_logger(__name__)

AWS_REGIONS: Tuple[str, ...] = (
    "us-east-1",
    "us-east-2",
    "us-west-1",
    "us-west-2",
    "eu-west-1",
    "eu-central-1",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-northeast-1",
    "ap-northeast-2",
    "ap-south-1",
    "ca-central-1",
    "sa-east-1",
)
DEFAULT_REGION = "us-east-1"

# resource_type -> result keys, in rendering order
RESOURCE_KEYS: Dict[str, Tuple[str, ...]] = {
    "ec2": ("instances",),
    "s3": ("buckets",),
    "iam": ("users", "roles"),
    "vpc": ("vpcs",),
    "route": ("routeTables",),
    "elb": ("elbs",),
    "eks": ("eksClusters",),
    "kms": ("kmsKeys",),
    "rds": ("rdsInstances",),
}

SSM_ROLE_NAME = "aws-key-tools-role"
SSM_PROFILE_NAME = "aws-key-tools-profile"
SSM_POLICY_ARN = "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore"
EC2_TRUST_POLICY = json.dumps(
    {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": "ec2.amazonaws.com"},
                "Action": "sts:AssumeRole",
            }
        ],
    }
)
ADMIN_POLICY = json.dumps(
    {
        "Version": "2012-10-17",
        "Statement": [{"Effect": "Allow", "Action": "*", "Resource": "*"}],
    }
)
FEDERATION_ENDPOINT = "https://signin.aws.amazon.com/federation"
CONSOLE_URL = "https://console.aws.amazon.com/"
FEDERATION_DURATION_SECONDS = 3600
PRESIGN_EXPIRY_SECONDS = 900

SEND_COMMAND_HINTS = (
    "Possible reasons:",
    "1. SSM Agent not installed or not running",
    "2. Instance has no internet connection",
    "3. Instance profile not yet in effect",
    "4. Security group does not allow SSM traffic",
    "5. Instance is not running",
    "Retry after about 10 minutes once the instance profile has propagated",
)

ESCALATION_PERMISSIONS = [
    "ec2:DescribeInstances",
    "s3:ListBuckets",
    "iam:ListUsers",
    "iam:ListRoles",
    "s3:GetBucketLocation",
    "s3:ListObjectsV2",
]
ESCALATION_PATHS = [
    "Create IAM user with admin privileges",
    "Modify existing IAM policies",
    "Access S3 buckets with sensitive data",
]
ESCALATION_ACTIONS = [
    "Checked IAM policies",
    "Checked EC2 instance profiles",
    "Checked S3 bucket policies",
]

# (service_name, region, timeout_seconds) -> boto3 client
ClientFactory = Callable[[str, str, float], Any]

_AWS_ERRORS = (ClientError, BotoCoreError)


def _session_client_factory(session: boto3.session.Session) -> ClientFactory:
    lock = threading.Lock()

    def factory(service_name: str, region: str, timeout: float) -> Any:
        config = Config(
            region_name=region,
            connect_timeout=min(timeout, 10),
            read_timeout=timeout,
            retries={"max_attempts": 2, "mode": "standard"},
            signature_version="s3v4" if service_name == "s3" else None,
        )
        with lock:
            return session.client(service_name, region_name=region, config=config)

    return factory


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "")
    return ""


class AWSProvider:
    """AWS implementation of the cloud provider capability set."""

    tag = ProviderTag.AWS

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        region: str = "",
        *,
        settings: Optional[Settings] = None,
        client_factory: Optional[ClientFactory] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        require_keys(self.tag, access_key, secret_key)
        settings = settings or get_settings()
        self.region = (region or "").strip()
        self.call_timeout = settings.cloud_call_timeout_seconds
        self.bulk_timeout = settings.cloud_bulk_timeout_seconds
        self.command_timeout = settings.cloud_command_timeout_seconds
        self.max_buckets = settings.s3_max_buckets
        self._fanout = FanOut(settings.cloud_fanout_workers, provider=self.tag)
        self._http = http_client
        self._sleep = sleep

        if client_factory is None:
            try:
                session = boto3.session.Session(
                    aws_access_key_id=access_key.strip(),
                    aws_secret_access_key=secret_key.strip(),
                )
            except BotoCoreError as exc:
                raise AdapterInitError(f"failed to initialise AWS session: {exc}", provider=self.tag) from exc
            client_factory = _session_client_factory(session)
        self._client_factory = client_factory

        self._services: Dict[str, Service] = {
            "instances": Service("instances", "EC2", self._list_instances),
            "buckets": Service(
                "buckets", "S3", self._list_buckets, regional=False, timeout=self.bulk_timeout
            ),
            "users": Service("users", "IAM Users", self._list_users, regional=False),
            "roles": Service("roles", "IAM Roles", self._list_roles, regional=False),
            "vpcs": Service("vpcs", "VPC", self._list_vpcs),
            "routeTables": Service("routeTables", "Route Tables", self._list_route_tables),
            "elbs": Service("elbs", "ELB", self._list_load_balancers),
            "eksClusters": Service("eksClusters", "EKS", self._list_eks_clusters),
            "kmsKeys": Service("kmsKeys", "KMS", self._list_kms_keys),
            "rdsInstances": Service("rdsInstances", "RDS", self._list_rds_instances),
        }

    def _client(self, service_name: str, region: Optional[str] = None, timeout: Optional[float] = None):
        return self._client_factory(
            service_name,
            region or self.region or DEFAULT_REGION,
            timeout or self.call_timeout,
        )

    # ------------------------------------------------------------------
    # enumerate
    # ------------------------------------------------------------------

    def enumerate(self, resource_type: str) -> Dict[str, Any]:
        if resource_type == RESOURCE_TYPE_ALL:
            keys = [key for keys in RESOURCE_KEYS.values() for key in keys]
        elif resource_type in RESOURCE_KEYS:
            keys = list(RESOURCE_KEYS[resource_type])
        else:
            raise UnsupportedResourceTypeError(resource_type)

        regions = [self.region] if self.region else list(AWS_REGIONS)
        units = plan_units([self._services[key] for key in keys], regions)
        logger.info(
            "Enumerating AWS resources",
            data={"resource_type": resource_type, "regions": len(regions), "units": len(units)},
        )
        return self._fanout.run(units)

    def _list_instances(self, region: Optional[str]) -> List[Dict[str, Any]]:
        client = self._client("ec2", region)
        instances = []
        for page in client.get_paginator("describe_instances").paginate():
            for reservation in page.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    instances.append(
                        {
                            "instanceId": instance.get("InstanceId", ""),
                            "instanceType": instance.get("InstanceType", ""),
                            "state": (instance.get("State") or {}).get("Name", ""),
                            "publicIp": instance.get("PublicIpAddress", ""),
                            "privateIp": instance.get("PrivateIpAddress", ""),
                            "tags": {t["Key"]: t.get("Value", "") for t in instance.get("Tags", [])},
                        }
                    )
        return instances

    def _bucket_region(self, client, bucket: str) -> str:
        try:
            location = client.get_bucket_location(Bucket=bucket).get("LocationConstraint")
        except _AWS_ERRORS:
            return DEFAULT_REGION
        if not location:
            return DEFAULT_REGION
        if location == "EU":
            return "eu-west-1"
        return location

    def _walk_objects(
        self,
        client,
        bucket: str,
        prefix: str = "",
        deadline: Optional[float] = None,
        strict: bool = False,
    ) -> List[Dict[str, Any]]:
        """Page through ListObjectsV2; errors stop pagination unless ``strict``."""
        objects: List[Dict[str, Any]] = []
        token = None
        while True:
            kwargs = {"Bucket": bucket, "Prefix": prefix}
            if token:
                kwargs["ContinuationToken"] = token
            try:
                page = client.list_objects_v2(**kwargs)
            except _AWS_ERRORS:
                if strict:
                    raise
                break
            for obj in page.get("Contents", []):
                objects.append(
                    {
                        "key": obj.get("Key", ""),
                        "size": obj.get("Size", 0),
                        "lastModified": format_timestamp(obj.get("LastModified")),
                        "eTag": obj.get("ETag", ""),
                    }
                )
            token = page.get("NextContinuationToken")
            if not page.get("IsTruncated") or not token:
                break
            if deadline is not None and time.monotonic() >= deadline:
                break
        return objects

    def _list_buckets(self, _region: Optional[str] = None) -> List[Dict[str, Any]]:
        deadline = time.monotonic() + self.bulk_timeout
        client = self._client("s3", DEFAULT_REGION, timeout=self.bulk_timeout)
        buckets = client.list_buckets().get("Buckets", [])

        records: List[Dict[str, Any]] = []
        processed = 0
        not_shown = 0
        for bucket in buckets:
            name = bucket["Name"]
            if processed >= self.max_buckets:
                # only buckets the region filter would have kept count as not shown
                if not self.region or self._bucket_region(client, name) == self.region:
                    not_shown += 1
                continue
            bucket_region = self._bucket_region(client, name)
            if self.region and bucket_region != self.region:
                continue

            record = {
                "bucketName": name,
                "creationDate": format_timestamp(bucket.get("CreationDate")),
                "region": bucket_region,
                "objects": [],
                "moreObjects": False,
            }
            if time.monotonic() < deadline:
                regional = self._client("s3", bucket_region, timeout=self.bulk_timeout)
                record["objects"] = self._walk_objects(regional, name, deadline=deadline)
            records.append(record)
            processed += 1

        if not_shown:
            records.append(
                {
                    "bucketName": f"... {not_shown} more buckets not shown",
                    "creationDate": "",
                    "region": "",
                    "objects": [],
                    "moreObjects": False,
                }
            )
        return records

    def _list_users(self, _region: Optional[str] = None) -> List[Dict[str, Any]]:
        client = self._client("iam", DEFAULT_REGION)
        users = []
        for page in client.get_paginator("list_users").paginate():
            for user in page.get("Users", []):
                users.append(
                    {"userName": user.get("UserName", ""), "userId": user.get("UserId", ""), "arn": user.get("Arn", "")}
                )
        return users

    def _list_roles(self, _region: Optional[str] = None) -> List[Dict[str, Any]]:
        client = self._client("iam", DEFAULT_REGION)
        roles = []
        for page in client.get_paginator("list_roles").paginate():
            for role in page.get("Roles", []):
                roles.append(
                    {"roleName": role.get("RoleName", ""), "roleId": role.get("RoleId", ""), "arn": role.get("Arn", "")}
                )
        return roles

    def _list_vpcs(self, region: Optional[str]) -> List[Dict[str, Any]]:
        client = self._client("ec2", region)
        vpcs = []
        for page in client.get_paginator("describe_vpcs").paginate():
            for vpc in page.get("Vpcs", []):
                vpcs.append(
                    {
                        "vpcId": vpc.get("VpcId", ""),
                        "cidrBlock": vpc.get("CidrBlock", ""),
                        "state": vpc.get("State", ""),
                        "isDefault": bool(vpc.get("IsDefault", False)),
                        "tags": {t["Key"]: t.get("Value", "") for t in vpc.get("Tags", [])},
                        "ownerId": vpc.get("OwnerId", ""),
                    }
                )
        return vpcs

    def _list_route_tables(self, region: Optional[str]) -> List[Dict[str, Any]]:
        client = self._client("ec2", region)
        tables = []
        for page in client.get_paginator("describe_route_tables").paginate():
            for table in page.get("RouteTables", []):
                routes = [
                    {
                        "destinationCidrBlock": route.get("DestinationCidrBlock", ""),
                        "gatewayId": route.get("GatewayId", ""),
                        "state": route.get("State", ""),
                    }
                    for route in table.get("Routes", [])
                ]
                tables.append(
                    {
                        "routeTableId": table.get("RouteTableId", ""),
                        "vpcId": table.get("VpcId", ""),
                        "routes": routes,
                        "tags": {t["Key"]: t.get("Value", "") for t in table.get("Tags", [])},
                    }
                )
        return tables

    def _list_load_balancers(self, region: Optional[str]) -> List[Dict[str, Any]]:
        client = self._client("elbv2", region)
        balancers = []
        for page in client.get_paginator("describe_load_balancers").paginate():
            for lb in page.get("LoadBalancers", []):
                balancers.append(
                    {
                        "loadBalancerName": lb.get("LoadBalancerName", ""),
                        "loadBalancerArn": lb.get("LoadBalancerArn", ""),
                        "type": lb.get("Type", ""),
                        "dnsName": lb.get("DNSName", ""),
                        "state": (lb.get("State") or {}).get("Code", ""),
                        "availabilityZones": [az.get("ZoneName", "") for az in lb.get("AvailabilityZones", [])],
                        "securityGroups": list(lb.get("SecurityGroups", [])),
                    }
                )
        return balancers

    def _list_eks_clusters(self, region: Optional[str]) -> List[Dict[str, Any]]:
        client = self._client("eks", region)
        clusters = []
        for page in client.get_paginator("list_clusters").paginate():
            for name in page.get("clusters", []):
                try:
                    cluster = client.describe_cluster(name=name)["cluster"]
                except _AWS_ERRORS:
                    continue
                clusters.append(
                    {
                        "name": cluster.get("name", name),
                        "arn": cluster.get("arn", ""),
                        "version": cluster.get("version", ""),
                        "status": cluster.get("status", ""),
                        "endpoint": cluster.get("endpoint", ""),
                        "roleArn": cluster.get("roleArn", ""),
                        "createdAt": format_timestamp(cluster.get("createdAt")),
                        "resourcesVpcConfig": cluster.get("resourcesVpcConfig", {}),
                    }
                )
        return clusters

    def _list_kms_keys(self, region: Optional[str]) -> List[Dict[str, Any]]:
        client = self._client("kms", region)
        keys = []
        for page in client.get_paginator("list_keys").paginate():
            for key in page.get("Keys", []):
                try:
                    meta = client.describe_key(KeyId=key["KeyId"])["KeyMetadata"]
                except _AWS_ERRORS:
                    continue
                keys.append(
                    {
                        "keyId": meta.get("KeyId", ""),
                        "arn": meta.get("Arn", ""),
                        "creationDate": format_timestamp(meta.get("CreationDate")),
                        "description": meta.get("Description", ""),
                        "keyState": meta.get("KeyState", ""),
                        "keyUsage": meta.get("KeyUsage", ""),
                    }
                )
        return keys

    def _list_rds_instances(self, region: Optional[str]) -> List[Dict[str, Any]]:
        client = self._client("rds", region)
        instances = []
        for page in client.get_paginator("describe_db_instances").paginate():
            for db in page.get("DBInstances", []):
                instances.append(
                    {
                        "dbInstanceIdentifier": db.get("DBInstanceIdentifier", ""),
                        "dbInstanceArn": db.get("DBInstanceArn", ""),
                        "dbInstanceClass": db.get("DBInstanceClass", ""),
                        "engine": db.get("Engine", ""),
                        "engineVersion": db.get("EngineVersion", ""),
                        "status": db.get("DBInstanceStatus", ""),
                        "endpoint": (db.get("Endpoint") or {}).get("Address", ""),
                        "allocatedStorage": db.get("AllocatedStorage", 0),
                        "multiAZ": bool(db.get("MultiAZ", False)),
                        "backupRetentionPeriod": db.get("BackupRetentionPeriod", 0),
                        "vpcSecurityGroups": [
                            sg.get("VpcSecurityGroupId", "") for sg in db.get("VpcSecurityGroups", [])
                        ],
                    }
                )
        return instances

    # ------------------------------------------------------------------
    # identity
    # ------------------------------------------------------------------

    def _identify(self) -> Tuple[str, str, Optional[Dict[str, Any]]]:
        """Return ``(user_type, user_name, user)`` from ``iam:GetUser``."""
        try:
            user = self._client("iam", DEFAULT_REGION).get_user().get("User") or {}
        except _AWS_ERRORS as exc:
            text = str(exc)
            if "User: arn:aws:iam::" in text and ":root is not found" in text:
                return "Root User", "root", None
            if "AccessDenied" in text or _error_code(exc) == "AccessDenied":
                return "Unknown", "Unknown (Access Denied)", None
            return "IAM User", "Unknown", None
        return "IAM User", user.get("UserName") or "Unknown", user

    def _is_root(self) -> bool:
        user_type, _, _ = self._identify()
        return user_type == "Root User"

    def escalate(self) -> Dict[str, Any]:
        user_type, user_name, _ = self._identify()
        return {
            "user": user_name,
            "userType": user_type,
            "role": "None",
            "permissions": list(ESCALATION_PERMISSIONS),
            "potentialEscalation": list(ESCALATION_PATHS),
            "riskLevel": "Medium",
            "message": "Privilege escalation attempted",
            "actions": list(ESCALATION_ACTIONS),
        }

    def get_permissions(self) -> Dict[str, Any]:
        user_type, user_name, user = self._identify()
        if user_type == "IAM User" and user:
            try:
                response = self._client("iam", DEFAULT_REGION).list_attached_user_policies(UserName=user["UserName"])
                permissions = [p.get("PolicyName", "") for p in response.get("AttachedPolicies", [])]
            except _AWS_ERRORS as exc:
                permissions = ["Access Denied"] if "AccessDenied" in str(exc) else []
        elif user_type == "Root User":
            permissions = ["All Permissions"]
        else:
            permissions = ["Unknown"]
        return {
            "message": "Permissions retrieved",
            "userType": user_type,
            "userName": user_name,
            "permissions": permissions,
        }

    def validate_credentials(self) -> bool:
        try:
            self._client("sts", DEFAULT_REGION).get_caller_identity()
        except _AWS_ERRORS as exc:
            logger.info("AWS credential validation failed", data={"error": str(exc)})
            return False
        return True

    def takeover(self) -> Dict[str, Any]:
        return takeover_attempted()

    # ------------------------------------------------------------------
    # operate
    # ------------------------------------------------------------------

    def operate(
        self,
        resource_type: str,
        action: str,
        resource_id: str,
        params: Dict[str, Any],
    ) -> Dict[str, Any]:
        params = dict(params or {})
        if action == "federated_login":
            return self._federated_login()
        if resource_type == "ec2" and action == "execute_command":
            return self._execute_command(resource_id, params)
        if resource_type == "s3" and action == "list_objects":
            return self._list_objects(resource_id, params)
        if resource_type == "s3" and action == "download":
            return self._download(resource_id, params)
        return operation_attempted(resource_type, action, resource_id, params)

    def _list_objects(self, bucket: str, params: Dict[str, Any]) -> Dict[str, Any]:
        prefix = params.get("prefix") if isinstance(params.get("prefix"), str) else ""
        try:
            client = self._client("s3", DEFAULT_REGION)
            region = self._bucket_region(client, bucket)
            objects = self._walk_objects(self._client("s3", region), bucket, prefix, strict=True)
        except _AWS_ERRORS as exc:
            raise UpstreamError(f"failed to list S3 objects: {exc}", provider=self.tag) from exc
        return {"message": "S3 objects listed successfully", "bucket": bucket, "objects": objects}

    def _download(self, bucket: str, params: Dict[str, Any]) -> Dict[str, Any]:
        key = params.get("key")
        if not isinstance(key, str) or not key:
            raise BadRequestError("key is required")
        try:
            region = self._bucket_region(self._client("s3", DEFAULT_REGION), bucket)
            url = self._client("s3", region).generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=PRESIGN_EXPIRY_SECONDS,
            )
        except _AWS_ERRORS as exc:
            raise UpstreamError(f"failed to generate presigned URL: {exc}", provider=self.tag) from exc
        return {
            "message": "Download URL generated",
            "bucket": bucket,
            "key": key,
            "region": region,
            "download_url": url,
        }

    def _signin_token(self, session_json: str) -> str:
        params = {"Action": "getSigninToken", "Session": session_json}
        try:
            if self._http is not None:
                response = self._http.get(FEDERATION_ENDPOINT, params=params, timeout=self.call_timeout)
            else:
                with httpx.Client(timeout=self.call_timeout) as client:
                    response = client.get(FEDERATION_ENDPOINT, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamError(f"failed to get signin token: {exc}", provider=self.tag) from exc
        token = payload.get("SigninToken") if isinstance(payload, dict) else None
        if not token:
            raise UpstreamError("SigninToken not found in response", provider=self.tag)
        return token

    def _federation_url(self, credentials: Dict[str, Any]) -> str:
        session_json = json.dumps(
            {
                "sessionId": credentials["AccessKeyId"],
                "sessionKey": credentials["SecretAccessKey"],
                "sessionToken": credentials["SessionToken"],
            }
        )
        token = self._signin_token(session_json)
        return (
            f"{FEDERATION_ENDPOINT}?Action=login&Issuer=aws_federal_login"
            f"&Destination={quote_plus(CONSOLE_URL)}&SigninToken={token}"
        )

    def _federated_login(self) -> Dict[str, Any]:
        region = self.region or DEFAULT_REGION
        try:
            response = self._client("sts", region).get_federation_token(
                Name="federated-user",
                DurationSeconds=FEDERATION_DURATION_SECONDS,
                Policy=ADMIN_POLICY,
            )
        except _AWS_ERRORS as exc:
            raise UpstreamError(f"failed to get federation token: {exc}", provider=self.tag) from exc

        credentials = response["Credentials"]
        login_url = self._federation_url(credentials)
        return {
            "message": "Federated login successful",
            "federated_login_url": login_url,
            "region": region,
            "access_key": credentials["AccessKeyId"],
            "secret_key": credentials["SecretAccessKey"],
            "session_token": credentials["SessionToken"],
            "expiration": format_timestamp(credentials.get("Expiration")),
            "federated": True,
            "is_root": self._is_root(),
        }

    def _aws_step(self, description: str, call: Callable, **kwargs):
        try:
            return call(**kwargs)
        except _AWS_ERRORS as exc:
            raise UpstreamError(f"failed to {description}: {exc}", provider=self.tag) from exc

    def _exists(self, call: Callable, **kwargs) -> bool:
        try:
            call(**kwargs)
        except ClientError as exc:
            if _error_code(exc) == "NoSuchEntity":
                return False
            raise
        return True

    def _ensure_ssm_profile(self, instance: Dict[str, Any], ec2, iam, steps: List[str]) -> None:
        """Attach an instance profile carrying the SSM core policy when none is present."""
        if instance.get("IamInstanceProfile"):
            steps.append("Instance already has an instance profile")
            return

        if not self._exists(iam.get_role, RoleName=SSM_ROLE_NAME):
            self._aws_step(
                "create role",
                iam.create_role,
                RoleName=SSM_ROLE_NAME,
                AssumeRolePolicyDocument=EC2_TRUST_POLICY,
            )
            self._aws_step("attach policy", iam.attach_role_policy, RoleName=SSM_ROLE_NAME, PolicyArn=SSM_POLICY_ARN)
            steps.append(f"Created role {SSM_ROLE_NAME}")

        if not self._exists(iam.get_instance_profile, InstanceProfileName=SSM_PROFILE_NAME):
            self._aws_step("create instance profile", iam.create_instance_profile, InstanceProfileName=SSM_PROFILE_NAME)
            self._aws_step(
                "add role to instance profile",
                iam.add_role_to_instance_profile,
                InstanceProfileName=SSM_PROFILE_NAME,
                RoleName=SSM_ROLE_NAME,
            )
            steps.append(f"Created instance profile {SSM_PROFILE_NAME}")

        # IAM is eventually consistent; the profile is not usable right away.
        self._sleep(5)
        last_error: Optional[Exception] = None
        for attempt in range(3):
            try:
                iam.get_instance_profile(InstanceProfileName=SSM_PROFILE_NAME)
                last_error = None
                break
            except _AWS_ERRORS as exc:
                last_error = exc
                if attempt < 2:
                    self._sleep(2)
        if last_error is not None:
            raise UpstreamError(f"failed to get instance profile: {last_error}", provider=self.tag)

        self._sleep(10)
        self._aws_step(
            "associate instance profile",
            ec2.associate_iam_instance_profile,
            IamInstanceProfile={"Name": SSM_PROFILE_NAME},
            InstanceId=instance.get("InstanceId", ""),
        )
        steps.append(f"Associated {SSM_PROFILE_NAME} with the instance")

    def _execute_command(self, instance_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        command = params.get("command")
        if not isinstance(command, str) or not command:
            raise BadRequestError("command is required")
        region = params.get("region")
        if not isinstance(region, str) or not region:
            region = self.region or DEFAULT_REGION

        ec2 = self._client("ec2", region)
        iam = self._client("iam", region)
        ssm = self._client("ssm", region, timeout=self.command_timeout)
        steps: List[str] = []

        def failed(message: str, error: str, **extra: Any) -> Dict[str, Any]:
            return {
                "message": message,
                "instanceId": instance_id,
                **extra,
                "status": "failed",
                "error": error,
                "executionSteps": steps,
            }

        steps.append("Checking instance state...")
        try:
            described = ec2.describe_instances(InstanceIds=[instance_id])
        except _AWS_ERRORS as exc:
            steps.append(f"Instance state check failed: {exc}")
            return failed("Failed to check instance status", str(exc))

        reservations = described.get("Reservations") or []
        if not reservations or not reservations[0].get("Instances"):
            steps.append("Instance does not exist")
            return failed("Instance not found", "Instance not found")

        instance = reservations[0]["Instances"][0]
        state = (instance.get("State") or {}).get("Name", "")
        if state != "running":
            steps.append(f"Instance is not running, current state: {state}")
            return failed(
                "Instance is not in running state",
                f"Instance is not in running state, current state: {state}",
            )
        steps.append("Instance state check passed: running")

        steps.append("Checking instance profile...")
        try:
            self._ensure_ssm_profile(instance, ec2, iam, steps)
        except (UpstreamError, ClientError, BotoCoreError) as exc:
            steps.append(f"Instance profile check failed: {exc}")
            return failed("Failed to check or create instance profile", str(exc))
        steps.append("Instance profile check complete")

        steps.append("Sending command...")
        try:
            sent = ssm.send_command(
                InstanceIds=[instance_id],
                DocumentName="AWS-RunShellScript",
                Parameters={"commands": [command]},
            )
        except _AWS_ERRORS as exc:
            steps.append(f"Sending command failed: {exc}")
            steps.extend(SEND_COMMAND_HINTS)
            return failed(
                "Failed to send command",
                f"{exc}. {' '.join(SEND_COMMAND_HINTS[:6])}",
                command=command,
            )

        command_id = sent["Command"]["CommandId"]
        steps.append(f"Command sent, CommandId: {command_id}")
        steps.append("Waiting for command output...")
        self._sleep(3)

        steps.append("Fetching command result...")
        try:
            invocation = ssm.get_command_invocation(CommandId=command_id, InstanceId=instance_id)
        except _AWS_ERRORS as exc:
            steps.append(f"Fetching command result failed: {exc}")
            return failed(
                "Command sent but failed to get result",
                str(exc),
                commandId=command_id,
                command=command,
                note="Failed to get command execution result. Use the command ID to check status later.",
            )

        stdout = invocation.get("StandardOutputContent") or ""
        stderr = invocation.get("StandardErrorContent") or ""
        steps.append("Command output:")
        steps.append(stdout)
        if stderr:
            steps.append("Error output:")
            steps.append(stderr)

        result: Dict[str, Any] = {
            "message": "Command executed successfully",
            "instanceId": instance_id,
            "commandId": command_id,
            "command": command,
            "status": invocation.get("Status", ""),
            "stdout": stdout,
            "executionSteps": steps,
        }
        if stderr:
            result["stderr"] = stderr
        if invocation.get("ExecutionStartDateTime"):
            result["startTime"] = format_timestamp(invocation["ExecutionStartDateTime"])
        if invocation.get("ExecutionEndDateTime"):
            result["endTime"] = format_timestamp(invocation["ExecutionEndDateTime"])
        return result
