"""
AWS resource handlers.

Each handler owns one resource kind and talks to one AWS service through
aioboto3. ``create`` returns the identity AWS assigns (VPC id, ARN, ...);
``update`` converges the attributes AWS allows to change in place.

Creation must be safe to retry. Tags travel with the create call, resources
with a natural name are adopted when they already exist, and follow-up calls
run inside ``created`` so a failure after the resource exists hands its
identity back to the engine.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, ClassVar, Dict

import aioboto3
import structlog

from stackpilot.core.errors import ProviderError
from stackpilot.providers.base import (
    aws_errors,
    created,
    error_code,
    map_params,
    require,
    tag_list,
    tag_specifications,
)
from stackpilot.specs.models import ResourceKind

logger = structlog.get_logger()


class AwsHandler:
    """Base class holding the aioboto3 session shared by AWS handlers."""

    kind: ClassVar[ResourceKind]
    service: ClassVar[str]

    def __init__(
        self,
        session: Any | None = None,
        *,
        region: str = "us-east-1",
        profile: str | None = None,
    ) -> None:
        self.region = region
        self._session = session or aioboto3.Session(region_name=region, profile_name=profile)

    @asynccontextmanager
    async def client(self) -> AsyncIterator[Any]:
        async with self._session.client(self.service, region_name=self.region) as client:
            yield client

    async def _tag(self, client: Any, resource_id: str, tags: Dict[str, Any] | None) -> None:
        if tags:
            async with aws_errors("ec2.create_tags"):
                await client.create_tags(Resources=[resource_id], Tags=tag_list(tags))


class NetworkHandler(AwsHandler):
    """VPC."""

    kind = ResourceKind.NETWORK
    service = "ec2"

    async def create(self, config: Dict[str, Any]) -> str:
        cidr = require(config, "cidr_block", self.kind)
        async with self.client() as ec2:
            async with aws_errors("ec2.create_vpc"):
                response = await ec2.create_vpc(
                    CidrBlock=cidr, **tag_specifications("vpc", config.get("tags"))
                )
            vpc_id = response["Vpc"]["VpcId"]
            async with created(vpc_id):
                await self._attributes(ec2, vpc_id, config)
        logger.info("vpc_created", vpc_id=vpc_id, cidr=cidr)
        return vpc_id

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        async with self.client() as ec2:
            await self._attributes(ec2, provider_id, config)
            await self._tag(ec2, provider_id, config.get("tags"))

    async def _attributes(self, ec2: Any, vpc_id: str, config: Dict[str, Any]) -> None:
        # modify_vpc_attribute accepts one attribute per call
        for key, param in (
            ("enable_dns_support", "EnableDnsSupport"),
            ("enable_dns_hostnames", "EnableDnsHostnames"),
        ):
            if key in config:
                async with aws_errors("ec2.modify_vpc_attribute"):
                    await ec2.modify_vpc_attribute(VpcId=vpc_id, **{param: {"Value": bool(config[key])}})


class SubnetHandler(AwsHandler):
    kind = ResourceKind.SUBNET
    service = "ec2"

    async def create(self, config: Dict[str, Any]) -> str:
        params = {
            "VpcId": require(config, "vpc_id", self.kind),
            "CidrBlock": require(config, "cidr_block", self.kind),
            **map_params(config, {"availability_zone": "AvailabilityZone"}),
            **tag_specifications("subnet", config.get("tags")),
        }
        async with self.client() as ec2:
            async with aws_errors("ec2.create_subnet"):
                response = await ec2.create_subnet(**params)
            subnet_id = response["Subnet"]["SubnetId"]
            async with created(subnet_id):
                await self._attributes(ec2, subnet_id, config)
        return subnet_id

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        async with self.client() as ec2:
            await self._attributes(ec2, provider_id, config)
            await self._tag(ec2, provider_id, config.get("tags"))

    async def _attributes(self, ec2: Any, subnet_id: str, config: Dict[str, Any]) -> None:
        if "map_public_ip_on_launch" in config:
            async with aws_errors("ec2.modify_subnet_attribute"):
                await ec2.modify_subnet_attribute(
                    SubnetId=subnet_id,
                    MapPublicIpOnLaunch={"Value": bool(config["map_public_ip_on_launch"])},
                )


class SecurityGroupHandler(AwsHandler):
    """Security group with ingress rules ``[{protocol, port, cidr}]``."""

    kind = ResourceKind.SECURITY_GROUP
    service = "ec2"

    async def create(self, config: Dict[str, Any]) -> str:
        name = require(config, "group_name", self.kind)
        vpc_id = require(config, "vpc_id", self.kind)
        async with self.client() as ec2:
            try:
                async with aws_errors("ec2.create_security_group"):
                    response = await ec2.create_security_group(
                        GroupName=name,
                        Description=config.get("description") or "managed by stackpilot",
                        VpcId=vpc_id,
                        **tag_specifications("security-group", config.get("tags")),
                    )
                group_id = response["GroupId"]
                adopted = False
            except ProviderError as e:
                if error_code(e) != "InvalidGroup.Duplicate":
                    raise
                group_id = await self._find(ec2, name, vpc_id)
                adopted = True
                logger.info("security_group_adopted", group_id=group_id, group_name=name)

            async with created(group_id):
                await self._authorize(ec2, group_id, config.get("ingress") or [])
                if adopted:
                    await self._tag(ec2, group_id, config.get("tags"))
        return group_id

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        async with self.client() as ec2:
            await self._authorize(ec2, provider_id, config.get("ingress") or [])
            await self._tag(ec2, provider_id, config.get("tags"))

    async def _find(self, ec2: Any, name: str, vpc_id: str) -> str:
        async with aws_errors("ec2.describe_security_groups"):
            response = await ec2.describe_security_groups(
                Filters=[
                    {"Name": "group-name", "Values": [name]},
                    {"Name": "vpc-id", "Values": [vpc_id]},
                ]
            )
        groups = response.get("SecurityGroups") or []
        if not groups:
            raise ProviderError.permanent_error(
                f"Security group '{name}' exists but cannot be described", vpc_id=vpc_id
            )
        return groups[0]["GroupId"]

    async def _authorize(self, ec2: Any, group_id: str, rules: list) -> None:
        for rule in rules:
            permission = {
                "IpProtocol": str(rule.get("protocol", "tcp")),
                "FromPort": int(rule["port"]),
                "ToPort": int(rule.get("to_port", rule["port"])),
            }
            if rule.get("source_group"):
                permission["UserIdGroupPairs"] = [{"GroupId": rule["source_group"]}]
            else:
                permission["IpRanges"] = [{"CidrIp": rule.get("cidr", "0.0.0.0/0")}]
            try:
                async with aws_errors("ec2.authorize_security_group_ingress"):
                    await ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=[permission])
            except ProviderError as e:
                if error_code(e) != "InvalidPermission.Duplicate":
                    raise


class ComputeGroupHandler(AwsHandler):
    """Auto Scaling group launched from a launch template."""

    kind = ResourceKind.COMPUTE_GROUP
    service = "autoscaling"

    _PARAMS = {
        "min_size": "MinSize",
        "max_size": "MaxSize",
        "desired_capacity": "DesiredCapacity",
        "health_check_type": "HealthCheckType",
        "health_check_grace_period": "HealthCheckGracePeriod",
    }

    def _params(self, config: Dict[str, Any]) -> Dict[str, Any]:
        params = map_params(config, self._PARAMS)
        template = config.get("launch_template")
        if template:
            params["LaunchTemplate"] = {
                "LaunchTemplateName": template,
                "Version": str(config.get("launch_template_version", "$Latest")),
            }
        if config.get("subnets"):
            params["VPCZoneIdentifier"] = ",".join(config["subnets"])
        return params

    async def create(self, config: Dict[str, Any]) -> str:
        name = require(config, "group_name", self.kind)
        require(config, "launch_template", self.kind)
        params = self._params(config)
        params.setdefault("MinSize", 1)
        params.setdefault("MaxSize", params["MinSize"])
        if config.get("target_group_arns"):
            params["TargetGroupARNs"] = list(config["target_group_arns"])
        if config.get("tags"):
            params["Tags"] = [
                {**tag, "PropagateAtLaunch": True} for tag in tag_list(config["tags"])
            ]
        async with self.client() as autoscaling:
            try:
                async with aws_errors("autoscaling.create_auto_scaling_group"):
                    await autoscaling.create_auto_scaling_group(AutoScalingGroupName=name, **params)
            except ProviderError as e:
                if error_code(e) != "AlreadyExists":
                    raise
                logger.info("compute_group_adopted", group_name=name)
                async with created(name):
                    await self._converge(autoscaling, name, config)
        return name

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        async with self.client() as autoscaling:
            await self._converge(autoscaling, provider_id, config)

    async def _converge(self, autoscaling: Any, name: str, config: Dict[str, Any]) -> None:
        async with aws_errors("autoscaling.update_auto_scaling_group"):
            await autoscaling.update_auto_scaling_group(
                AutoScalingGroupName=name, **self._params(config)
            )
        if config.get("target_group_arns"):
            async with aws_errors("autoscaling.attach_load_balancer_target_groups"):
                await autoscaling.attach_load_balancer_target_groups(
                    AutoScalingGroupName=name,
                    TargetGroupARNs=list(config["target_group_arns"]),
                )


class LoadBalancerHandler(AwsHandler):
    """Application/network load balancer with optional forwarding listeners."""

    kind = ResourceKind.LOAD_BALANCER
    service = "elbv2"

    async def create(self, config: Dict[str, Any]) -> str:
        params = {
            "Name": require(config, "lb_name", self.kind),
            "Subnets": list(require(config, "subnets", self.kind)),
            "Scheme": config.get("scheme", "internet-facing"),
            "Type": config.get("type", "application"),
        }
        if config.get("security_groups"):
            params["SecurityGroups"] = list(config["security_groups"])
        if config.get("tags"):
            params["Tags"] = tag_list(config["tags"])

        async with self.client() as elbv2:
            async with aws_errors("elbv2.create_load_balancer"):
                response = await elbv2.create_load_balancer(**params)
            arn = response["LoadBalancers"][0]["LoadBalancerArn"]
            async with created(arn):
                await self._listeners(elbv2, arn, config.get("listeners") or [])
        logger.info("load_balancer_created", arn=arn)
        return arn

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        async with self.client() as elbv2:
            await self._listeners(elbv2, provider_id, config.get("listeners") or [])
            if config.get("security_groups"):
                async with aws_errors("elbv2.set_security_groups"):
                    await elbv2.set_security_groups(
                        LoadBalancerArn=provider_id, SecurityGroups=list(config["security_groups"])
                    )
            if config.get("subnets"):
                async with aws_errors("elbv2.set_subnets"):
                    await elbv2.set_subnets(LoadBalancerArn=provider_id, Subnets=list(config["subnets"]))

    async def _listeners(self, elbv2: Any, arn: str, listeners: list) -> None:
        """Create the listeners whose port has none yet."""
        if not listeners:
            return
        async with aws_errors("elbv2.describe_listeners"):
            response = await elbv2.describe_listeners(LoadBalancerArn=arn)
        ports = {existing["Port"] for existing in response.get("Listeners") or []}
        for listener in listeners:
            if int(listener.get("port", 80)) not in ports:
                await self._listener(elbv2, arn, listener)

    async def _listener(self, elbv2: Any, arn: str, listener: Dict[str, Any]) -> None:
        params: Dict[str, Any] = {
            "LoadBalancerArn": arn,
            "Protocol": listener.get("protocol", "HTTP"),
            "Port": int(listener.get("port", 80)),
            "DefaultActions": [
                {"Type": "forward", "TargetGroupArn": require(listener, "target_group_arn", "listener")}
            ],
        }
        if listener.get("certificate_arn"):
            params["Certificates"] = [{"CertificateArn": listener["certificate_arn"]}]
        async with aws_errors("elbv2.create_listener"):
            await elbv2.create_listener(**params)


class DatabaseHandler(AwsHandler):
    """RDS instance, with a DB subnet group when ``subnet_ids`` is given."""

    kind = ResourceKind.DATABASE
    service = "rds"

    _MUTABLE = {
        "instance_class": "DBInstanceClass",
        "allocated_storage": "AllocatedStorage",
        "master_password": "MasterUserPassword",
        "security_group_ids": "VpcSecurityGroupIds",
        "multi_az": "MultiAZ",
        "backup_retention_days": "BackupRetentionPeriod",
        "engine_version": "EngineVersion",
    }

    async def create(self, config: Dict[str, Any]) -> str:
        identifier = require(config, "identifier", self.kind)
        params = {
            "DBInstanceIdentifier": identifier,
            "Engine": require(config, "engine", self.kind),
            "DBInstanceClass": require(config, "instance_class", self.kind),
            "AllocatedStorage": int(config.get("allocated_storage", 20)),
            "MasterUsername": require(config, "master_username", self.kind),
            "MasterUserPassword": require(config, "master_password", self.kind),
            "PubliclyAccessible": bool(config.get("publicly_accessible", False)),
            **map_params(
                config,
                {
                    "database_name": "DBName",
                    "engine_version": "EngineVersion",
                    "security_group_ids": "VpcSecurityGroupIds",
                    "multi_az": "MultiAZ",
                    "backup_retention_days": "BackupRetentionPeriod",
                },
            ),
        }
        if config.get("tags"):
            params["Tags"] = tag_list(config["tags"])

        async with self.client() as rds:
            if config.get("subnet_ids"):
                params["DBSubnetGroupName"] = await self._subnet_group(rds, identifier, config["subnet_ids"])
            try:
                async with aws_errors("rds.create_db_instance"):
                    await rds.create_db_instance(**params)
                logger.info("db_instance_created", identifier=identifier)
            except ProviderError as e:
                if error_code(e) != "DBInstanceAlreadyExists":
                    raise
                logger.info("db_instance_already_exists", identifier=identifier)
            async with created(identifier):
                await self._wait_available(rds, identifier, config)
        return identifier

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        params = map_params(config, self._MUTABLE)
        if not params:
            return
        apply_immediately = bool(config.get("apply_immediately", True))
        async with self.client() as rds:
            # modify_db_instance is rejected while the instance is still being created
            await self._wait_available(rds, provider_id, config)
            async with aws_errors("rds.modify_db_instance"):
                await rds.modify_db_instance(
                    DBInstanceIdentifier=provider_id,
                    ApplyImmediately=apply_immediately,
                    **params,
                )
            if apply_immediately:
                await self._wait_available(rds, provider_id, config)

    async def _wait_available(self, rds: Any, identifier: str, config: Dict[str, Any]) -> None:
        """Block until the instance accepts connections; ``wait: false`` skips this."""
        if not config.get("wait", True):
            return
        waiter = rds.get_waiter("db_instance_available")
        async with aws_errors("rds.wait_db_instance_available"):
            await waiter.wait(
                DBInstanceIdentifier=identifier,
                WaiterConfig={
                    "Delay": int(config.get("wait_delay", 30)),
                    "MaxAttempts": int(config.get("wait_attempts", 60)),
                },
            )
        logger.info("db_instance_available", identifier=identifier)

    async def _subnet_group(self, rds: Any, identifier: str, subnet_ids: list) -> str:
        name = f"{identifier}-subnets"
        try:
            async with aws_errors("rds.create_db_subnet_group"):
                await rds.create_db_subnet_group(
                    DBSubnetGroupName=name,
                    DBSubnetGroupDescription=f"Subnets for {identifier}",
                    SubnetIds=list(subnet_ids),
                )
        except ProviderError as e:
            if error_code(e) != "DBSubnetGroupAlreadyExists":
                raise
        return name


class DnsRecordHandler(AwsHandler):
    """Route 53 record set, written with UPSERT so create and update converge alike."""

    kind = ResourceKind.DNS_RECORD
    service = "route53"

    async def create(self, config: Dict[str, Any]) -> str:
        zone = require(config, "hosted_zone_id", self.kind)
        record_set = self._record_set(config)
        await self._upsert(zone, record_set)
        return f"{zone}/{record_set['Name']}/{record_set['Type']}"

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        await self._upsert(require(config, "hosted_zone_id", self.kind), self._record_set(config))

    def _record_set(self, config: Dict[str, Any]) -> Dict[str, Any]:
        record_set: Dict[str, Any] = {
            "Name": require(config, "record_name", self.kind),
            "Type": config.get("type", "A"),
        }
        alias = config.get("alias")
        if alias:
            record_set["AliasTarget"] = {
                "DNSName": require(alias, "dns_name", "alias"),
                "HostedZoneId": require(alias, "hosted_zone_id", "alias"),
                "EvaluateTargetHealth": bool(alias.get("evaluate_target_health", False)),
            }
        else:
            values = require(config, "values", self.kind)
            record_set["TTL"] = int(config.get("ttl", 300))
            record_set["ResourceRecords"] = [{"Value": str(v)} for v in values]
        return record_set

    async def _upsert(self, zone: str, record_set: Dict[str, Any]) -> None:
        async with self.client() as route53:
            async with aws_errors("route53.change_resource_record_sets"):
                await route53.change_resource_record_sets(
                    HostedZoneId=zone,
                    ChangeBatch={
                        "Comment": "managed by stackpilot",
                        "Changes": [{"Action": "UPSERT", "ResourceRecordSet": record_set}],
                    },
                )


class StorageBucketHandler(AwsHandler):
    kind = ResourceKind.STORAGE_BUCKET
    service = "s3"

    async def create(self, config: Dict[str, Any]) -> str:
        bucket = require(config, "bucket", self.kind)
        params: Dict[str, Any] = {"Bucket": bucket}
        if self.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}

        async with self.client() as s3:
            try:
                async with aws_errors("s3.create_bucket"):
                    await s3.create_bucket(**params)
            except ProviderError as e:
                if error_code(e) != "BucketAlreadyOwnedByYou":
                    raise
                logger.info("bucket_already_owned", bucket=bucket)
            async with created(bucket):
                await self._settings(s3, bucket, config)
        return bucket

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        async with self.client() as s3:
            await self._settings(s3, provider_id, config)

    async def _settings(self, s3: Any, bucket: str, config: Dict[str, Any]) -> None:
        if "versioning" in config:
            status = "Enabled" if config["versioning"] else "Suspended"
            async with aws_errors("s3.put_bucket_versioning"):
                await s3.put_bucket_versioning(
                    Bucket=bucket, VersioningConfiguration={"Status": status}
                )
        if config.get("block_public_access", True):
            async with aws_errors("s3.put_public_access_block"):
                await s3.put_public_access_block(
                    Bucket=bucket,
                    PublicAccessBlockConfiguration={
                        "BlockPublicAcls": True,
                        "IgnorePublicAcls": True,
                        "BlockPublicPolicy": True,
                        "RestrictPublicBuckets": True,
                    },
                )
        if config.get("tags"):
            async with aws_errors("s3.put_bucket_tagging"):
                await s3.put_bucket_tagging(Bucket=bucket, Tagging={"TagSet": tag_list(config["tags"])})


AWS_HANDLERS = (
    NetworkHandler,
    SubnetHandler,
    SecurityGroupHandler,
    ComputeGroupHandler,
    LoadBalancerHandler,
    DatabaseHandler,
    DnsRecordHandler,
    StorageBucketHandler,
)
