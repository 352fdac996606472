"""
Merging of deployment tags into a rendered CloudFormation template.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import click

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TagSpec:
    """Where and how a resource type carries its tags."""
    prop: str = "Tags"
    style: str = "list"     # "list" -> [{"Key", "Value"}], "map" -> {key: value}
    extra: Dict[str, Any] = field(default_factory=dict)   # added to new list entries


LIST = TagSpec()
MAP = TagSpec(style="map")

# None marks types whose tags sit deeper than a top-level property
TAGGABLE_RESOURCES: Dict[str, Optional[TagSpec]] = {
    "AWS::ApiGateway::RestApi": LIST,
    "AWS::ApiGateway::Stage": LIST,
    "AWS::ApiGatewayV2::Api": MAP,
    "AWS::AutoScaling::AutoScalingGroup": TagSpec(extra={"PropagateAtLaunch": True}),
    "AWS::Batch::ComputeEnvironment": MAP,
    "AWS::Batch::JobDefinition": MAP,
    "AWS::Batch::JobQueue": MAP,
    "AWS::CertificateManager::Certificate": LIST,
    "AWS::CloudFront::Distribution": LIST,
    "AWS::CloudTrail::Trail": LIST,
    "AWS::CloudWatch::Alarm": LIST,
    "AWS::CodeBuild::Project": LIST,
    "AWS::Cognito::UserPool": TagSpec(prop="UserPoolTags", style="map"),
    "AWS::DynamoDB::Table": LIST,
    "AWS::EC2::CustomerGateway": LIST,
    "AWS::EC2::EIP": LIST,
    "AWS::EC2::Instance": LIST,
    "AWS::EC2::InternetGateway": LIST,
    "AWS::EC2::LaunchTemplate": None,
    "AWS::EC2::NatGateway": LIST,
    "AWS::EC2::NetworkAcl": LIST,
    "AWS::EC2::NetworkInterface": LIST,
    "AWS::EC2::RouteTable": LIST,
    "AWS::EC2::SecurityGroup": LIST,
    "AWS::EC2::Subnet": LIST,
    "AWS::EC2::Volume": LIST,
    "AWS::EC2::VPC": LIST,
    "AWS::EC2::VPCPeeringConnection": LIST,
    "AWS::EC2::VPNGateway": LIST,
    "AWS::ECR::Repository": LIST,
    "AWS::ECS::Cluster": LIST,
    "AWS::ECS::Service": LIST,
    "AWS::ECS::TaskDefinition": LIST,
    "AWS::EFS::FileSystem": TagSpec(prop="FileSystemTags"),
    "AWS::ElastiCache::CacheCluster": LIST,
    "AWS::ElastiCache::ReplicationGroup": LIST,
    "AWS::ElasticLoadBalancing::LoadBalancer": LIST,
    "AWS::ElasticLoadBalancingV2::LoadBalancer": LIST,
    "AWS::ElasticLoadBalancingV2::TargetGroup": LIST,
    "AWS::Elasticsearch::Domain": LIST,
    "AWS::Events::EventBus": LIST,
    "AWS::Glue::Job": MAP,
    "AWS::IAM::Policy": None,
    "AWS::IAM::Role": LIST,
    "AWS::IAM::User": LIST,
    "AWS::Kinesis::Stream": LIST,
    "AWS::KMS::Key": LIST,
    "AWS::Lambda::Function": LIST,
    "AWS::Lambda::Permission": None,
    "AWS::Logs::LogGroup": LIST,
    "AWS::OpenSearchService::Domain": LIST,
    "AWS::RDS::DBCluster": LIST,
    "AWS::RDS::DBInstance": LIST,
    "AWS::RDS::DBSubnetGroup": LIST,
    "AWS::Route53::HostedZone": TagSpec(prop="HostedZoneTags"),
    "AWS::S3::Bucket": LIST,
    "AWS::S3::BucketPolicy": None,
    "AWS::SecretsManager::Secret": LIST,
    "AWS::Serverless::Api": MAP,
    "AWS::Serverless::Function": MAP,
    "AWS::Serverless::SimpleTable": MAP,
    "AWS::SNS::Topic": LIST,
    "AWS::SQS::Queue": LIST,
    "AWS::SSM::Parameter": MAP,
    "AWS::StepFunctions::StateMachine": LIST,
}


def tag_spec(resource_type: str) -> Optional[TagSpec]:
    """
    Look up how a resource type takes tags.

    Returns:
        TagSpec, or None if the type cannot be tagged through a simple property
    """
    return TAGGABLE_RESOURCES.get(resource_type)


def _is_intrinsic(value: Dict[str, Any]) -> bool:
    return any(str(key) == "Ref" or str(key).startswith("Fn::") for key in value)


def _merge_list(existing: List[Any], tags: List[Dict[str, Any]], extra: Dict[str, Any]) -> None:
    for tag in tags:
        for current in existing:
            if isinstance(current, dict) and current.get("Key") == tag["Key"]:
                current["Value"] = tag["Value"]
                break
        else:
            existing.append({"Key": tag["Key"], "Value": tag["Value"], **extra})


def _merge_map(existing: Dict[str, Any], tags: List[Dict[str, Any]]) -> None:
    for tag in tags:
        existing[tag["Key"]] = tag["Value"]


def apply(template: Dict[str, Any], tags: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge tags into every taggable resource of a template, in place.

    Existing keys keep their position and take the new value; new keys are
    appended in the order given. Applying the same tags twice is a no-op.

    Args:
        template: Parsed CloudFormation template
        tags: List of {"Key": ..., "Value": ...}

    Returns:
        The same template object
    """
    resources = template.get("Resources") or {}
    if not tags or not resources:
        return template

    tagged = 0
    for logical_id, resource in resources.items():
        spec = tag_spec(resource.get("Type", ""))
        if spec is None:
            continue

        if resource.get("Properties") is None:
            resource["Properties"] = {}
        properties = resource["Properties"]
        if not isinstance(properties, dict):
            logger.warning(f"Not tagging {logical_id}: Properties is not a mapping")
            continue

        if spec.style == "map":
            container = properties.setdefault(spec.prop, {})
            literal = isinstance(container, dict) and not _is_intrinsic(container)
        else:
            container = properties.setdefault(spec.prop, [])
            literal = isinstance(container, list)

        if not literal:
            logger.warning(f"Not tagging {logical_id}: {spec.prop} is computed by an intrinsic function")
            continue

        if spec.style == "map":
            _merge_map(container, tags)
        else:
            _merge_list(container, tags, spec.extra)
        tagged += 1

    logger.debug(f"Applied {len(tags)} tags to {tagged} of {len(resources)} resources")
    return template


def request(entries: List[Any], prompt: Callable[..., str] = click.prompt) -> List[Dict[str, Any]]:
    """
    Turn tag entries from ``.deploy`` into concrete tags.

    An entry is either a {"Key", "Value"} object, used as is, or a bare key
    (string, or object without a Value) whose value is asked for interactively.
    """
    tags = []
    for entry in entries or []:
        if isinstance(entry, str):
            entry = {"Key": entry}

        if "Value" in entry:
            value = entry["Value"]
        else:
            label = entry.get("Description") or entry["Key"]
            value = prompt(f"Value for tag {label}")

        tags.append({"Key": entry["Key"], "Value": value})

    return tags
