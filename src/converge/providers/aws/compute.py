"""Compute handlers: launch templates, auto scaling groups and scaling policies."""

from typing import Any, Dict, List

from botocore.exceptions import ClientError

from converge.core.models import ObservedState, ResourceKind, ResourceSpec, ResourceStatus
from converge.core.provider import ApplyOutcome, CreateOutcome
from converge.utils.logging import get_logger

from .base import KindHandler, dict_to_tags, is_not_found, tags_to_dict

logger = get_logger(__name__)

# Launch template attributes copied verbatim into LaunchTemplateData
TEMPLATE_DATA_KEYS = ('ImageId', 'InstanceType', 'KeyName', 'SecurityGroupIds', 'UserData')


class LaunchTemplateHandler(KindHandler):
    """Launch templates, identified by name.

    Updates create a new template version from the current default version
    plus the delta, then make it the default.
    """

    kind = ResourceKind.LAUNCH_TEMPLATE
    unordered_attributes = frozenset({'SecurityGroupIds'})

    def __init__(self, clients):
        super().__init__(clients)
        self.ec2_client = clients.get_client('ec2')

    def find_candidates(self, identity: str) -> List[ObservedState]:
        try:
            templates = self.ec2_client.describe_launch_templates(
                LaunchTemplateNames=[identity]
            )['LaunchTemplates']
        except ClientError as e:
            if is_not_found(e):
                return []
            raise

        candidates = []
        for template in templates:
            data = self._default_data(template['LaunchTemplateId'])
            attributes = self._data_to_attributes(data)
            attributes['DefaultVersionNumber'] = template.get('DefaultVersionNumber')
            candidates.append(ObservedState.present(
                resource_id=template['LaunchTemplateId'],
                attributes=attributes,
                created_at=template.get('CreateTime'),
            ))
        return candidates

    def _default_data(self, template_id: str) -> Dict[str, Any]:
        versions = self.ec2_client.describe_launch_template_versions(
            LaunchTemplateId=template_id,
            Versions=['$Default'],
        )['LaunchTemplateVersions']
        return versions[0].get('LaunchTemplateData', {}) if versions else {}

    @staticmethod
    def _data_to_attributes(data: Dict[str, Any]) -> Dict[str, Any]:
        attributes = {key: data[key] for key in TEMPLATE_DATA_KEYS if key in data}
        if 'SecurityGroupIds' in attributes:
            attributes['SecurityGroupIds'] = sorted(attributes['SecurityGroupIds'])
        profile = data.get('IamInstanceProfile') or {}
        if profile.get('Name'):
            attributes['IamInstanceProfile'] = profile['Name']
        return attributes

    @staticmethod
    def _attributes_to_data(attributes: Dict[str, Any]) -> Dict[str, Any]:
        data = {key: attributes[key] for key in TEMPLATE_DATA_KEYS if attributes.get(key) is not None}
        if attributes.get('IamInstanceProfile'):
            data['IamInstanceProfile'] = {'Name': attributes['IamInstanceProfile']}
        return data

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        self.require(spec.desired_attributes, 'ImageId', 'InstanceType')
        template = self.ec2_client.create_launch_template(
            LaunchTemplateName=spec.identity,
            LaunchTemplateData=self._attributes_to_data(spec.desired_attributes),
        )['LaunchTemplate']
        logger.info(
            f"Created launch template {template['LaunchTemplateId']}",
            extra={'kind': self.kind.value, 'identity': spec.identity},
        )
        return CreateOutcome(resource_id=template['LaunchTemplateId'], status=ResourceStatus.AVAILABLE)

    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        current = self._data_to_attributes(self._default_data(resource_id))
        version = self.ec2_client.create_launch_template_version(
            LaunchTemplateId=resource_id,
            LaunchTemplateData=self._attributes_to_data({**current, **delta}),
        )['LaunchTemplateVersion']
        self.ec2_client.modify_launch_template(
            LaunchTemplateId=resource_id,
            DefaultVersion=str(version['VersionNumber']),
        )
        logger.info(f"Launch template {resource_id} now defaults to version {version['VersionNumber']}")
        return ApplyOutcome(status=ResourceStatus.AVAILABLE, applied_keys=frozenset(delta))

    def delete(self, resource_id: str) -> None:
        self.ec2_client.delete_launch_template(LaunchTemplateId=resource_id)


# Attribute -> update_auto_scaling_group parameter
ASG_SCALAR_KEYS = ('MinSize', 'MaxSize', 'DesiredCapacity', 'HealthCheckType', 'HealthCheckGracePeriod')


class AutoScalingGroupHandler(KindHandler):
    """Auto Scaling groups, identified by name."""

    kind = ResourceKind.AUTO_SCALING_GROUP
    unordered_attributes = frozenset({'Subnets', 'TargetGroupARNs'})

    def __init__(self, clients):
        super().__init__(clients)
        self.autoscaling_client = clients.get_client('autoscaling')

    def _describe(self, name: str) -> List[Dict[str, Any]]:
        return self.autoscaling_client.describe_auto_scaling_groups(
            AutoScalingGroupNames=[name]
        ).get('AutoScalingGroups', [])

    def find_candidates(self, identity: str) -> List[ObservedState]:
        candidates = []
        for group in self._describe(identity):
            attributes = {key: group[key] for key in ASG_SCALAR_KEYS if key in group}
            template = group.get('LaunchTemplate') or {}
            if template.get('LaunchTemplateName'):
                attributes['LaunchTemplateName'] = template['LaunchTemplateName']
            attributes['Subnets'] = sorted(
                subnet for subnet in group.get('VPCZoneIdentifier', '').split(',') if subnet
            )
            attributes['TargetGroupARNs'] = sorted(group.get('TargetGroupARNs', []))
            attributes['Tags'] = tags_to_dict(group.get('Tags'))

            # Status is only present while the group is being deleted
            raw = group.get('Status')
            candidates.append(ObservedState.present(
                resource_id=group['AutoScalingGroupName'],
                attributes=attributes,
                status=ResourceStatus.DELETING if raw else ResourceStatus.AVAILABLE,
                raw_status=raw,
                created_at=group.get('CreatedTime'),
            ))
        return candidates

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        attributes = spec.desired_attributes
        self.require(attributes, 'LaunchTemplateName', 'MinSize', 'MaxSize', 'Subnets')

        params = {
            'AutoScalingGroupName': spec.identity,
            'LaunchTemplate': {
                'LaunchTemplateName': attributes['LaunchTemplateName'],
                'Version': '$Default',
            },
            'VPCZoneIdentifier': ','.join(attributes['Subnets']),
        }
        for key in ASG_SCALAR_KEYS:
            if attributes.get(key) is not None:
                params[key] = attributes[key]
        if attributes.get('TargetGroupARNs'):
            params['TargetGroupARNs'] = list(attributes['TargetGroupARNs'])
        if attributes.get('Tags'):
            params['Tags'] = self._asg_tags(spec.identity, attributes['Tags'])

        self.autoscaling_client.create_auto_scaling_group(**params)
        logger.info(
            f"Created auto scaling group {spec.identity}",
            extra={'kind': self.kind.value, 'identity': spec.identity},
        )
        return CreateOutcome(resource_id=spec.identity, status=ResourceStatus.AVAILABLE)

    @staticmethod
    def _asg_tags(name: str, tags: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {
                **tag,
                'ResourceId': name,
                'ResourceType': 'auto-scaling-group',
                'PropagateAtLaunch': True,
            }
            for tag in dict_to_tags(tags)
        ]

    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        applied = set()

        params = {key: delta[key] for key in ASG_SCALAR_KEYS if key in delta}
        if 'LaunchTemplateName' in delta:
            params['LaunchTemplate'] = {
                'LaunchTemplateName': delta['LaunchTemplateName'],
                'Version': '$Default',
            }
        if 'Subnets' in delta:
            params['VPCZoneIdentifier'] = ','.join(delta['Subnets'])
        if params:
            self.autoscaling_client.update_auto_scaling_group(
                AutoScalingGroupName=resource_id, **params
            )
            applied |= set(delta) & (set(ASG_SCALAR_KEYS) | {'LaunchTemplateName', 'Subnets'})

        if 'TargetGroupARNs' in delta:
            groups = self._describe(resource_id)
            current = set(groups[0].get('TargetGroupARNs', [])) if groups else set()
            desired = set(delta['TargetGroupARNs'] or [])
            if desired - current:
                self.autoscaling_client.attach_load_balancer_target_groups(
                    AutoScalingGroupName=resource_id,
                    TargetGroupARNs=sorted(desired - current),
                )
            if current - desired:
                self.autoscaling_client.detach_load_balancer_target_groups(
                    AutoScalingGroupName=resource_id,
                    TargetGroupARNs=sorted(current - desired),
                )
            applied.add('TargetGroupARNs')

        if 'Tags' in delta:
            self.autoscaling_client.create_or_update_tags(
                Tags=self._asg_tags(resource_id, delta['Tags'])
            )
            applied.add('Tags')

        return ApplyOutcome(status=ResourceStatus.AVAILABLE, applied_keys=frozenset(applied))

    def delete(self, resource_id: str) -> None:
        self.autoscaling_client.delete_auto_scaling_group(
            AutoScalingGroupName=resource_id, ForceDelete=True
        )


class ScalingPolicyHandler(KindHandler):
    """Target tracking policies, identified as ``<asg-name>/<policy-name>``."""

    kind = ResourceKind.SCALING_POLICY
    DEFAULT_METRIC = 'ASGAverageCPUUtilization'

    def __init__(self, clients):
        super().__init__(clients)
        self.autoscaling_client = clients.get_client('autoscaling')

    def _split(self, identity: str):
        return self.split_identity(identity, '/', '<asg-name>/<policy-name>')

    def _describe(self, identity: str) -> List[Dict[str, Any]]:
        group_name, policy_name = self._split(identity)
        return self.autoscaling_client.describe_policies(
            AutoScalingGroupName=group_name,
            PolicyNames=[policy_name],
        ).get('ScalingPolicies', [])

    @staticmethod
    def _policy_attributes(policy: Dict[str, Any]) -> Dict[str, Any]:
        tracking = policy.get('TargetTrackingConfiguration') or {}
        metric = tracking.get('PredefinedMetricSpecification') or {}
        attributes = {'PolicyType': policy.get('PolicyType')}
        if 'TargetValue' in tracking:
            attributes['TargetValue'] = tracking['TargetValue']
        if 'DisableScaleIn' in tracking:
            attributes['DisableScaleIn'] = tracking['DisableScaleIn']
        if metric.get('PredefinedMetricType'):
            attributes['PredefinedMetricType'] = metric['PredefinedMetricType']
        if policy.get('EstimatedInstanceWarmup') is not None:
            attributes['EstimatedInstanceWarmup'] = policy['EstimatedInstanceWarmup']
        return attributes

    def find_candidates(self, identity: str) -> List[ObservedState]:
        return [
            ObservedState.present(resource_id=identity, attributes=self._policy_attributes(policy))
            for policy in self._describe(identity)
        ]

    def _put(self, identity: str, attributes: Dict[str, Any]) -> None:
        self.require(attributes, 'TargetValue')
        group_name, policy_name = self._split(identity)
        params = {
            'AutoScalingGroupName': group_name,
            'PolicyName': policy_name,
            'PolicyType': 'TargetTrackingScaling',
            'TargetTrackingConfiguration': {
                'PredefinedMetricSpecification': {
                    'PredefinedMetricType': attributes.get('PredefinedMetricType', self.DEFAULT_METRIC),
                },
                'TargetValue': float(attributes['TargetValue']),
                'DisableScaleIn': bool(attributes.get('DisableScaleIn', False)),
            },
        }
        if attributes.get('EstimatedInstanceWarmup') is not None:
            params['EstimatedInstanceWarmup'] = int(attributes['EstimatedInstanceWarmup'])
        self.autoscaling_client.put_scaling_policy(**params)

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        self._put(spec.identity, spec.desired_attributes)
        logger.info(
            "Created target tracking policy",
            extra={'kind': self.kind.value, 'identity': spec.identity},
        )
        return CreateOutcome(resource_id=spec.identity, status=ResourceStatus.AVAILABLE)

    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        policies = self._describe(resource_id)
        current = self._policy_attributes(policies[0]) if policies else {}
        self._put(resource_id, {**current, **delta})
        return ApplyOutcome(status=ResourceStatus.AVAILABLE, applied_keys=frozenset(delta))

    def delete(self, resource_id: str) -> None:
        group_name, policy_name = self._split(resource_id)
        self.autoscaling_client.delete_policy(
            AutoScalingGroupName=group_name, PolicyName=policy_name
        )
