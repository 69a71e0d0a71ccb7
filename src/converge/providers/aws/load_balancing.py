"""Load balancing handlers: target groups, load balancers and listeners."""

from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from converge.core.models import ObservedState, ResourceKind, ResourceSpec, ResourceStatus
from converge.core.provider import ApplyOutcome, CreateOutcome
from converge.utils.errors import InvalidSpecError, ProviderError
from converge.utils.logging import get_logger

from .base import KindHandler, is_not_found, status_from

logger = get_logger(__name__)

LOAD_BALANCER_STATES = {
    'provisioning': ResourceStatus.CREATING,
    'active': ResourceStatus.AVAILABLE,
    'active_impaired': ResourceStatus.AVAILABLE,
    'failed': ResourceStatus.FAILED,
}

TARGET_GROUP_KEYS = ('Protocol', 'Port', 'VpcId', 'TargetType', 'HealthCheckPath')


class TargetGroupHandler(KindHandler):
    """Target groups, identified by name."""

    kind = ResourceKind.TARGET_GROUP
    immutable_attributes = frozenset({'Protocol', 'Port', 'VpcId', 'TargetType'})

    def __init__(self, clients):
        super().__init__(clients)
        self.elbv2_client = clients.get_client('elbv2')

    def find_candidates(self, identity: str) -> List[ObservedState]:
        try:
            groups = self.elbv2_client.describe_target_groups(Names=[identity])['TargetGroups']
        except ClientError as e:
            if is_not_found(e):
                return []
            raise

        return [
            ObservedState.present(
                resource_id=group['TargetGroupArn'],
                attributes={
                    **{key: group[key] for key in TARGET_GROUP_KEYS if key in group},
                    'TargetGroupArn': group['TargetGroupArn'],
                },
            )
            for group in groups
        ]

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        attributes = spec.desired_attributes
        self.require(attributes, 'VpcId')

        params = {
            'Name': spec.identity,
            'Protocol': attributes.get('Protocol', 'HTTP'),
            'Port': int(attributes.get('Port', 80)),
            'VpcId': attributes['VpcId'],
            'TargetType': attributes.get('TargetType', 'instance'),
        }
        if attributes.get('HealthCheckPath'):
            params['HealthCheckPath'] = attributes['HealthCheckPath']

        group = self.elbv2_client.create_target_group(**params)['TargetGroups'][0]
        logger.info(
            f"Created target group {group['TargetGroupArn']}",
            extra={'kind': self.kind.value, 'identity': spec.identity},
        )
        return CreateOutcome(resource_id=group['TargetGroupArn'], status=ResourceStatus.AVAILABLE)

    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        applied = set()
        if 'HealthCheckPath' in delta:
            self.elbv2_client.modify_target_group(
                TargetGroupArn=resource_id, HealthCheckPath=delta['HealthCheckPath']
            )
            applied.add('HealthCheckPath')
        return ApplyOutcome(status=ResourceStatus.AVAILABLE, applied_keys=frozenset(applied))

    def delete(self, resource_id: str) -> None:
        self.elbv2_client.delete_target_group(TargetGroupArn=resource_id)


class LoadBalancerHandler(KindHandler):
    """Application/network load balancers, identified by name.

    New load balancers report ``provisioning`` until they become active.
    """

    kind = ResourceKind.LOAD_BALANCER
    immutable_attributes = frozenset({'Scheme', 'Type'})
    unordered_attributes = frozenset({'Subnets', 'SecurityGroups'})

    def __init__(self, clients):
        super().__init__(clients)
        self.elbv2_client = clients.get_client('elbv2')

    def find_candidates(self, identity: str) -> List[ObservedState]:
        try:
            balancers = self.elbv2_client.describe_load_balancers(Names=[identity])['LoadBalancers']
        except ClientError as e:
            if is_not_found(e):
                return []
            raise

        candidates = []
        for balancer in balancers:
            raw = (balancer.get('State') or {}).get('Code')
            candidates.append(ObservedState.present(
                resource_id=balancer['LoadBalancerArn'],
                attributes={
                    'Subnets': sorted(zone['SubnetId'] for zone in balancer.get('AvailabilityZones', [])),
                    'SecurityGroups': sorted(balancer.get('SecurityGroups', [])),
                    'Scheme': balancer.get('Scheme'),
                    'Type': balancer.get('Type'),
                    'DNSName': balancer.get('DNSName'),
                    'VpcId': balancer.get('VpcId'),
                },
                status=status_from(LOAD_BALANCER_STATES, raw),
                raw_status=raw,
                created_at=balancer.get('CreatedTime'),
            ))
        return candidates

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        attributes = spec.desired_attributes
        self.require(attributes, 'Subnets')

        params = {
            'Name': spec.identity,
            'Subnets': list(attributes['Subnets']),
            'Scheme': attributes.get('Scheme', 'internet-facing'),
            'Type': attributes.get('Type', 'application'),
        }
        if attributes.get('SecurityGroups'):
            params['SecurityGroups'] = list(attributes['SecurityGroups'])

        balancer = self.elbv2_client.create_load_balancer(**params)['LoadBalancers'][0]
        raw = (balancer.get('State') or {}).get('Code', 'provisioning')
        logger.info(
            f"Created load balancer {balancer['LoadBalancerArn']} ({raw})",
            extra={'kind': self.kind.value, 'identity': spec.identity},
        )
        return CreateOutcome(
            resource_id=balancer['LoadBalancerArn'],
            status=status_from(LOAD_BALANCER_STATES, raw),
        )

    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        applied = set()
        if 'Subnets' in delta:
            self.elbv2_client.set_subnets(LoadBalancerArn=resource_id, Subnets=list(delta['Subnets']))
            applied.add('Subnets')
        if 'SecurityGroups' in delta:
            self.elbv2_client.set_security_groups(
                LoadBalancerArn=resource_id, SecurityGroups=list(delta['SecurityGroups'])
            )
            applied.add('SecurityGroups')
        return ApplyOutcome(status=ResourceStatus.AVAILABLE, applied_keys=frozenset(applied))

    def delete(self, resource_id: str) -> None:
        self.elbv2_client.delete_load_balancer(LoadBalancerArn=resource_id)


class ListenerHandler(KindHandler):
    """Listeners, identified as ``<load-balancer-name>:<port>``.

    Only forward-to-target-group default actions are managed.
    """

    kind = ResourceKind.LISTENER

    def __init__(self, clients):
        super().__init__(clients)
        self.elbv2_client = clients.get_client('elbv2')

    def _split(self, identity: str):
        balancer_name, port = self.split_identity(identity, ':', '<load-balancer-name>:<port>')
        try:
            return balancer_name, int(port)
        except ValueError:
            raise InvalidSpecError(f"listener port must be a number, got '{port}'")

    def _balancer_arn(self, balancer_name: str) -> Optional[str]:
        try:
            balancers = self.elbv2_client.describe_load_balancers(Names=[balancer_name])['LoadBalancers']
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        return balancers[0]['LoadBalancerArn'] if balancers else None

    def find_candidates(self, identity: str) -> List[ObservedState]:
        balancer_name, port = self._split(identity)
        balancer_arn = self._balancer_arn(balancer_name)
        if balancer_arn is None:
            return []

        listeners = self.elbv2_client.describe_listeners(LoadBalancerArn=balancer_arn)['Listeners']
        candidates = []
        for listener in listeners:
            if listener.get('Port') != port:
                continue
            attributes = {'Protocol': listener.get('Protocol'), 'Port': port}
            for action in listener.get('DefaultActions', []):
                if action.get('Type') == 'forward' and action.get('TargetGroupArn'):
                    attributes['TargetGroupArn'] = action['TargetGroupArn']
                    break
            candidates.append(ObservedState.present(
                resource_id=listener['ListenerArn'],
                attributes=attributes,
            ))
        return candidates

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        attributes = spec.desired_attributes
        self.require(attributes, 'TargetGroupArn')
        balancer_name, port = self._split(spec.identity)

        balancer_arn = self._balancer_arn(balancer_name)
        if balancer_arn is None:
            raise ProviderError(
                f"load balancer '{balancer_name}' does not exist",
                code='LoadBalancerNotFound',
            )

        listener = self.elbv2_client.create_listener(
            LoadBalancerArn=balancer_arn,
            Protocol=attributes.get('Protocol', 'HTTP'),
            Port=port,
            DefaultActions=[{'Type': 'forward', 'TargetGroupArn': attributes['TargetGroupArn']}],
        )['Listeners'][0]
        logger.info(
            f"Created listener {listener['ListenerArn']}",
            extra={'kind': self.kind.value, 'identity': spec.identity},
        )
        return CreateOutcome(resource_id=listener['ListenerArn'], status=ResourceStatus.AVAILABLE)

    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        params = {}
        if 'Protocol' in delta:
            params['Protocol'] = delta['Protocol']
        if 'TargetGroupArn' in delta:
            params['DefaultActions'] = [{'Type': 'forward', 'TargetGroupArn': delta['TargetGroupArn']}]
        if params:
            self.elbv2_client.modify_listener(ListenerArn=resource_id, **params)
        applied = {key for key in ('Protocol', 'TargetGroupArn') if key in delta}
        return ApplyOutcome(status=ResourceStatus.AVAILABLE, applied_keys=frozenset(applied))

    def delete(self, resource_id: str) -> None:
        self.elbv2_client.delete_listener(ListenerArn=resource_id)
