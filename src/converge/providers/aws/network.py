"""Network handlers: NAT gateways, routes and security groups."""

from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from converge.core.models import ObservedState, ResourceKind, ResourceSpec, ResourceStatus
from converge.core.provider import ApplyOutcome, CreateOutcome
from converge.utils.errors import InvalidSpecError, ProviderError
from converge.utils.logging import get_logger

from .base import KindHandler, dict_to_tags, error_code, status_from, tags_to_dict

logger = get_logger(__name__)

NAT_GATEWAY_STATES = {
    'pending': ResourceStatus.CREATING,
    'available': ResourceStatus.AVAILABLE,
    'failed': ResourceStatus.FAILED,
    'deleting': ResourceStatus.DELETING,
    'deleted': ResourceStatus.DELETED,
}

ROUTE_STATES = {
    'active': ResourceStatus.AVAILABLE,
    'blackhole': ResourceStatus.FAILED,
}

DEFAULT_DESTINATION = '0.0.0.0/0'


class NatGatewayHandler(KindHandler):
    """NAT gateways, identified by the subnet they live in.

    A public gateway without an ``AllocationId`` gets a freshly allocated
    Elastic IP.
    """

    kind = ResourceKind.NAT_GATEWAY
    immutable_attributes = frozenset({'SubnetId', 'AllocationId', 'ConnectivityType'})

    def __init__(self, clients):
        super().__init__(clients)
        self.ec2_client = clients.get_client('ec2')

    def find_candidates(self, identity: str) -> List[ObservedState]:
        response = self.ec2_client.describe_nat_gateways(
            Filter=[{'Name': 'subnet-id', 'Values': [identity]}]
        )
        return [self._observe(gateway) for gateway in response.get('NatGateways', [])]

    def _observe(self, gateway: Dict[str, Any]) -> ObservedState:
        addresses = gateway.get('NatGatewayAddresses') or [{}]
        attributes = {
            'SubnetId': gateway['SubnetId'],
            'VpcId': gateway.get('VpcId'),
            'ConnectivityType': gateway.get('ConnectivityType', 'public'),
            'Tags': tags_to_dict(gateway.get('Tags')),
        }
        if addresses[0].get('AllocationId'):
            attributes['AllocationId'] = addresses[0]['AllocationId']
        if addresses[0].get('PublicIp'):
            attributes['PublicIp'] = addresses[0]['PublicIp']

        raw = gateway.get('State')
        return ObservedState.present(
            resource_id=gateway['NatGatewayId'],
            attributes=attributes,
            status=status_from(NAT_GATEWAY_STATES, raw),
            raw_status=raw,
            created_at=gateway.get('CreateTime'),
        )

    def normalize(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        normalized = super().normalize(attributes)
        if 'Tags' in normalized and isinstance(normalized['Tags'], dict):
            normalized['Tags'] = {str(k): str(v) for k, v in normalized['Tags'].items()}
        return normalized

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        attributes = spec.desired_attributes
        subnet_id = attributes.get('SubnetId', spec.identity)
        if subnet_id != spec.identity:
            raise InvalidSpecError(
                f"SubnetId '{subnet_id}' does not match identity '{spec.identity}'"
            )

        connectivity = attributes.get('ConnectivityType', 'public')
        tags = attributes.get('Tags', {})
        params = {
            'SubnetId': subnet_id,
            'ConnectivityType': connectivity,
        }

        allocated = None
        if connectivity == 'public':
            allocation_id = attributes.get('AllocationId')
            if not allocation_id:
                allocation_id = allocated = self._allocate_address(tags)
            params['AllocationId'] = allocation_id

        if tags:
            params['TagSpecifications'] = [
                {'ResourceType': 'natgateway', 'Tags': dict_to_tags(tags)}
            ]

        try:
            gateway = self.ec2_client.create_nat_gateway(**params)['NatGateway']
        except Exception:
            if allocated:
                self._release_address(allocated)
            raise
        logger.info(
            f"Created NAT gateway {gateway['NatGatewayId']}",
            extra={'kind': self.kind.value, 'identity': spec.identity},
        )
        return CreateOutcome(
            resource_id=gateway['NatGatewayId'],
            status=status_from(NAT_GATEWAY_STATES, gateway.get('State', 'pending')),
        )

    def _allocate_address(self, tags: Dict[str, Any]) -> str:
        params = {'Domain': 'vpc'}
        if tags:
            params['TagSpecifications'] = [
                {'ResourceType': 'elastic-ip', 'Tags': dict_to_tags(tags)}
            ]
        allocation_id = self.ec2_client.allocate_address(**params)['AllocationId']
        logger.info(f"Allocated Elastic IP {allocation_id}")
        return allocation_id

    def _release_address(self, allocation_id: str) -> None:
        """Give back an address allocated for a gateway that was never created.

        A failed release is logged; the create error is the one reported.
        """
        try:
            self.ec2_client.release_address(AllocationId=allocation_id)
            logger.info(f"Released Elastic IP {allocation_id}")
        except ClientError as e:
            logger.error(f"Could not release Elastic IP {allocation_id}: {e}")

    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        applied = set()
        if 'Tags' in delta:
            self.ec2_client.create_tags(Resources=[resource_id], Tags=dict_to_tags(delta['Tags']))
            applied.add('Tags')
        return ApplyOutcome(status=ResourceStatus.AVAILABLE, applied_keys=frozenset(applied))

    def delete(self, resource_id: str) -> None:
        # The Elastic IP stays allocated; it may be referenced elsewhere
        self.ec2_client.delete_nat_gateway(NatGatewayId=resource_id)


class RouteHandler(KindHandler):
    """Routes, identified as ``<route-table-or-subnet-id>[@<cidr>]``.

    A subnet id resolves to the route table explicitly associated with the
    subnet, or to the main route table of its VPC.
    """

    kind = ResourceKind.ROUTE
    TARGET_KEYS = ('NatGatewayId', 'GatewayId')

    def __init__(self, clients):
        super().__init__(clients)
        self.ec2_client = clients.get_client('ec2')

    @staticmethod
    def parse_identity(identity: str) -> Tuple[str, str]:
        reference, _, destination = identity.partition('@')
        return reference, destination or DEFAULT_DESTINATION

    def resolve_route_table(self, reference: str) -> Optional[Dict[str, Any]]:
        """Find the route table a route identity points at."""
        if reference.startswith('rtb-'):
            tables = self.ec2_client.describe_route_tables(RouteTableIds=[reference])['RouteTables']
            return tables[0] if tables else None

        if reference.startswith('subnet-'):
            tables = self.ec2_client.describe_route_tables(
                Filters=[{'Name': 'association.subnet-id', 'Values': [reference]}]
            )['RouteTables']
            if tables:
                return tables[0]

            subnets = self.ec2_client.describe_subnets(SubnetIds=[reference])['Subnets']
            if not subnets:
                return None
            tables = self.ec2_client.describe_route_tables(
                Filters=[
                    {'Name': 'vpc-id', 'Values': [subnets[0]['VpcId']]},
                    {'Name': 'association.main', 'Values': ['true']},
                ]
            )['RouteTables']
            return tables[0] if tables else None

        raise InvalidSpecError(
            f"route identity must start with a route table or subnet id, got '{reference}'"
        )

    def _route_table_id(self, reference: str) -> str:
        table = self.resolve_route_table(reference)
        if table is None:
            raise ProviderError(f"no route table found for {reference}", code='RouteTableNotFound')
        return table['RouteTableId']

    def find_candidates(self, identity: str) -> List[ObservedState]:
        reference, destination = self.parse_identity(identity)
        table = self.resolve_route_table(reference)
        if table is None:
            return []

        candidates = []
        for route in table.get('Routes', []):
            if route.get('DestinationCidrBlock') != destination:
                continue
            attributes = {key: route[key] for key in self.TARGET_KEYS if route.get(key)}
            raw = route.get('State')
            candidates.append(ObservedState.present(
                resource_id=f"{table['RouteTableId']}@{destination}",
                attributes=attributes,
                status=status_from(ROUTE_STATES, raw),
                raw_status=raw,
            ))
        return candidates

    def _target(self, attributes: Dict[str, Any]) -> Dict[str, str]:
        targets = {key: attributes[key] for key in self.TARGET_KEYS if attributes.get(key)}
        if len(targets) != 1:
            raise InvalidSpecError("route needs exactly one of NatGatewayId or GatewayId")
        return targets

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        target = self._target(spec.desired_attributes)
        reference, destination = self.parse_identity(spec.identity)
        route_table_id = self._route_table_id(reference)

        try:
            self.ec2_client.create_route(
                RouteTableId=route_table_id,
                DestinationCidrBlock=destination,
                **target,
            )
        except ClientError as e:
            # A blackhole route still holds the destination
            if error_code(e) != 'RouteAlreadyExists':
                raise
            self.ec2_client.replace_route(
                RouteTableId=route_table_id,
                DestinationCidrBlock=destination,
                **target,
            )
        logger.info(
            f"Created route {destination} -> {next(iter(target.values()))} in {route_table_id}",
            extra={'kind': self.kind.value, 'identity': spec.identity},
        )
        return CreateOutcome(
            resource_id=f"{route_table_id}@{destination}",
            status=ResourceStatus.AVAILABLE,
        )

    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        target = self._target(delta)
        route_table_id, destination = self.parse_identity(resource_id)
        self.ec2_client.replace_route(
            RouteTableId=route_table_id,
            DestinationCidrBlock=destination,
            **target,
        )
        return ApplyOutcome(status=ResourceStatus.AVAILABLE, applied_keys=frozenset(delta))

    def delete(self, resource_id: str) -> None:
        route_table_id, destination = self.parse_identity(resource_id)
        self.ec2_client.delete_route(RouteTableId=route_table_id, DestinationCidrBlock=destination)


def _rule_key(rule: Dict[str, Any]):
    return (
        str(rule.get('Protocol')),
        rule.get('FromPort') if rule.get('FromPort') is not None else -1,
        rule.get('ToPort') if rule.get('ToPort') is not None else -1,
        str(rule.get('CidrIp')),
    )


def _port(rule: Dict[str, Any], name: str) -> Optional[int]:
    value = rule.get(name, rule.get('Port'))
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidSpecError(f"ingress rule {name} must be a port number, got {value!r}")


def normalize_rules(rules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Canonical, sorted form of ingress rules.

    Each rule is ``{Protocol, FromPort, ToPort, CidrIp}``; a single ``Port``
    is shorthand for equal from/to ports.

    Raises:
        InvalidSpecError: If a rule is not a mapping or a port is not a number
    """
    normalized = []
    for rule in rules:
        if not isinstance(rule, dict):
            raise InvalidSpecError(f"ingress rules must be mappings, got {rule!r}")
        normalized.append({
            'Protocol': str(rule.get('Protocol', 'tcp')).lower(),
            'FromPort': _port(rule, 'FromPort'),
            'ToPort': _port(rule, 'ToPort'),
            'CidrIp': rule.get('CidrIp', '0.0.0.0/0'),
        })
    return sorted(normalized, key=_rule_key)


def rules_to_permissions(rules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    permissions = []
    for rule in rules:
        permission = {'IpProtocol': rule['Protocol'], 'IpRanges': [{'CidrIp': rule['CidrIp']}]}
        if rule['FromPort'] is not None:
            permission['FromPort'] = rule['FromPort']
        if rule['ToPort'] is not None:
            permission['ToPort'] = rule['ToPort']
        permissions.append(permission)
    return permissions


def permissions_to_rules(permissions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    rules = []
    for permission in permissions:
        for ip_range in permission.get('IpRanges', []):
            rules.append({
                'Protocol': permission['IpProtocol'],
                'FromPort': permission.get('FromPort'),
                'ToPort': permission.get('ToPort'),
                'CidrIp': ip_range['CidrIp'],
            })
    return normalize_rules(rules)


class SecurityGroupHandler(KindHandler):
    """Security groups, identified as ``<vpc-id>/<group-name>``."""

    kind = ResourceKind.SECURITY_GROUP
    immutable_attributes = frozenset({'Description', 'VpcId'})

    def __init__(self, clients):
        super().__init__(clients)
        self.ec2_client = clients.get_client('ec2')

    def normalize(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        normalized = super().normalize(attributes)
        rules = normalized.get('IngressRules')
        if rules is not None and not isinstance(rules, list):
            raise InvalidSpecError(f"IngressRules must be a list, got {rules!r}")
        if rules is not None:
            normalized['IngressRules'] = normalize_rules(rules)
        return normalized

    def find_candidates(self, identity: str) -> List[ObservedState]:
        vpc_id, group_name = self.split_identity(identity, '/', '<vpc-id>/<group-name>')
        response = self.ec2_client.describe_security_groups(
            Filters=[
                {'Name': 'vpc-id', 'Values': [vpc_id]},
                {'Name': 'group-name', 'Values': [group_name]},
            ]
        )
        return [
            ObservedState.present(
                resource_id=group['GroupId'],
                attributes={
                    'GroupName': group['GroupName'],
                    'Description': group.get('Description'),
                    'VpcId': group.get('VpcId'),
                    'IngressRules': permissions_to_rules(group.get('IpPermissions', [])),
                },
            )
            for group in response.get('SecurityGroups', [])
        ]

    def create(self, spec: ResourceSpec) -> CreateOutcome:
        vpc_id, group_name = self.split_identity(spec.identity, '/', '<vpc-id>/<group-name>')
        attributes = spec.desired_attributes

        group_id = self.ec2_client.create_security_group(
            GroupName=group_name,
            Description=attributes.get('Description') or f"Managed by converge: {group_name}",
            VpcId=vpc_id,
        )['GroupId']

        rules = attributes.get('IngressRules') or []
        if rules:
            self.ec2_client.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=rules_to_permissions(rules),
            )

        logger.info(
            f"Created security group {group_id}",
            extra={'kind': self.kind.value, 'identity': spec.identity},
        )
        return CreateOutcome(resource_id=group_id, status=ResourceStatus.AVAILABLE)

    def apply(self, resource_id: str, delta: Dict[str, Any]) -> ApplyOutcome:
        applied = set()

        if 'IngressRules' in delta:
            desired = normalize_rules(delta['IngressRules'] or [])
            group = self.ec2_client.describe_security_groups(GroupIds=[resource_id])['SecurityGroups'][0]
            current = permissions_to_rules(group.get('IpPermissions', []))

            to_revoke = [rule for rule in current if rule not in desired]
            to_authorize = [rule for rule in desired if rule not in current]

            if to_revoke:
                self.ec2_client.revoke_security_group_ingress(
                    GroupId=resource_id, IpPermissions=rules_to_permissions(to_revoke)
                )
            if to_authorize:
                self.ec2_client.authorize_security_group_ingress(
                    GroupId=resource_id, IpPermissions=rules_to_permissions(to_authorize)
                )
            applied.add('IngressRules')

        return ApplyOutcome(status=ResourceStatus.AVAILABLE, applied_keys=frozenset(applied))

    def delete(self, resource_id: str) -> None:
        self.ec2_client.delete_security_group(GroupId=resource_id)
