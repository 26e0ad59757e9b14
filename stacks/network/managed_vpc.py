"""Managed VPC resources for an environment stack.

Adds the environment's own VPC to a stack, spread across as many availability
zones as there are public/private subnet pairs:
- Public subnets routed through an internet gateway (load balancers)
- Private subnets for tasks, with one NAT gateway per zone created only when a
  workload asks for it (CreateNATGateways condition)
"""
from typing import List, Optional, Sequence

from aws_cdk import (
    CfnCondition,
    CfnTag,
    Fn,
    Stack,
    aws_ec2 as ec2,
)


class ManagedVpcResources:
    """Declares a VPC and its subnets directly on an environment stack.

    Resources are created on the stack itself so their logical IDs stay stable
    (VPC, PublicSubnet1, PrivateRouteTable2, ...) across deployments.
    """

    def __init__(self, stack: Stack, *,
            cidr: str,
            public_subnet_cidrs: Sequence[str],
            private_subnet_cidrs: Sequence[str],
            availability_zones: Sequence[str] = (),
            nat_condition: Optional[CfnCondition] = None) -> None:
        self.stack = stack
        self.availability_zones = list(availability_zones)

        self.vpc = ec2.CfnVPC(stack, "VPC",
            cidr_block=cidr,
            enable_dns_hostnames=True,
            enable_dns_support=True,
            tags=[self._name_tag("")]
        )
        self.internet_gateway = ec2.CfnInternetGateway(stack, "InternetGateway",
            tags=[self._name_tag("")]
        )
        self.internet_gateway_attachment = ec2.CfnVPCGatewayAttachment(stack, "InternetGatewayAttachment",
            vpc_id=self.vpc.ref,
            internet_gateway_id=self.internet_gateway.ref
        )
        self.public_route_table = ec2.CfnRouteTable(stack, "PublicRouteTable",
            vpc_id=self.vpc.ref,
            tags=[self._name_tag("")]
        )
        default_route = ec2.CfnRoute(stack, "DefaultPublicRoute",
            route_table_id=self.public_route_table.ref,
            destination_cidr_block="0.0.0.0/0",
            gateway_id=self.internet_gateway.ref
        )
        default_route.add_dependency(self.internet_gateway_attachment)

        self.public_subnets = self._add_subnets("Public", public_subnet_cidrs, public=True)
        self.private_subnets = self._add_subnets("Private", private_subnet_cidrs, public=False)
        self.private_route_tables = self._add_nat_gateways(nat_condition)

    @property
    def public_subnet_ids(self) -> List[str]:
        return [subnet.ref for subnet in self.public_subnets]

    @property
    def private_subnet_ids(self) -> List[str]:
        return [subnet.ref for subnet in self.private_subnets]

    def _add_subnets(self, kind: str, cidrs: Sequence[str], public: bool) -> List[ec2.CfnSubnet]:
        subnets = []
        for index, cidr in enumerate(cidrs):
            number = index + 1
            subnet = ec2.CfnSubnet(self.stack, f"{kind}Subnet{number}",
                vpc_id=self.vpc.ref,
                cidr_block=cidr,
                availability_zone=self._availability_zone(index),
                map_public_ip_on_launch=public,
                tags=[self._name_tag(f"-{'pub' if public else 'priv'}{number}")]
            )
            if public:
                ec2.CfnSubnetRouteTableAssociation(self.stack, f"PublicSubnet{number}RouteTableAssociation",
                    route_table_id=self.public_route_table.ref,
                    subnet_id=subnet.ref
                )
            subnets.append(subnet)
        return subnets

    def _add_nat_gateways(self, condition: Optional[CfnCondition]) -> List[ec2.CfnRouteTable]:
        """One NAT gateway per public subnet, each routing its zone's private subnet."""
        route_tables = []
        for index, (public, private) in enumerate(zip(self.public_subnets, self.private_subnets)):
            number = index + 1
            eip = ec2.CfnEIP(self.stack, f"NatGateway{number}Attachment", domain="vpc")
            eip.add_dependency(self.internet_gateway_attachment)
            nat = ec2.CfnNatGateway(self.stack, f"NatGateway{number}",
                allocation_id=eip.attr_allocation_id,
                subnet_id=public.ref,
                tags=[self._name_tag(f"-{number}")]
            )
            route_table = ec2.CfnRouteTable(self.stack, f"PrivateRouteTable{number}",
                vpc_id=self.vpc.ref
            )
            route = ec2.CfnRoute(self.stack, f"PrivateRoute{number}",
                route_table_id=route_table.ref,
                destination_cidr_block="0.0.0.0/0",
                nat_gateway_id=nat.ref
            )
            association = ec2.CfnSubnetRouteTableAssociation(self.stack, f"PrivateRouteTable{number}Association",
                route_table_id=route_table.ref,
                subnet_id=private.ref
            )
            if condition is not None:
                for resource in (eip, nat, route_table, route, association):
                    resource.cfn_options.condition = condition
            route_tables.append(route_table)
        return route_tables

    def _availability_zone(self, index: int) -> str:
        if self.availability_zones:
            return self.availability_zones[index]
        return Fn.select(index, Fn.get_azs())

    @staticmethod
    def _name_tag(suffix: str) -> CfnTag:
        return CfnTag(key="Name", value=Fn.sub(f"envstack-${{AppName}}-${{EnvironmentName}}{suffix}"))
