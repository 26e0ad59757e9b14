"""Environment stack module.

Renders an EnvironmentTemplateConfig into the CloudFormation template shared
by every workload of an environment:
- Managed or imported VPC, with subnet references switched accordingly
- ECS cluster and service discovery namespace
- Public and internal Application Load Balancers, gated by the workloads that
  need them (CreateALB / CreateInternalALB conditions)
- HTTPS listeners on imported or DNS-validated certificates
- EFS filesystem, NAT gateways and DNS delegation custom resources
- Exports consumed by workload stacks
"""
from typing import Dict, List, Optional

from constructs import Construct
from aws_cdk import (
    Aws,
    CfnCondition,
    CfnOutput,
    CfnParameter,
    CfnResource,
    CfnTag,
    Fn,
    Stack,
    aws_cloudfront as cloudfront,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_efs as efs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_lambda as _lambda,
    aws_route53 as route53,
    aws_servicediscovery as servicediscovery,
)

from deployer.custom_resources import ENV_CUSTOM_RESOURCES
from stacks.environment import parameters as p
from stacks.environment.template_config import (
    ContainerInsights,
    EnvironmentTemplateConfig,
    InternalHTTPS,
    PublicHTTPS,
)
from stacks.network.managed_vpc import ManagedVpcResources

DESCRIPTION_METADATA_KEY = "envstack:description"
TEMPLATE_DESCRIPTION = "CloudFormation environment template for infrastructure shared among workloads."
CUSTOM_RESOURCE_RUNTIME = "python3.12"
CUSTOM_RESOURCE_HANDLER = "handler.on_event"
CUSTOM_RESOURCE_TIMEOUT = 900
CDN_ORIGIN_ID = "CDNLoadBalancerOrigin"
CACHING_DISABLED_POLICY_ID = "4135ea2d-6df8-44a3-9df3-4b5a84be39ad"
ALL_VIEWER_ORIGIN_REQUEST_POLICY_ID = "216adef6-5c7f-47e4-b989-5492eafa07d3"


class EnvironmentStack(Stack):
    """CDK Stack for the infrastructure shared by an environment's workloads.

    Every decision about what to include is already made in ``config``; this
    class only maps it to resources. Anything depending on which workloads are
    deployed is left to CloudFormation conditions on the stack parameters.
    """

    def __init__(self, scope: Construct, construct_id: str, *,
            config: EnvironmentTemplateConfig,
            **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config

        self.template_options.description = TEMPLATE_DESCRIPTION
        metadata = {"Version": config.version}
        if config.serialized_manifest:
            metadata["Manifest"] = config.serialized_manifest
        self.template_options.metadata = metadata

        self.params: Dict[str, CfnParameter] = {}
        for decl in p.ENV_PARAMETERS:
            self.params[decl.key] = CfnParameter(self, decl.key,
                type="String",
                allowed_values=list(decl.allowed_values) or None
            )
        self.add_conditions()
        self.add_bootstrap_roles()

        self.network: Optional[ManagedVpcResources] = None
        if config.managed_vpc is not None:
            self.network = ManagedVpcResources(self,
                cidr=config.managed_vpc.cidr,
                public_subnet_cidrs=config.managed_vpc.public_subnet_cidrs,
                private_subnet_cidrs=config.managed_vpc.private_subnet_cidrs,
                availability_zones=config.managed_vpc.availability_zones,
                nat_condition=self.create_nat_gateways
            )

        self.https_cert: Optional[CfnResource] = None
        if config.dns_delegation:
            self.add_dns_delegation()

        self.add_cluster()
        self.add_security_groups()
        self.add_public_load_balancer()
        self.add_internal_load_balancer()
        self.add_file_system()
        if config.dns_delegation:
            self.add_custom_domain()
        if config.cdn_enabled:
            self.add_cdn()
        self.add_outputs()

    # Parameters and conditions.

    def param(self, key: str) -> str:
        return self.params[key].value_as_string

    def _not_empty(self, key: str):
        return Fn.condition_not(Fn.condition_equals(self.param(key), ""))

    def add_conditions(self) -> None:
        self.create_alb = CfnCondition(self, "CreateALB", expression=self._not_empty(p.ALB_WORKLOADS))
        self.create_internal_alb = CfnCondition(self, "CreateInternalALB",
            expression=self._not_empty(p.INTERNAL_ALB_WORKLOADS))
        self.delegate_dns = CfnCondition(self, "DelegateDNS", expression=self._not_empty(p.APP_DNS_NAME))
        self.export_https_listener = CfnCondition(self, "ExportHTTPSListener",
            expression=Fn.condition_and(
                self.create_alb,
                Fn.condition_equals(self.param(p.CREATE_HTTPS_LISTENER), "true")
            ))
        self.export_internal_https_listener = CfnCondition(self, "ExportInternalHTTPSListener",
            expression=Fn.condition_and(
                self.create_internal_alb,
                Fn.condition_equals(self.param(p.CREATE_INTERNAL_HTTPS_LISTENER), "true")
            ))
        self.create_efs = CfnCondition(self, "CreateEFS", expression=self._not_empty(p.EFS_WORKLOADS))
        self.create_nat_gateways = CfnCondition(self, "CreateNATGateways",
            expression=self._not_empty(p.NAT_WORKLOADS))
        self.has_aliases = CfnCondition(self, "HasAliases", expression=self._not_empty(p.ALIASES))
        self.managed_aliases = None
        if self.config.dns_delegation:
            self.managed_aliases = CfnCondition(self, "ManagedAliases",
                expression=Fn.condition_and(self.delegate_dns, self.has_aliases, self.create_alb))

    # Networking helpers: imported IDs are literals, managed ones are references.

    @property
    def vpc_id(self) -> str:
        if self.network is not None:
            return self.network.vpc.ref
        return self.config.imported_vpc.id

    @property
    def public_subnet_ids(self) -> List[str]:
        if self.network is not None:
            return self.network.public_subnet_ids
        return list(self.config.imported_vpc.public_subnet_ids)

    @property
    def private_subnet_ids(self) -> List[str]:
        if self.network is not None:
            return self.network.private_subnet_ids
        return list(self.config.imported_vpc.private_subnet_ids)

    @staticmethod
    def describe(resource, description: str) -> None:
        resource.add_metadata(DESCRIPTION_METADATA_KEY, description)

    @staticmethod
    def _name_tag(suffix: str) -> CfnTag:
        return CfnTag(key="Name", value=Fn.sub(f"envstack-${{AppName}}-${{EnvironmentName}}-{suffix}"))

    # Resources.

    def add_bootstrap_roles(self) -> None:
        """Roles the tools account and CloudFormation assume to manage the environment."""
        self.execution_role = iam.CfnRole(self, "CloudformationExecutionRole",
            role_name=Fn.sub("${AppName}-${EnvironmentName}-CFNExecutionRole"),
            assume_role_policy_document={
                "Version": "2012-10-17",
                "Statement": [{
                    "Effect": "Allow",
                    "Principal": {"Service": ["cloudformation.amazonaws.com", "lambda.amazonaws.com"]},
                    "Action": "sts:AssumeRole",
                }],
            },
            policies=[iam.CfnRole.PolicyProperty(
                policy_name="executeCfn",
                policy_document={
                    "Version": "2012-10-17",
                    "Statement": [
                        {"Effect": "Allow", "NotAction": ["organizations:*", "account:*"], "Resource": "*"},
                        {
                            "Effect": "Allow",
                            "Action": ["organizations:DescribeOrganization", "account:ListRegions"],
                            "Resource": "*",
                        },
                    ],
                },
            )]
        )
        self.describe(self.execution_role,
            "An IAM Role for AWS CloudFormation to manage resources")

        statements = [
            {
                "Sid": "CloudFormation",
                "Effect": "Allow",
                "Action": [
                    "cloudformation:CreateChangeSet",
                    "cloudformation:CreateStack",
                    "cloudformation:DeleteChangeSet",
                    "cloudformation:DeleteStack",
                    "cloudformation:Describe*",
                    "cloudformation:DetectStackDrift",
                    "cloudformation:ExecuteChangeSet",
                    "cloudformation:Get*",
                    "cloudformation:List*",
                    "cloudformation:UpdateStack",
                ],
                "Resource": Fn.sub(
                    "arn:${AWS::Partition}:cloudformation:${AWS::Region}:${AWS::AccountId}:stack/${AppName}-${EnvironmentName}*"),
            },
            {
                "Sid": "ReadEnvironment",
                "Effect": "Allow",
                "Action": [
                    "ecs:Describe*",
                    "ecs:List*",
                    "elasticloadbalancing:Describe*",
                    "ec2:Describe*",
                    "logs:Describe*",
                    "logs:Get*",
                    "servicediscovery:List*",
                    "servicediscovery:Get*",
                    "tag:GetResources",
                ],
                "Resource": "*",
            },
            {
                "Sid": "PassExecutionRole",
                "Effect": "Allow",
                "Action": ["iam:PassRole"],
                "Resource": self.execution_role.attr_arn,
            },
        ]
        if self.config.artifact_bucket_arn:
            statements.append({
                "Sid": "ArtifactBucket",
                "Effect": "Allow",
                "Action": ["s3:GetObject", "s3:PutObject", "s3:ListBucket"],
                "Resource": [self.config.artifact_bucket_arn, f"{self.config.artifact_bucket_arn}/*"],
            })
        if self.config.artifact_bucket_key_arn:
            statements.append({
                "Sid": "ArtifactKey",
                "Effect": "Allow",
                "Action": ["kms:Decrypt", "kms:GenerateDataKey"],
                "Resource": self.config.artifact_bucket_key_arn,
            })

        self.manager_role = iam.CfnRole(self, "EnvironmentManagerRole",
            role_name=Fn.sub("${AppName}-${EnvironmentName}-EnvManagerRole"),
            assume_role_policy_document={
                "Version": "2012-10-17",
                "Statement": [{
                    "Effect": "Allow",
                    "Principal": {"AWS": self.param(p.TOOLS_ACCOUNT_PRINCIPAL)},
                    "Action": "sts:AssumeRole",
                }],
            },
            policies=[iam.CfnRole.PolicyProperty(
                policy_name="root",
                policy_document={"Version": "2012-10-17", "Statement": statements},
            )]
        )
        self.describe(self.manager_role,
            "An IAM Role to describe resources in your environment")

    def add_dns_delegation(self) -> None:
        """Hosted zone for the environment subdomain, plus the custom resources that
        delegate it from the application's zone and validate its certificate."""
        self.custom_resource_role = iam.CfnRole(self, "CustomResourceRole",
            assume_role_policy_document={
                "Version": "2012-10-17",
                "Statement": [{
                    "Effect": "Allow",
                    "Principal": {"Service": ["lambda.amazonaws.com"]},
                    "Action": "sts:AssumeRole",
                }],
            },
            policies=[iam.CfnRole.PolicyProperty(
                policy_name="DNSandACMAccess",
                policy_document={
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Action": [
                                "acm:ListCertificates",
                                "acm:RequestCertificate",
                                "acm:DescribeCertificate",
                                "acm:GetCertificate",
                                "acm:DeleteCertificate",
                                "acm:AddTagsToCertificate",
                                "route53:ListHostedZonesByName",
                                "route53:ListResourceRecordSets",
                                "route53:ChangeResourceRecordSets",
                                "route53:GetChange",
                            ],
                            "Resource": "*",
                        },
                        {
                            "Effect": "Allow",
                            "Action": ["sts:AssumeRole"],
                            "Resource": self.param(p.APP_DNS_DELEGATION_ROLE),
                        },
                    ],
                },
            )],
            managed_policy_arns=[
                Fn.sub("arn:${AWS::Partition}:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole")
            ]
        )
        self.describe(self.custom_resource_role,
            "An IAM role to manage certificates and Route53 hosted zones")

        self.environment_hosted_zone = route53.CfnHostedZone(self, "EnvironmentHostedZone",
            name=Fn.sub("${EnvironmentName}.${AppName}.${AppDNSName}"),
            hosted_zone_config=route53.CfnHostedZone.HostedZoneConfigProperty(
                comment=Fn.sub(
                    "HostedZone for environment ${EnvironmentName} - ${EnvironmentName}.${AppName}.${AppDNSName}")
            )
        )
        self.environment_hosted_zone.cfn_options.condition = self.delegate_dns
        self.describe(self.environment_hosted_zone, "A Route 53 Hosted Zone for the environment's subdomain")

        self.functions: Dict[str, _lambda.CfnFunction] = {}
        for function_name in ENV_CUSTOM_RESOURCES:
            bucket, key = self.config.custom_resource_location(function_name)
            self.functions[function_name] = _lambda.CfnFunction(self, function_name,
                code=_lambda.CfnFunction.CodeProperty(s3_bucket=bucket, s3_key=key),
                handler=CUSTOM_RESOURCE_HANDLER,
                runtime=CUSTOM_RESOURCE_RUNTIME,
                role=self.custom_resource_role.attr_arn,
                timeout=CUSTOM_RESOURCE_TIMEOUT,
                memory_size=512
            )

        self.delegate_dns_action = CfnResource(self, "DelegateDNSAction",
            type="Custom::DNSDelegation",
            properties={
                "ServiceToken": self.functions["DNSDelegationFunction"].attr_arn,
                "DomainName": Fn.sub("${AppName}.${AppDNSName}"),
                "SubdomainName": Fn.sub("${EnvironmentName}.${AppName}.${AppDNSName}"),
                "NameServers": self.environment_hosted_zone.attr_name_servers,
                "RootDNSRole": self.param(p.APP_DNS_DELEGATION_ROLE),
            }
        )
        self.delegate_dns_action.cfn_options.condition = self.delegate_dns
        self.describe(self.delegate_dns_action,
            "Delegate DNS for environment subdomain")

        self.https_cert = CfnResource(self, "HTTPSCert",
            type="Custom::DNSCertValidator",
            properties={
                "ServiceToken": self.functions["CertificateValidationFunction"].attr_arn,
                "AppName": self.param(p.APP_NAME),
                "EnvName": self.param(p.ENVIRONMENT_NAME),
                "DomainName": Fn.sub("${EnvironmentName}.${AppName}.${AppDNSName}"),
                "Aliases": self.param(p.ALIASES),
                "EnvHostedZoneId": self.environment_hosted_zone.ref,
                "Region": Aws.REGION,
                "RootDNSRole": self.param(p.APP_DNS_DELEGATION_ROLE),
            }
        )
        self.https_cert.cfn_options.condition = self.delegate_dns
        self.https_cert.add_dependency(self.delegate_dns_action)
        self.describe(self.https_cert, "Request and validate an ACM certificate for your domain")

    def add_cluster(self) -> None:
        self.service_discovery_namespace = servicediscovery.CfnPrivateDnsNamespace(self, "ServiceDiscoveryNamespace",
            name=self.param(p.SERVICE_DISCOVERY_ENDPOINT),
            vpc=self.vpc_id
        )
        self.describe(self.service_discovery_namespace,
            "A private DNS namespace for discovering services within the environment")

        cluster_settings = None
        if self.config.container_insights is not ContainerInsights.UNSET:
            cluster_settings = [ecs.CfnCluster.ClusterSettingsProperty(
                name="containerInsights",
                value="enabled" if self.config.container_insights is ContainerInsights.ENABLED else "disabled",
            )]
        self.cluster = ecs.CfnCluster(self, "Cluster",
            capacity_providers=["FARGATE", "FARGATE_SPOT"],
            configuration=ecs.CfnCluster.ClusterConfigurationProperty(
                execute_command_configuration=ecs.CfnCluster.ExecuteCommandConfigurationProperty(logging="DEFAULT")
            ),
            cluster_settings=cluster_settings
        )
        self.describe(self.cluster, "An ECS cluster to group your services")

    def add_security_groups(self) -> None:
        self.public_lb_security_group = ec2.CfnSecurityGroup(self, "PublicLoadBalancerSecurityGroup",
            group_description="Access to the public facing load balancer",
            security_group_ingress=[
                ec2.CfnSecurityGroup.IngressProperty(
                    ip_protocol="tcp", cidr_ip="0.0.0.0/0", from_port=80, to_port=80,
                    description="Allow from anyone on port 80"),
                ec2.CfnSecurityGroup.IngressProperty(
                    ip_protocol="tcp", cidr_ip="0.0.0.0/0", from_port=443, to_port=443,
                    description="Allow from anyone on port 443"),
            ],
            vpc_id=self.vpc_id,
            tags=[self._name_tag("lb")]
        )
        self.public_lb_security_group.cfn_options.condition = self.create_alb
        self.describe(self.public_lb_security_group,
            "A security group for your load balancer allowing HTTP and HTTPS traffic")

        self.internal_lb_security_group = ec2.CfnSecurityGroup(self, "InternalLoadBalancerSecurityGroup",
            group_description="Access to the internal load balancer",
            vpc_id=self.vpc_id,
            tags=[self._name_tag("internal-lb")]
        )
        self.internal_lb_security_group.cfn_options.condition = self.create_internal_alb
        self.describe(self.internal_lb_security_group,
            "A security group for your internal load balancer allowing HTTP traffic from within the VPC")

        self.environment_security_group = ec2.CfnSecurityGroup(self, "EnvironmentSecurityGroup",
            group_description=Fn.join("", [self.param(p.APP_NAME), "-", self.param(p.ENVIRONMENT_NAME),
                                           "EnvironmentSecurityGroup"]),
            vpc_id=self.vpc_id,
            tags=[self._name_tag("env")]
        )
        self.describe(self.environment_security_group,
            "A security group to allow your containers to talk to each other")

        self._ingress("EnvironmentSecurityGroupIngressFromPublicALB", "Ingress from the public ALB",
            group=self.environment_security_group, source=self.public_lb_security_group,
            condition=self.create_alb)
        self._ingress("EnvironmentSecurityGroupIngressFromInternalALB", "Ingress from the internal ALB",
            group=self.environment_security_group, source=self.internal_lb_security_group,
            condition=self.create_internal_alb)
        self._ingress("EnvironmentSecurityGroupIngressFromSelf",
            "Ingress from other containers in the same security group",
            group=self.environment_security_group, source=self.environment_security_group)
        self._ingress("InternalALBIngressFromEnvironmentSecurityGroup", "Ingress from the env security group",
            group=self.internal_lb_security_group, source=self.environment_security_group,
            condition=self.create_internal_alb)

        if self.config.allow_vpc_ingress:
            vpc_cidr = self.config.managed_vpc.cidr if self.config.managed_vpc is not None else "0.0.0.0/0"
            for protocol, port, condition in (("Http", 80, self.create_internal_alb),
                                              ("Https", 443, self.export_internal_https_listener)):
                rule = ec2.CfnSecurityGroupIngress(self, f"InternalLoadBalancerSecurityGroupIngressFrom{protocol}",
                    description=f"Allow from within the VPC on port {port}",
                    cidr_ip=vpc_cidr,
                    from_port=port,
                    to_port=port,
                    ip_protocol="tcp",
                    group_id=self.internal_lb_security_group.ref
                )
                rule.cfn_options.condition = condition
                self.describe(rule,
                    f"An inbound rule to the internal load balancer security group for port {port} within the VPC")

    def _ingress(self, logical_id: str, description: str, *,
            group: ec2.CfnSecurityGroup,
            source: ec2.CfnSecurityGroup,
            condition: Optional[CfnCondition] = None) -> ec2.CfnSecurityGroupIngress:
        rule = ec2.CfnSecurityGroupIngress(self, logical_id,
            description=description,
            group_id=group.ref,
            ip_protocol="-1",
            source_security_group_id=source.ref
        )
        if condition is not None:
            rule.cfn_options.condition = condition
        return rule

    def _default_target_group(self, logical_id: str, condition: CfnCondition) -> elbv2.CfnTargetGroup:
        """Placeholder target group so listeners exist before any service registers."""
        target_group = elbv2.CfnTargetGroup(self, logical_id,
            health_check_interval_seconds=10,
            healthy_threshold_count=2,
            health_check_timeout_seconds=5,
            port=80,
            protocol="HTTP",
            target_group_attributes=[
                elbv2.CfnTargetGroup.TargetGroupAttributeProperty(
                    key="deregistration_delay.timeout_seconds", value="60")
            ],
            target_type="ip",
            vpc_id=self.vpc_id
        )
        target_group.cfn_options.condition = condition
        return target_group

    def _listener(self, logical_id: str, *,
            load_balancer: elbv2.CfnLoadBalancer,
            target_group: elbv2.CfnTargetGroup,
            port: int,
            condition: CfnCondition,
            certificate_arn: Optional[str] = None) -> elbv2.CfnListener:
        certificates = None
        if certificate_arn is not None:
            certificates = [elbv2.CfnListener.CertificateProperty(certificate_arn=certificate_arn)]
        listener = elbv2.CfnListener(self, logical_id,
            default_actions=[elbv2.CfnListener.ActionProperty(type="forward", target_group_arn=target_group.ref)],
            load_balancer_arn=load_balancer.ref,
            port=port,
            protocol="HTTPS" if certificate_arn is not None else "HTTP",
            certificates=certificates
        )
        listener.cfn_options.condition = condition
        return listener

    def _additional_certificates(self, prefix: str, listener: elbv2.CfnListener,
            certificate_arns, condition: CfnCondition) -> None:
        """The first certificate sits on the listener; the rest attach separately."""
        for index, arn in enumerate(certificate_arns):
            if index == 0:
                continue
            attachment = elbv2.CfnListenerCertificate(self, f"{prefix}{index + 1}",
                listener_arn=listener.ref,
                certificates=[elbv2.CfnListenerCertificate.CertificateProperty(certificate_arn=arn)]
            )
            attachment.cfn_options.condition = condition

    def add_public_load_balancer(self) -> None:
        self.public_load_balancer = elbv2.CfnLoadBalancer(self, "PublicLoadBalancer",
            scheme="internet-facing",
            security_groups=[self.public_lb_security_group.attr_group_id],
            subnets=self.public_subnet_ids,
            type="application"
        )
        self.public_load_balancer.cfn_options.condition = self.create_alb
        self.describe(self.public_load_balancer,
            "An Application Load Balancer to distribute public traffic to your services")

        self.default_http_target_group = self._default_target_group("DefaultHTTPTargetGroup", self.create_alb)
        self.http_listener = self._listener("HTTPListener",
            load_balancer=self.public_load_balancer,
            target_group=self.default_http_target_group,
            port=80,
            condition=self.create_alb)
        self.describe(self.http_listener, "A load balancer listener to route HTTP traffic")

        self.https_listener = None
        if self.config.public_https is PublicHTTPS.NONE:
            return
        if self.config.public_https is PublicHTTPS.IMPORTED:
            certificate_arn = self.config.public_certificate_arns[0]
        else:
            certificate_arn = self.https_cert.ref
        self.https_listener = self._listener("HTTPSListener",
            load_balancer=self.public_load_balancer,
            target_group=self.default_http_target_group,
            port=443,
            condition=self.export_https_listener,
            certificate_arn=certificate_arn)
        self.describe(self.https_listener, "A load balancer listener to route HTTPS traffic")
        self._additional_certificates("HTTPSImportCertificate", self.https_listener,
            self.config.public_certificate_arns, self.export_https_listener)

    def add_internal_load_balancer(self) -> None:
        if self.config.internal_alb_subnets:
            subnets = list(self.config.internal_alb_subnets)
        else:
            subnets = self.private_subnet_ids
        self.internal_load_balancer = elbv2.CfnLoadBalancer(self, "InternalLoadBalancer",
            scheme="internal",
            security_groups=[self.internal_lb_security_group.attr_group_id],
            subnets=subnets,
            type="application"
        )
        self.internal_load_balancer.cfn_options.condition = self.create_internal_alb
        self.describe(self.internal_load_balancer,
            "An internal Application Load Balancer to distribute private traffic from within the VPC to your services")

        self.default_internal_http_target_group = self._default_target_group(
            "DefaultInternalHTTPTargetGroup", self.create_internal_alb)
        self.internal_http_listener = self._listener("InternalHTTPListener",
            load_balancer=self.internal_load_balancer,
            target_group=self.default_internal_http_target_group,
            port=80,
            condition=self.create_internal_alb)
        self.describe(self.internal_http_listener, "An internal load balancer listener to route HTTP traffic")

        self.internal_https_listener = None
        if self.config.internal_https is InternalHTTPS.IMPORTED:
            self.internal_https_listener = self._listener("InternalHTTPSListener",
                load_balancer=self.internal_load_balancer,
                target_group=self.default_internal_http_target_group,
                port=443,
                condition=self.export_internal_https_listener,
                certificate_arn=self.config.private_certificate_arns[0])
            self.describe(self.internal_https_listener,
                "An internal load balancer listener to route HTTPS traffic")
            self._additional_certificates("InternalHTTPSImportCertificate", self.internal_https_listener,
                self.config.private_certificate_arns, self.export_internal_https_listener)

        self.internal_hosted_zone = None
        if self.config.private_hosted_zone:
            self.internal_hosted_zone = route53.CfnHostedZone(self, "InternalWorkloadsHostedZone",
                name=Fn.sub("${EnvironmentName}.${AppName}.internal"),
                vpcs=[route53.CfnHostedZone.VPCProperty(vpc_id=self.vpc_id, vpc_region=Aws.REGION)]
            )
            self.internal_hosted_zone.cfn_options.condition = self.create_internal_alb
            self.describe(self.internal_hosted_zone,
                f"A hosted zone named {self.config.env_name}.{self.config.app_name}.internal "
                "for backends behind a private load balancer")

    def add_file_system(self) -> None:
        self.file_system = efs.CfnFileSystem(self, "FileSystem",
            backup_policy=efs.CfnFileSystem.BackupPolicyProperty(status="ENABLED"),
            encrypted=True,
            file_system_policy={
                "Version": "2012-10-17",
                "Id": "EnvStackEFSPolicy",
                "Statement": [
                    {
                        "Sid": "AllowIAMFromTaggedRoles",
                        "Effect": "Allow",
                        "Principal": {"AWS": "*"},
                        "Action": ["elasticfilesystem:ClientWrite", "elasticfilesystem:ClientMount"],
                        "Condition": {
                            "Bool": {"elasticfilesystem:AccessedViaMountTarget": True},
                            "StringEquals": {
                                "iam:ResourceTag/envstack-application": Fn.sub("${AppName}"),
                                "iam:ResourceTag/envstack-environment": Fn.sub("${EnvironmentName}"),
                            },
                        },
                    },
                    {
                        "Sid": "DenyUnencryptedAccess",
                        "Effect": "Deny",
                        "Principal": "*",
                        "Action": "elasticfilesystem:*",
                        "Condition": {"Bool": {"aws:SecureTransport": False}},
                    },
                ],
            },
            lifecycle_policies=[efs.CfnFileSystem.LifecyclePolicyProperty(transition_to_ia="AFTER_30_DAYS")],
            performance_mode="generalPurpose",
            throughput_mode="bursting"
        )
        self.file_system.cfn_options.condition = self.create_efs
        self.describe(self.file_system, "An EFS filesystem for persistent task storage")

        self.efs_security_group = ec2.CfnSecurityGroup(self, "EFSSecurityGroup",
            group_description=Fn.join("", [self.param(p.APP_NAME), "-", self.param(p.ENVIRONMENT_NAME),
                                           "EFSSecurityGroup"]),
            vpc_id=self.vpc_id,
            tags=[self._name_tag("efs")]
        )
        self.efs_security_group.cfn_options.condition = self.create_efs
        self.describe(self.efs_security_group,
            "A security group to allow your containers to talk to EFS storage")
        self._ingress("EFSSecurityGroupIngressFromEnvironment",
            "Ingress from containers in the Environment Security Group.",
            group=self.efs_security_group, source=self.environment_security_group,
            condition=self.create_efs)

        for index, subnet_id in enumerate(self.private_subnet_ids):
            mount_target = efs.CfnMountTarget(self, f"MountTarget{index + 1}",
                file_system_id=self.file_system.ref,
                subnet_id=subnet_id,
                security_groups=[self.efs_security_group.ref]
            )
            mount_target.cfn_options.condition = self.create_efs

    def add_custom_domain(self) -> None:
        """Alias records for the public load balancer under the application's domain."""
        self.custom_domain_action = CfnResource(self, "CustomDomainAction",
            type="Custom::CustomDomain",
            properties={
                "ServiceToken": self.functions["CustomDomainFunction"].attr_arn,
                "Aliases": self.param(p.ALIASES),
                "AppDNSRole": self.param(p.APP_DNS_DELEGATION_ROLE),
                "AppDNSName": Fn.sub("${AppName}.${AppDNSName}"),
                "EnvDNSName": Fn.sub("${EnvironmentName}.${AppName}.${AppDNSName}"),
                "EnvHostedZoneId": self.environment_hosted_zone.ref,
                "LoadBalancerDNS": self.public_load_balancer.attr_dns_name,
                "LoadBalancerHostedZoneID": self.public_load_balancer.attr_canonical_hosted_zone_id,
            }
        )
        self.custom_domain_action.cfn_options.condition = self.managed_aliases
        self.custom_domain_action.add_dependency(self.https_cert)
        self.describe(self.custom_domain_action,
            "Add an A-record to the hosted zone for the domain alias")

    def add_cdn(self) -> None:
        self.cdn = cloudfront.CfnDistribution(self, "CloudFrontDistribution",
            distribution_config=cloudfront.CfnDistribution.DistributionConfigProperty(
                enabled=True,
                default_cache_behavior=cloudfront.CfnDistribution.DefaultCacheBehaviorProperty(
                    target_origin_id=CDN_ORIGIN_ID,
                    viewer_protocol_policy="allow-all",
                    cache_policy_id=CACHING_DISABLED_POLICY_ID,
                    origin_request_policy_id=ALL_VIEWER_ORIGIN_REQUEST_POLICY_ID,
                    allowed_methods=["GET", "HEAD", "OPTIONS", "PUT", "PATCH", "POST", "DELETE"],
                ),
                origins=[cloudfront.CfnDistribution.OriginProperty(
                    id=CDN_ORIGIN_ID,
                    domain_name=self.public_load_balancer.attr_dns_name,
                    custom_origin_config=cloudfront.CfnDistribution.CustomOriginConfigProperty(
                        origin_protocol_policy="http-only"),
                )],
            )
        )
        self.cdn.cfn_options.condition = self.create_alb
        self.describe(self.cdn, "A CloudFront distribution for global content delivery")

    # Outputs.

    def output(self, logical_id: str, value: str, *,
            export: Optional[str] = None,
            condition: Optional[CfnCondition] = None,
            description: Optional[str] = None) -> CfnOutput:
        # Some outputs share a name with a resource, so the construct ID differs from the logical ID.
        out = CfnOutput(self, f"{logical_id}Output",
            value=value,
            export_name=Fn.sub(f"${{AWS::StackName}}-{export}") if export else None,
            condition=condition,
            description=description
        )
        out.override_logical_id(logical_id)
        return out

    def add_outputs(self) -> None:
        self.output("VpcId", self.vpc_id, export="VpcId")
        if self.public_subnet_ids:
            self.output("PublicSubnets", Fn.join(",", self.public_subnet_ids), export="PublicSubnets")
        self.output("PrivateSubnets", Fn.join(",", self.private_subnet_ids), export="PrivateSubnets")
        if self.network is not None:
            self.output("InternetGatewayID", self.network.internet_gateway.ref, export="InternetGatewayID")
            self.output("PublicRouteTableID", self.network.public_route_table.ref, export="PublicRouteTableID")
            self.output("PrivateRouteTableIDs",
                Fn.join(",", [table.ref for table in self.network.private_route_tables]),
                export="PrivateRouteTableIDs", condition=self.create_nat_gateways)

        self.output("ServiceDiscoveryNamespaceID", self.service_discovery_namespace.attr_id,
            export="ServiceDiscoveryNamespaceID")
        self.output("EnvironmentSecurityGroup", self.environment_security_group.ref,
            export="EnvironmentSecurityGroup")

        self.output("PublicLoadBalancerDNSName", self.public_load_balancer.attr_dns_name,
            export="PublicLoadBalancerDNS", condition=self.create_alb)
        self.output("PublicLoadBalancerFullName", self.public_load_balancer.attr_load_balancer_full_name,
            export="PublicLoadBalancerFullName", condition=self.create_alb)
        self.output("PublicLoadBalancerHostedZone", self.public_load_balancer.attr_canonical_hosted_zone_id,
            export="CanonicalHostedZoneID", condition=self.create_alb)
        self.output("HTTPListenerArn", self.http_listener.ref,
            export="HTTPListenerArn", condition=self.create_alb)
        if self.https_listener is not None:
            self.output("HTTPSListenerArn", self.https_listener.ref,
                export="HTTPSListenerArn", condition=self.export_https_listener)
        self.output("DefaultHTTPTargetGroupArn", self.default_http_target_group.ref,
            export="DefaultHTTPTargetGroup", condition=self.create_alb)

        self.output("InternalLoadBalancerDNSName", self.internal_load_balancer.attr_dns_name,
            export="InternalLoadBalancerDNS", condition=self.create_internal_alb)
        self.output("InternalLoadBalancerFullName", self.internal_load_balancer.attr_load_balancer_full_name,
            export="InternalLoadBalancerFullName", condition=self.create_internal_alb)
        self.output("InternalLoadBalancerHostedZone", self.internal_load_balancer.attr_canonical_hosted_zone_id,
            export="InternalLoadBalancerCanonicalHostedZoneID", condition=self.create_internal_alb)
        if self.internal_hosted_zone is not None:
            self.output("InternalWorkloadsHostedZone", self.internal_hosted_zone.attr_id,
                export="InternalWorkloadsHostedZoneID", condition=self.create_internal_alb)
            self.output("InternalWorkloadsHostedZoneName", Fn.sub("${EnvironmentName}.${AppName}.internal"),
                export="InternalWorkloadsHostedZoneName", condition=self.create_internal_alb)
        self.output("InternalHTTPListenerArn", self.internal_http_listener.ref,
            export="InternalHTTPListenerArn", condition=self.create_internal_alb)
        if self.internal_https_listener is not None:
            self.output("InternalHTTPSListenerArn", self.internal_https_listener.ref,
                export="InternalHTTPSListenerArn", condition=self.export_internal_https_listener)
        self.output("InternalLoadBalancerSecurityGroup", self.internal_lb_security_group.ref,
            export="InternalLoadBalancerSecurityGroup", condition=self.create_internal_alb)

        self.output("ClusterId", self.cluster.ref, export="ClusterId")
        self.output("EnvironmentManagerRoleARN", self.manager_role.attr_arn,
            export="EnvironmentManagerRoleARN",
            description="The role to be assumed by the tools account to manage environments.")
        self.output("CFNExecutionRoleARN", self.execution_role.attr_arn,
            export="CFNExecutionRoleARN",
            description="The role to be assumed by the Cloudformation service when it deploys application infrastructure.")

        if self.config.dns_delegation:
            self.output("EnvironmentHostedZone", self.environment_hosted_zone.ref,
                export="HostedZone", condition=self.delegate_dns,
                description="The HostedZone for this environment's private DNS.")
            self.output("EnvironmentSubdomain", Fn.sub("${EnvironmentName}.${AppName}.${AppDNSName}"),
                export="SubDomain", condition=self.delegate_dns,
                description="The domain name of this environment.")
        if self.config.cdn_enabled:
            self.output("CloudFrontDistributionDomainName", self.cdn.attr_domain_name,
                export="CloudFrontDistributionDomainName", condition=self.create_alb)

        self.output("EnabledFeatures",
            Fn.sub("${ALBWorkloads},${InternalALBWorkloads},${EFSWorkloads},${NATWorkloads}"),
            description="Forces a stack update when only feature parameters like ALBWorkloads change.")
        self.output("ManagedFileSystemID", self.file_system.ref,
            export="FilesystemID", condition=self.create_efs,
            description="The ID of the managed EFS filesystem.")
