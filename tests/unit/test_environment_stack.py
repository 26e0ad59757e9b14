"""Unit tests for EnvironmentStack template rendering.

Synthesizes the stack for different feature toggles and checks which resources,
conditions and outputs end up in the template: managed vs imported VPC,
imported certificates, DNS delegation, container insights and the CDN.
"""
import aws_cdk as cdk
from aws_cdk.assertions import Match, Template

from stacks.environment.environment_stack import EnvironmentStack
from stacks.environment.parameters import ENV_PARAMETERS
from stacks.environment.template_config import (
    ContainerInsights,
    EnvironmentTemplateConfig,
    ImportedVPC,
    InternalHTTPS,
    ManagedVPC,
    PublicHTTPS,
)

CERT_1 = "arn:aws:acm:us-west-2:123456789012:certificate/one"
CERT_2 = "arn:aws:acm:us-west-2:123456789012:certificate/two"
URLS = {
    "CertificateValidationFunction": "https://bucket.s3.us-west-2.amazonaws.com/manual/cert.zip",
    "CustomDomainFunction": "https://bucket.s3.us-west-2.amazonaws.com/manual/domain.zip",
    "DNSDelegationFunction": "https://bucket.s3.us-west-2.amazonaws.com/manual/dns.zip",
}
IMPORTED = ImportedVPC(
    id="vpc-1234",
    public_subnet_ids=("subnet-pub1", "subnet-pub2"),
    private_subnet_ids=("subnet-priv1", "subnet-priv2"),
)


def synth_environment_stack(**overrides):
    """Synthesize an EnvironmentStack for a config built from the given overrides."""
    fields = dict(app_name="phonetool", env_name="test", version="v1.12.0", managed_vpc=ManagedVPC())
    fields.update(overrides)
    config = EnvironmentTemplateConfig(**fields)
    config.validate()
    app = cdk.App()
    stack = EnvironmentStack(app, "phonetool-test",
        config=config,
        synthesizer=cdk.DefaultStackSynthesizer(generate_bootstrap_version_rule=False)
    )
    return stack, Template.from_stack(stack)


def _resources(template, resource_type):
    return template.find_resources(resource_type)


def test_declares_every_parameter():
    _, template = synth_environment_stack()
    params = template.to_json()["Parameters"]
    assert set(params) == {decl.key for decl in ENV_PARAMETERS}
    assert params["CreateHTTPSListener"]["AllowedValues"] == ["true", "false"]


def test_metadata_carries_version_and_manifest():
    _, template = synth_environment_stack(serialized_manifest="name: test\n")
    metadata = template.to_json()["Metadata"]
    assert metadata["Version"] == "v1.12.0"
    assert metadata["Manifest"] == "name: test\n"


def test_control_plane_conditions_exist():
    _, template = synth_environment_stack()
    conditions = template.to_json()["Conditions"]
    for name in ("CreateALB", "CreateInternalALB", "DelegateDNS", "ExportHTTPSListener",
                 "ExportInternalHTTPSListener", "CreateEFS", "CreateNATGateways", "HasAliases"):
        assert name in conditions
    assert "ManagedAliases" not in conditions


def test_managed_vpc_resources():
    """Test the default managed VPC has two zones and conditional NAT gateways."""
    _, template = synth_environment_stack()
    template.has_resource_properties("AWS::EC2::VPC", {"CidrBlock": "10.0.0.0/16"})
    template.resource_count_is("AWS::EC2::Subnet", 4)
    template.has_resource_properties("AWS::EC2::Subnet", {
        "CidrBlock": "10.0.2.0/24",
        "MapPublicIpOnLaunch": False,
    })
    nat_gateways = _resources(template, "AWS::EC2::NatGateway")
    assert set(nat_gateways) == {"NatGateway1", "NatGateway2"}
    assert all(r["Condition"] == "CreateNATGateways" for r in nat_gateways.values())


def test_load_balancers_use_managed_subnets():
    _, template = synth_environment_stack()
    template.has_resource("AWS::ElasticLoadBalancingV2::LoadBalancer", {
        "Condition": "CreateALB",
        "Properties": Match.object_like({
            "Scheme": "internet-facing",
            "Subnets": [{"Ref": "PublicSubnet1"}, {"Ref": "PublicSubnet2"}],
        }),
    })
    template.has_resource("AWS::ElasticLoadBalancingV2::LoadBalancer", {
        "Condition": "CreateInternalALB",
        "Properties": Match.object_like({
            "Scheme": "internal",
            "Subnets": [{"Ref": "PrivateSubnet1"}, {"Ref": "PrivateSubnet2"}],
        }),
    })


def test_imported_vpc_uses_literal_subnet_ids():
    _, template = synth_environment_stack(managed_vpc=None, imported_vpc=IMPORTED)
    template.resource_count_is("AWS::EC2::VPC", 0)
    template.resource_count_is("AWS::EC2::Subnet", 0)
    template.has_resource_properties("AWS::ElasticLoadBalancingV2::LoadBalancer", {
        "Scheme": "internal",
        "Subnets": ["subnet-priv1", "subnet-priv2"],
    })
    template.has_resource_properties("AWS::ServiceDiscovery::PrivateDnsNamespace", {"Vpc": "vpc-1234"})
    assert template.to_json()["Outputs"]["VpcId"]["Value"] == "vpc-1234"


def test_internal_load_balancer_in_custom_subnets():
    _, template = synth_environment_stack(managed_vpc=None, imported_vpc=IMPORTED,
                                          internal_alb_subnets=("subnet-priv2",))
    template.has_resource_properties("AWS::ElasticLoadBalancingV2::LoadBalancer", {
        "Scheme": "internal",
        "Subnets": ["subnet-priv2"],
    })


def test_no_https_listener_without_certificates():
    _, template = synth_environment_stack()
    resources = template.to_json()["Resources"]
    assert "HTTPSListener" not in resources
    assert "InternalHTTPSListener" not in resources
    assert "HTTPListener" in resources
    assert "InternalWorkloadsHostedZone" in resources


def test_imported_public_certificates():
    """Test the first certificate sits on the listener and the rest attach separately."""
    _, template = synth_environment_stack(public_https=PublicHTTPS.IMPORTED,
                                          public_certificate_arns=(CERT_1, CERT_2))
    template.has_resource("AWS::ElasticLoadBalancingV2::Listener", {
        "Condition": "ExportHTTPSListener",
        "Properties": Match.object_like({
            "Port": 443,
            "Protocol": "HTTPS",
            "Certificates": [{"CertificateArn": CERT_1}],
        }),
    })
    attachments = _resources(template, "AWS::ElasticLoadBalancingV2::ListenerCertificate")
    assert list(attachments) == ["HTTPSImportCertificate2"]
    assert attachments["HTTPSImportCertificate2"]["Properties"]["Certificates"] == [{"CertificateArn": CERT_2}]


def test_imported_private_certificates_replace_private_hosted_zone():
    _, template = synth_environment_stack(internal_https=InternalHTTPS.IMPORTED,
                                          private_certificate_arns=(CERT_1,))
    resources = template.to_json()["Resources"]
    assert resources["InternalHTTPSListener"]["Condition"] == "ExportInternalHTTPSListener"
    assert "InternalWorkloadsHostedZone" not in resources
    assert "InternalWorkloadsHostedZone" not in template.to_json()["Outputs"]


def test_dns_delegation_block():
    _, template = synth_environment_stack(dns_delegation=True, public_https=PublicHTTPS.MANAGED,
                                          custom_resources_urls=URLS)
    resources = template.to_json()["Resources"]
    assert resources["EnvironmentHostedZone"]["Condition"] == "DelegateDNS"
    assert resources["DelegateDNSAction"]["Type"] == "Custom::DNSDelegation"
    assert resources["HTTPSCert"]["Type"] == "Custom::DNSCertValidator"
    assert resources["HTTPSCert"]["DependsOn"] == ["DelegateDNSAction"]
    assert resources["CustomDomainAction"]["Condition"] == "ManagedAliases"
    assert "ManagedAliases" in template.to_json()["Conditions"]

    template.has_resource_properties("AWS::Lambda::Function", {
        "Code": {"S3Bucket": "bucket", "S3Key": "manual/dns.zip"},
        "Handler": "handler.on_event",
    })
    template.resource_count_is("AWS::Lambda::Function", 3)
    template.has_resource_properties("AWS::ElasticLoadBalancingV2::Listener", {
        "Port": 443,
        "Certificates": [{"CertificateArn": {"Ref": "HTTPSCert"}}],
    })


def test_container_insights_setting():
    _, template = synth_environment_stack(container_insights=ContainerInsights.ENABLED)
    template.has_resource_properties("AWS::ECS::Cluster", {
        "ClusterSettings": [{"Name": "containerInsights", "Value": "enabled"}],
    })

    _, template = synth_environment_stack()
    cluster = list(_resources(template, "AWS::ECS::Cluster").values())[0]
    assert "ClusterSettings" not in cluster["Properties"]


def test_vpc_ingress_to_internal_load_balancer():
    _, template = synth_environment_stack(allow_vpc_ingress=True)
    resources = template.to_json()["Resources"]
    assert resources["InternalLoadBalancerSecurityGroupIngressFromHttp"]["Properties"]["CidrIp"] == "10.0.0.0/16"
    assert resources["InternalLoadBalancerSecurityGroupIngressFromHttps"]["Condition"] == "ExportInternalHTTPSListener"


def test_cdn_distribution():
    _, template = synth_environment_stack(cdn_enabled=True)
    template.has_resource("AWS::CloudFront::Distribution", {"Condition": "CreateALB"})
    assert "CloudFrontDistributionDomainName" in template.to_json()["Outputs"]


def test_efs_resources_are_conditional():
    _, template = synth_environment_stack()
    template.has_resource("AWS::EFS::FileSystem", {"Condition": "CreateEFS"})
    mount_targets = _resources(template, "AWS::EFS::MountTarget")
    assert set(mount_targets) == {"MountTarget1", "MountTarget2"}


def test_outputs_are_exported_under_stack_name():
    _, template = synth_environment_stack()
    outputs = template.to_json()["Outputs"]
    assert outputs["VpcId"]["Export"]["Name"] == {"Fn::Sub": "${AWS::StackName}-VpcId"}
    assert outputs["EnvironmentSecurityGroup"]["Value"] == {"Ref": "EnvironmentSecurityGroup"}
    assert outputs["PublicLoadBalancerDNSName"]["Condition"] == "CreateALB"
    assert "EnabledFeatures" in outputs
    assert "HTTPSListenerArn" not in outputs


def test_managed_vpc_with_explicit_zones():
    """Test one subnet pair and NAT gateway per listed availability zone."""
    vpc = ManagedVPC(
        cidr="10.1.0.0/16",
        public_subnet_cidrs=("10.1.0.0/24", "10.1.1.0/24", "10.1.2.0/24"),
        private_subnet_cidrs=("10.1.3.0/24", "10.1.4.0/24", "10.1.5.0/24"),
        availability_zones=("us-west-2a", "us-west-2b", "us-west-2c"),
    )
    _, template = synth_environment_stack(managed_vpc=vpc)
    resources = template.to_json()["Resources"]
    template.resource_count_is("AWS::EC2::Subnet", 6)
    template.resource_count_is("AWS::EC2::NatGateway", 3)
    assert resources["PublicSubnet3"]["Properties"]["AvailabilityZone"] == "us-west-2c"
    assert resources["PrivateSubnet3"]["Properties"]["Tags"] == [
        {"Key": "Name", "Value": {"Fn::Sub": "envstack-${AppName}-${EnvironmentName}-priv3"}},
    ]
    assert resources["PrivateRouteTable3Association"]["Properties"]["SubnetId"] == {"Ref": "PrivateSubnet3"}
