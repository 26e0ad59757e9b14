"""Typed description of what goes into an environment template.

EnvironmentTemplateConfig is evaluated from the desired deployment input once.
Each feature toggle has exactly one state, and the config is validated before
anything is rendered, so the CDK stack that renders it never has to decide
between half-enabled features.
"""

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Tuple

from deployer.custom_resources import ENV_CUSTOM_RESOURCES
from deployer.inputs import CreateEnvironmentInput
from deployer.manifest import EnvironmentManifest
from deployer.s3 import parse_url

DEFAULT_VPC_CIDR = "10.0.0.0/16"
DEFAULT_PUBLIC_SUBNET_CIDRS = ("10.0.0.0/24", "10.0.1.0/24")
DEFAULT_PRIVATE_SUBNET_CIDRS = ("10.0.2.0/24", "10.0.3.0/24")


class PublicHTTPS(Enum):
    NONE = "none"
    IMPORTED = "imported"  # listener uses certificates from the manifest
    MANAGED = "managed"    # listener uses the certificate validated against the app's domain


class InternalHTTPS(Enum):
    NONE = "none"
    IMPORTED = "imported"


class ContainerInsights(Enum):
    UNSET = "unset"
    ENABLED = "enabled"
    DISABLED = "disabled"


@dataclass(frozen=True)
class ManagedVPC:
    cidr: str = DEFAULT_VPC_CIDR
    public_subnet_cidrs: Tuple[str, ...] = DEFAULT_PUBLIC_SUBNET_CIDRS
    private_subnet_cidrs: Tuple[str, ...] = DEFAULT_PRIVATE_SUBNET_CIDRS
    # Empty means "pick the region's availability zones in order".
    availability_zones: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ImportedVPC:
    id: str
    public_subnet_ids: Tuple[str, ...] = ()
    private_subnet_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EnvironmentTemplateConfig:
    app_name: str
    env_name: str
    version: str
    serialized_manifest: str = ""
    managed_vpc: Optional[ManagedVPC] = None
    imported_vpc: Optional[ImportedVPC] = None
    public_https: PublicHTTPS = PublicHTTPS.NONE
    public_certificate_arns: Tuple[str, ...] = ()
    internal_https: InternalHTTPS = InternalHTTPS.NONE
    private_certificate_arns: Tuple[str, ...] = ()
    internal_alb_subnets: Tuple[str, ...] = ()
    allow_vpc_ingress: bool = False
    container_insights: ContainerInsights = ContainerInsights.UNSET
    cdn_enabled: bool = False
    dns_delegation: bool = False
    custom_resources_urls: Mapping[str, str] = field(default_factory=dict)
    artifact_bucket_arn: str = ""
    artifact_bucket_key_arn: str = ""

    @property
    def private_hosted_zone(self) -> bool:
        """The internal hosted zone is skipped when imported certificates own the private DNS."""
        return self.internal_https is not InternalHTTPS.IMPORTED

    @classmethod
    def from_input(cls, env_input: CreateEnvironmentInput) -> "EnvironmentTemplateConfig":
        mft = env_input.manifest or EnvironmentManifest(name=env_input.name)
        public_certs = mft.http.public.certificates
        private_certs = mft.http.private.certificates
        dns_delegation = bool(env_input.app.domain) and not public_certs

        if public_certs:
            public_https = PublicHTTPS.IMPORTED
        elif dns_delegation:
            public_https = PublicHTTPS.MANAGED
        else:
            public_https = PublicHTTPS.NONE

        insights = ContainerInsights.UNSET
        if mft.observability is not None and mft.observability.container_insights is not None:
            insights = ContainerInsights.ENABLED if mft.observability.container_insights else ContainerInsights.DISABLED

        managed_vpc, imported_vpc = _vpc_from_manifest(mft)
        config = cls(
            app_name=env_input.app.name,
            env_name=env_input.name,
            version=env_input.version,
            serialized_manifest=env_input.raw_manifest.decode("utf-8") if env_input.raw_manifest else "",
            managed_vpc=managed_vpc,
            imported_vpc=imported_vpc,
            public_https=public_https,
            public_certificate_arns=tuple(public_certs),
            internal_https=InternalHTTPS.IMPORTED if private_certs else InternalHTTPS.NONE,
            private_certificate_arns=tuple(private_certs),
            internal_alb_subnets=tuple(mft.http.private.subnets),
            allow_vpc_ingress=mft.http.private.vpc_ingress,
            container_insights=insights,
            cdn_enabled=mft.cdn,
            dns_delegation=dns_delegation,
            custom_resources_urls=dict(env_input.custom_resources_urls),
            artifact_bucket_arn=env_input.artifact_bucket_arn,
            artifact_bucket_key_arn=env_input.artifact_bucket_key_arn,
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Check the toggles are consistent with each other.

        Raises:
            ValueError: On any inconsistency; rendering must not proceed.
        """
        if (self.managed_vpc is None) == (self.imported_vpc is None):
            raise ValueError("exactly one of a managed or an imported VPC must be configured")
        if self.managed_vpc is not None:
            _validate_managed_vpc(self.managed_vpc)
        else:
            _validate_imported_vpc(self.imported_vpc)

        if (self.public_https is PublicHTTPS.IMPORTED) != bool(self.public_certificate_arns):
            raise ValueError("public HTTPS must be imported exactly when public certificates are set")
        if (self.internal_https is InternalHTTPS.IMPORTED) != bool(self.private_certificate_arns):
            raise ValueError("internal HTTPS must be imported exactly when private certificates are set")
        if (self.public_https is PublicHTTPS.MANAGED) != self.dns_delegation:
            raise ValueError("a managed public certificate requires DNS delegation and vice versa")

        if self.internal_alb_subnets:
            if self.imported_vpc is None:
                raise ValueError("internal load balancer subnets can only be placed in an imported VPC")
            unknown = [s for s in self.internal_alb_subnets if s not in self.imported_vpc.private_subnet_ids]
            if unknown:
                raise ValueError(f"internal load balancer subnets {unknown} are not private subnets of the imported VPC")

        if self.dns_delegation:
            for function_name in ENV_CUSTOM_RESOURCES:
                url = self.custom_resources_urls.get(function_name)
                if not url:
                    raise ValueError(f"missing the URL of custom resource {function_name}")
                parse_url(url)

    def custom_resource_location(self, function_name: str) -> Tuple[str, str]:
        return parse_url(self.custom_resources_urls[function_name])


def _vpc_from_manifest(mft: EnvironmentManifest) -> Tuple[Optional[ManagedVPC], Optional[ImportedVPC]]:
    vpc = mft.vpc
    if vpc.is_imported:
        return None, ImportedVPC(
            id=vpc.id,
            public_subnet_ids=tuple(s.id for s in vpc.public_subnets),
            private_subnet_ids=tuple(s.id for s in vpc.private_subnets),
        )
    if not vpc.cidr and not vpc.public_subnets and not vpc.private_subnets:
        return ManagedVPC(), None
    return ManagedVPC(
        cidr=vpc.cidr or DEFAULT_VPC_CIDR,
        public_subnet_cidrs=tuple(s.cidr for s in vpc.public_subnets),
        private_subnet_cidrs=tuple(s.cidr for s in vpc.private_subnets),
        availability_zones=_subnet_zones(vpc.public_subnets, vpc.private_subnets),
    ), None


def _subnet_zones(public, private) -> Tuple[str, ...]:
    """Zones of the managed subnet pairs; the n-th public and private subnets share a zone."""
    azs = []
    for pub, priv in zip(public, private):
        if pub.az and priv.az and pub.az != priv.az:
            raise ValueError(f"private subnet {priv.cidr} is in {priv.az} but its public subnet "
                             f"{pub.cidr} is in {pub.az}")
        if pub.az or priv.az:
            azs.append(pub.az or priv.az)
    return tuple(azs)


def _validate_managed_vpc(vpc: ManagedVPC) -> None:
    try:
        network = ipaddress.ip_network(vpc.cidr)
    except ValueError as e:
        raise ValueError(f"invalid VPC CIDR block: {vpc.cidr}") from e
    if not vpc.public_subnet_cidrs or len(vpc.public_subnet_cidrs) != len(vpc.private_subnet_cidrs):
        raise ValueError("a managed VPC needs the same non-zero number of public and private subnets")
    if vpc.availability_zones and len(vpc.availability_zones) != len(vpc.public_subnet_cidrs):
        raise ValueError("availability zones must be set for every subnet or for none")
    for cidr in vpc.public_subnet_cidrs + vpc.private_subnet_cidrs:
        try:
            subnet = ipaddress.ip_network(cidr)
        except ValueError as e:
            raise ValueError(f"invalid subnet CIDR block: {cidr}") from e
        if subnet.version != network.version or not subnet.subnet_of(network):
            raise ValueError(f"subnet {cidr} is not within the VPC CIDR block {vpc.cidr}")


def _validate_imported_vpc(vpc: ImportedVPC) -> None:
    if not vpc.id:
        raise ValueError("an imported VPC needs an ID")
    if not vpc.private_subnet_ids:
        raise ValueError(f"imported VPC {vpc.id} needs at least one private subnet")
