"""Environment manifest model.

Parses the YAML manifest an operator writes for an environment into typed,
immutable records. Only the fields that shape the environment stack are
modelled:

    name: test
    type: Environment
    network:
      vpc:
        id: vpc-0123              # imported VPC, or
        cidr: 10.0.0.0/16         # managed VPC
        subnets:
          public:  [{id: subnet-1}]          # or [{cidr: 10.0.0.0/24, az: us-west-2a}]
          private: [{id: subnet-2}]
    http:
      public:
        certificates: [arn:aws:acm:...]
      private:
        certificates: [arn:aws:acm:...]
        subnets: [subnet-2]
        ingress:
          vpc: true
    observability:
      container_insights: true
    cdn: true
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

import yaml

from deployer.errors import ManifestError

ENVIRONMENT_MANIFEST_TYPE = "Environment"


@dataclass(frozen=True)
class SubnetConfig:
    id: str = ""
    cidr: str = ""
    az: str = ""


@dataclass(frozen=True)
class VPCConfig:
    """VPC settings: either an imported VPC (``id``) or a managed one (``cidr``)."""
    id: str = ""
    cidr: str = ""
    public_subnets: Tuple[SubnetConfig, ...] = ()
    private_subnets: Tuple[SubnetConfig, ...] = ()

    @property
    def is_imported(self) -> bool:
        return bool(self.id)


@dataclass(frozen=True)
class PublicHTTPConfig:
    certificates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PrivateHTTPConfig:
    certificates: Tuple[str, ...] = ()
    subnets: Tuple[str, ...] = ()
    vpc_ingress: bool = False


@dataclass(frozen=True)
class HTTPConfig:
    public: PublicHTTPConfig = field(default_factory=PublicHTTPConfig)
    private: PrivateHTTPConfig = field(default_factory=PrivateHTTPConfig)


@dataclass(frozen=True)
class ObservabilityConfig:
    # None means the manifest does not mention container insights at all.
    container_insights: Optional[bool] = None


@dataclass(frozen=True)
class EnvironmentManifest:
    name: str
    type: str = ENVIRONMENT_MANIFEST_TYPE
    vpc: VPCConfig = field(default_factory=VPCConfig)
    http: HTTPConfig = field(default_factory=HTTPConfig)
    observability: Optional[ObservabilityConfig] = None
    cdn: bool = False


def load_environment_manifest(raw: bytes) -> EnvironmentManifest:
    """Parse raw manifest bytes into an EnvironmentManifest.

    Raises:
        ManifestError: If the document is not valid YAML or not a valid
            environment manifest.
    """
    try:
        doc = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ManifestError(f"unmarshal environment manifest: {e}") from e
    if not isinstance(doc, dict):
        raise ManifestError("environment manifest must be a YAML mapping")
    return parse_environment_manifest(doc)


def parse_environment_manifest(doc: Mapping[str, Any]) -> EnvironmentManifest:
    name = doc.get("name")
    if not isinstance(name, str) or not name:
        raise ManifestError('"name" is required in an environment manifest')
    mft_type = doc.get("type") or ENVIRONMENT_MANIFEST_TYPE
    if mft_type != ENVIRONMENT_MANIFEST_TYPE:
        raise ManifestError(f'manifest type "{mft_type}" is not "{ENVIRONMENT_MANIFEST_TYPE}"')

    network = _mapping(doc, "network")
    observability = None
    if "observability" in doc:
        obs = _mapping(doc, "observability")
        insights = obs.get("container_insights")
        if insights is not None and not isinstance(insights, bool):
            raise ManifestError('"observability.container_insights" must be a boolean')
        observability = ObservabilityConfig(container_insights=insights)

    cdn = doc.get("cdn", False)
    if not isinstance(cdn, bool):
        raise ManifestError('"cdn" must be a boolean')

    return EnvironmentManifest(
        name=name,
        type=mft_type,
        vpc=_parse_vpc(_mapping(network, "vpc")),
        http=_parse_http(_mapping(doc, "http")),
        observability=observability,
        cdn=cdn,
    )


def _parse_vpc(vpc: Mapping[str, Any]) -> VPCConfig:
    vpc_id = vpc.get("id") or ""
    cidr = vpc.get("cidr") or ""
    if vpc_id and cidr:
        raise ManifestError('must not specify both "network.vpc.id" and "network.vpc.cidr"')
    subnets = _mapping(vpc, "subnets")
    public = _parse_subnets(subnets, "public", imported=bool(vpc_id))
    private = _parse_subnets(subnets, "private", imported=bool(vpc_id))
    if vpc_id and not private:
        raise ManifestError('an imported VPC requires at least one subnet in "network.vpc.subnets.private"')
    return VPCConfig(id=vpc_id, cidr=cidr, public_subnets=public, private_subnets=private)


def _parse_subnets(subnets: Mapping[str, Any], kind: str, imported: bool) -> Tuple[SubnetConfig, ...]:
    entries = subnets.get(kind) or []
    if not isinstance(entries, list):
        raise ManifestError(f'"network.vpc.subnets.{kind}" must be a list')
    parsed = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ManifestError(f'"network.vpc.subnets.{kind}" entries must be mappings')
        subnet = SubnetConfig(id=entry.get("id") or "", cidr=entry.get("cidr") or "", az=entry.get("az") or "")
        if imported and not subnet.id:
            raise ManifestError(f'subnets in "network.vpc.subnets.{kind}" of an imported VPC need an "id"')
        if not imported and subnet.id:
            raise ManifestError(f'"id" in "network.vpc.subnets.{kind}" requires "network.vpc.id"')
        parsed.append(subnet)
    return tuple(parsed)


def _parse_http(http: Mapping[str, Any]) -> HTTPConfig:
    public = _mapping(http, "public")
    private = _mapping(http, "private")
    ingress = _mapping(private, "ingress")
    vpc_ingress = ingress.get("vpc", False)
    if not isinstance(vpc_ingress, bool):
        raise ManifestError('"http.private.ingress.vpc" must be a boolean')
    return HTTPConfig(
        public=PublicHTTPConfig(certificates=_strings(public, "certificates", "http.public")),
        private=PrivateHTTPConfig(
            certificates=_strings(private, "certificates", "http.private"),
            subnets=_strings(private, "subnets", "http.private"),
            vpc_ingress=vpc_ingress,
        ),
    )


def _mapping(doc: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = doc.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ManifestError(f'"{key}" must be a mapping')
    return value


def _strings(doc: Mapping[str, Any], key: str, path: str) -> Tuple[str, ...]:
    values = doc.get(key) or []
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise ManifestError(f'"{path}.{key}" must be a list of strings')
    return tuple(values)
