"""Records passed between the deployer and the stack serializer."""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from deployer.manifest import EnvironmentManifest

# Bumped whenever the environment template changes shape.
LATEST_ENV_TEMPLATE_VERSION = "v1.12.0"


@dataclass(frozen=True)
class AppInformation:
    """Application fields the environment template needs."""
    name: str
    domain: str = ""
    account_principal_arn: str = ""

    def dns_delegation_role(self) -> str:
        """ARN of the role in the application account that can update its hosted zone.

        Empty when the application has no domain or no account principal.
        """
        if not self.domain or not self.account_principal_arn:
            return ""
        parts = self.account_principal_arn.split(":")
        if len(parts) < 5:
            return ""
        partition, account_id = parts[1], parts[4]
        return f"arn:{partition}:iam::{account_id}:role/{self.name}-DNSDelegationRole"


@dataclass(frozen=True)
class CreateEnvironmentInput:
    """Desired state of an environment stack, built fresh for every deployment."""
    name: str
    app: AppInformation
    version: str = LATEST_ENV_TEMPLATE_VERSION
    additional_tags: Mapping[str, str] = field(default_factory=dict)
    custom_resources_urls: Mapping[str, str] = field(default_factory=dict)
    artifact_bucket_arn: str = ""
    artifact_bucket_key_arn: str = ""
    manifest: Optional[EnvironmentManifest] = None
    raw_manifest: bytes = b""


@dataclass(frozen=True)
class DeployEnvironmentInput:
    """Caller-supplied input to generate or deploy an environment.

    Attributes:
        root_user_arn: Root principal of the application account, trusted by
            the environment manager role.
        custom_resources_urls: Output of EnvDeployer.upload_artifacts().
        manifest: Parsed environment manifest.
        raw_manifest: Manifest bytes, embedded in the template metadata.
    """
    root_user_arn: str = ""
    custom_resources_urls: Dict[str, str] = field(default_factory=dict)
    manifest: Optional[EnvironmentManifest] = None
    raw_manifest: bytes = b""


@dataclass(frozen=True)
class GenerateCloudFormationTemplateOutput:
    template: str
    parameters: str
