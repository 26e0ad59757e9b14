"""Application and environment records.

Plain, immutable values owned by the caller. The deployer never mutates them;
it only reads names, regions and role ARNs out of them.
"""

from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True)
class Application:
    """An application that owns one or more environments.

    Attributes:
        name: Application name, used as the stack name prefix.
        account_id: Account that hosts the application's stack set.
        domain: Optional DNS root delegated to environments (e.g. example.com).
        tags: Extra tags applied to every environment stack.
    """
    name: str
    account_id: str = ""
    domain: str = ""
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Environment:
    """A deployment target of an application in a single region.

    The manager role is used for describe/read calls against the environment,
    the execution role is handed to CloudFormation for the stack's own actions.
    """
    name: str
    app_name: str = ""
    region: str = ""
    account_id: str = ""
    manager_role_arn: str = ""
    execution_role_arn: str = ""

    @property
    def stack_name(self) -> str:
        return f"{self.app_name}-{self.name}"


@dataclass(frozen=True)
class AppRegionalResources:
    """Artifact bucket and key an application owns in one region."""
    region: str
    s3_bucket: str = ""
    kms_key_arn: str = ""
