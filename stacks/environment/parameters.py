"""Environment stack parameters and their reconciliation.

A parameter's value comes from, in order of precedence:
1. the desired state of this deployment, when it sets the parameter,
2. the value currently deployed, since operators and workload deployments
   update some parameters (e.g. ALBWorkloads) directly on the stack,
3. the declared default.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from deployer.inputs import CreateEnvironmentInput

APP_NAME = "AppName"
ENVIRONMENT_NAME = "EnvironmentName"
ALB_WORKLOADS = "ALBWorkloads"
INTERNAL_ALB_WORKLOADS = "InternalALBWorkloads"
EFS_WORKLOADS = "EFSWorkloads"
NAT_WORKLOADS = "NATWorkloads"
TOOLS_ACCOUNT_PRINCIPAL = "ToolsAccountPrincipalARN"
APP_DNS_NAME = "AppDNSName"
APP_DNS_DELEGATION_ROLE = "AppDNSDelegationRole"
ALIASES = "Aliases"
CREATE_HTTPS_LISTENER = "CreateHTTPSListener"
CREATE_INTERNAL_HTTPS_LISTENER = "CreateInternalHTTPSListener"
SERVICE_DISCOVERY_ENDPOINT = "ServiceDiscoveryEndpoint"

BOOLEAN_VALUES = ("true", "false")


@dataclass(frozen=True)
class ParameterDeclaration:
    key: str
    allowed_values: Tuple[str, ...] = ()


# Order is preserved in the template and in the serialized parameter list.
ENV_PARAMETERS: Tuple[ParameterDeclaration, ...] = (
    ParameterDeclaration(APP_NAME),
    ParameterDeclaration(ENVIRONMENT_NAME),
    ParameterDeclaration(ALB_WORKLOADS),
    ParameterDeclaration(INTERNAL_ALB_WORKLOADS),
    ParameterDeclaration(EFS_WORKLOADS),
    ParameterDeclaration(NAT_WORKLOADS),
    ParameterDeclaration(TOOLS_ACCOUNT_PRINCIPAL),
    ParameterDeclaration(APP_DNS_NAME),
    ParameterDeclaration(APP_DNS_DELEGATION_ROLE),
    ParameterDeclaration(ALIASES),
    ParameterDeclaration(CREATE_HTTPS_LISTENER, allowed_values=BOOLEAN_VALUES),
    ParameterDeclaration(CREATE_INTERNAL_HTTPS_LISTENER, allowed_values=BOOLEAN_VALUES),
    ParameterDeclaration(SERVICE_DISCOVERY_ENDPOINT),
)


class InvalidParameterError(ValueError):
    """The previously deployed parameters cannot be reconciled."""


def default_values(env_input: CreateEnvironmentInput) -> Dict[str, str]:
    defaults = {decl.key: "" for decl in ENV_PARAMETERS}
    defaults[CREATE_HTTPS_LISTENER] = "false"
    defaults[CREATE_INTERNAL_HTTPS_LISTENER] = "false"
    defaults[SERVICE_DISCOVERY_ENDPOINT] = f"{env_input.name}.{env_input.app.name}.local"
    return defaults


def desired_values(env_input: CreateEnvironmentInput) -> Dict[str, str]:
    """Parameters this deployment sets explicitly."""
    public_certs, private_certs = (), ()
    if env_input.manifest is not None:
        public_certs = env_input.manifest.http.public.certificates
        private_certs = env_input.manifest.http.private.certificates
    return {
        APP_NAME: env_input.app.name,
        ENVIRONMENT_NAME: env_input.name,
        TOOLS_ACCOUNT_PRINCIPAL: env_input.app.account_principal_arn,
        APP_DNS_NAME: env_input.app.domain,
        APP_DNS_DELEGATION_ROLE: env_input.app.dns_delegation_role(),
        CREATE_HTTPS_LISTENER: _bool(bool(public_certs) or bool(env_input.app.domain)),
        CREATE_INTERNAL_HTTPS_LISTENER: _bool(bool(private_certs)),
    }


def previous_values(previous: Optional[Sequence[Mapping[str, str]]]) -> Dict[str, str]:
    values = {}
    for param in previous or []:
        key = param.get("ParameterKey") if isinstance(param, Mapping) else None
        if not isinstance(key, str) or not key:
            raise InvalidParameterError(f"previous stack parameter {param!r} has no key")
        value = param.get("ParameterValue", "")
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise InvalidParameterError(f"previous value of parameter {key} is not a string")
        values[key] = value
    return values


def reconcile(
    desired: Mapping[str, str],
    previous: Mapping[str, str],
    defaults: Mapping[str, str],
) -> List[Dict[str, str]]:
    reconciled = []
    for decl in ENV_PARAMETERS:
        if decl.key in desired:
            value = desired[decl.key]
        elif decl.key in previous:
            value = previous[decl.key]
        else:
            value = defaults[decl.key]
        if decl.allowed_values and value not in decl.allowed_values:
            raise InvalidParameterError(
                f"value {value!r} of parameter {decl.key} is not one of {list(decl.allowed_values)}"
            )
        reconciled.append({"ParameterKey": decl.key, "ParameterValue": value})
    return reconciled


def reconcile_parameters(
    env_input: CreateEnvironmentInput,
    previous: Optional[Sequence[Mapping[str, str]]] = None,
) -> List[Dict[str, str]]:
    return reconcile(desired_values(env_input), previous_values(previous), default_values(env_input))


def _bool(value: bool) -> str:
    return "true" if value else "false"
