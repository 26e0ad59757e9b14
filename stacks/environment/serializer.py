"""Environment stack serializer.

Turns a CreateEnvironmentInput and the parameters of the currently deployed
stack into the template body and parameter list submitted to CloudFormation.
The template is rendered by synthesizing an EnvironmentStack in a throwaway
CDK app and dumping the resulting document to YAML.
"""

import json
import logging
import tempfile
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import aws_cdk as cdk
import yaml

from deployer.inputs import CreateEnvironmentInput
from stacks.environment.environment_stack import DESCRIPTION_METADATA_KEY, EnvironmentStack
from stacks.environment.parameters import reconcile_parameters
from stacks.environment.template_config import EnvironmentTemplateConfig

logger = logging.getLogger(__name__)

APP_TAG_KEY = "envstack-application"
ENV_TAG_KEY = "envstack-environment"

# Context that keeps CDK bookkeeping (asset paths, CDKMetadata) out of the template.
_SYNTH_CONTEXT = {
    "aws:cdk:enable-path-metadata": False,
    "aws:cdk:version-reporting": False,
}


def synthesize(config: EnvironmentTemplateConfig, stack_name: str) -> Dict[str, Any]:
    """Synthesize the environment stack and return the template document."""
    with tempfile.TemporaryDirectory(prefix="envstack-synth-") as outdir:
        app = cdk.App(analytics_reporting=False, context=dict(_SYNTH_CONTEXT), outdir=outdir)
        EnvironmentStack(app, stack_name,
            config=config,
            synthesizer=cdk.DefaultStackSynthesizer(generate_bootstrap_version_rule=False)
        )
        return app.synth().get_stack_by_name(stack_name).template


class EnvStackSerializer:
    """Serializes the environment stack for one deployment.

    Args:
        env_input: Desired state of the environment.
        previous_parameters: Parameters of the deployed stack, as returned by
            DescribeStacks. None or empty for a first deployment.
    """

    def __init__(self, env_input: CreateEnvironmentInput,
            previous_parameters: Optional[Sequence[Mapping[str, str]]] = None) -> None:
        self.env_input = env_input
        self.previous_parameters = list(previous_parameters or [])
        self._template: Optional[Dict[str, Any]] = None

    def stack_name(self) -> str:
        return f"{self.env_input.app.name}-{self.env_input.name}"

    def _document(self) -> Dict[str, Any]:
        if self._template is None:
            config = EnvironmentTemplateConfig.from_input(self.env_input)
            logger.debug("Synthesizing environment stack %s at version %s", self.stack_name(), config.version)
            self._template = synthesize(config, self.stack_name())
        return self._template

    def template(self) -> str:
        """Return the template body as YAML.

        Raises:
            ValueError: If the desired state cannot be rendered consistently.
        """
        return yaml.safe_dump(self._document(), sort_keys=False, default_flow_style=False, width=1000)

    def parameters(self) -> List[Dict[str, str]]:
        return reconcile_parameters(self.env_input, self.previous_parameters)

    def serialized_parameters(self) -> str:
        return json.dumps(self.parameters(), indent=2)

    def tags(self) -> List[Dict[str, str]]:
        """Stack tags: additional tags first, reserved tags always win."""
        tags = dict(self.env_input.additional_tags)
        tags[APP_TAG_KEY] = self.env_input.app.name
        tags[ENV_TAG_KEY] = self.env_input.name
        return [{"Key": key, "Value": value} for key, value in sorted(tags.items())]

    def resource_descriptions(self) -> Dict[str, str]:
        """Human-readable descriptions of resources, keyed by logical ID."""
        descriptions = {}
        for logical_id, resource in self._document().get("Resources", {}).items():
            description = resource.get("Metadata", {}).get(DESCRIPTION_METADATA_KEY)
            if description:
                descriptions[logical_id] = description
        return descriptions


NewStackSerializer = Callable[[CreateEnvironmentInput, Optional[Sequence[Mapping[str, str]]]], EnvStackSerializer]


def new_env_stack_serializer(env_input: CreateEnvironmentInput,
        previous_parameters: Optional[Sequence[Mapping[str, str]]] = None) -> EnvStackSerializer:
    return EnvStackSerializer(env_input, previous_parameters)
