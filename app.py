#!/usr/bin/env python3
"""CDK application entrypoint.

Synthesizes an environment stack locally so its template can be previewed
with ``cdk synth -c environment=<name>``. Deployments go through
deployer.env_deployer, which reconciles parameters with the deployed stack.

Context (cdk.json):
    app: Application name.
    domain: Optional application domain.
    <environment>: account_id, region, optional manifest path and
        custom_resources_urls.
"""

import logging
from pathlib import Path

import aws_cdk as cdk

from deployer.inputs import AppInformation, CreateEnvironmentInput
from deployer.logs import configure_logging
from deployer.manifest import load_environment_manifest
from stacks.environment.environment_stack import EnvironmentStack
from stacks.environment.template_config import EnvironmentTemplateConfig

configure_logging()
logger = logging.getLogger("app")

app = cdk.App()

env_name = app.node.try_get_context("environment") or "dev"
env_context = app.node.try_get_context(env_name)
if not env_context:
    raise ValueError(f"No context found for environment '{env_name}'")

app_name = app.node.try_get_context("app")
if not app_name:
    raise ValueError("No 'app' found in context")

manifest, raw_manifest = None, b""
if env_context.get("manifest"):
    raw_manifest = Path(env_context["manifest"]).read_bytes()
    manifest = load_environment_manifest(raw_manifest)

env_input = CreateEnvironmentInput(
    name=env_name,
    app=AppInformation(
        name=app_name,
        domain=app.node.try_get_context("domain") or "",
        account_principal_arn=f"arn:aws:iam::{env_context['account_id']}:root",
    ),
    custom_resources_urls=env_context.get("custom_resources_urls", {}),
    manifest=manifest,
    raw_manifest=raw_manifest,
)

env = cdk.Environment(
    account=env_context["account_id"],
    region=env_context["region"]
)

logger.info("Synthesizing environment %s (Account: %s, Region: %s)", env_name, env.account, env.region)

EnvironmentStack(app, f"{app_name}-{env_name}",
    config=EnvironmentTemplateConfig.from_input(env_input),
    env=env
)

app.synth()
