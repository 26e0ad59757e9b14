"""Environment deployer.

Ties the pipeline together for one (application, environment) pair:
1. upload_artifacts: resolve the app's regional bucket, stage custom resources.
2. generate_cloudformation_template: render the template and parameters
   without touching the deployed stack.
3. deploy_environment: create or update the stack and follow its progress.
"""

import logging
import sys
from pathlib import Path
from typing import IO, Dict, Optional, Protocol

import boto3

from deployer.app_resources import AppResourcesGetter, AppResourcesResolver, AppStackSetClient
from deployer.cloudformation import EnvironmentStackClient
from deployer.config import Application, Environment
from deployer.custom_resources import ASSETS_DIR, ArtifactStager, Upload
from deployer.errors import ParameterDescribeError, ParameterRenderError, TemplateRenderError
from deployer.inputs import (
    LATEST_ENV_TEMPLATE_VERSION,
    AppInformation,
    CreateEnvironmentInput,
    DeployEnvironmentInput,
    GenerateCloudFormationTemplateOutput,
)
from deployer.partitions import partition_for_region
from deployer.s3 import S3Uploader, format_arn
from stacks.environment.serializer import NewStackSerializer, new_env_stack_serializer

logger = logging.getLogger(__name__)


class EnvironmentStackDeployer(Protocol):
    def environment_parameters(self, app_name: str, env_name: str):
        ...

    def update_and_render_environment(self, out: IO[str], env_input: CreateEnvironmentInput,
            role_arn: Optional[str] = None,
            template_bucket: Optional[str] = None) -> None:
        ...


class EnvDeployer:
    """Deploys one environment of an application.

    Collaborators are injected so they can be replaced in tests:

    Args:
        app: The application owning the environment.
        env: The environment to deploy.
        app_cfn: Looks up the application's regional resources.
        upload: Callable (bucket, key, body) -> URL used to stage artifacts.
        env_deployer: Reads parameters of and deploys the environment stack.
        new_stack_serializer: Factory for the template serializer.
        assets_dir: Custom resource sources.
        progress: Sink for deployment progress.
    """

    def __init__(self, app: Application, env: Environment, *,
            app_cfn: AppResourcesGetter,
            upload: Upload,
            env_deployer: EnvironmentStackDeployer,
            new_stack_serializer: NewStackSerializer = new_env_stack_serializer,
            assets_dir: Path = ASSETS_DIR,
            progress: Optional[IO[str]] = None) -> None:
        self.app = app
        self.env = env
        self._resources = AppResourcesResolver(app_cfn, app, env.region)
        self._stager = ArtifactStager(upload, assets_dir=assets_dir)
        self._env_deployer = env_deployer
        self._new_stack_serializer = new_stack_serializer
        self._progress = progress

    def upload_artifacts(self) -> Dict[str, str]:
        """Upload the environment's custom resources and return their URLs by function name."""
        resources = self._resources.resolve()
        return self._stager.stage(resources.s3_bucket)

    def generate_cloudformation_template(self, deploy_input: DeployEnvironmentInput) -> GenerateCloudFormationTemplateOutput:
        stack_input = self._build_stack_input(deploy_input)
        try:
            previous = self._env_deployer.environment_parameters(self.app.name, self.env.name)
        except Exception as e:
            raise ParameterDescribeError(e) from e

        serializer = self._new_stack_serializer(stack_input, previous)
        try:
            template = serializer.template()
        except Exception as e:
            raise TemplateRenderError(e) from e
        try:
            parameters = serializer.serialized_parameters()
        except Exception as e:
            raise ParameterRenderError(e) from e
        return GenerateCloudFormationTemplateOutput(template=template, parameters=parameters)

    def deploy_environment(self, deploy_input: DeployEnvironmentInput) -> None:
        """Deploy the environment stack under the environment's execution role.

        Errors from CloudFormation are raised as they are.
        """
        stack_input = self._build_stack_input(deploy_input)
        out = self._progress if self._progress is not None else sys.stderr
        logger.info("Deploying environment %s of application %s", self.env.name, self.app.name)
        self._env_deployer.update_and_render_environment(out, stack_input,
            role_arn=self.env.execution_role_arn or None,
            template_bucket=self._resources.resolve().s3_bucket)

    def _build_stack_input(self, deploy_input: DeployEnvironmentInput) -> CreateEnvironmentInput:
        resources = self._resources.resolve()
        partition = partition_for_region(self.env.region)
        return CreateEnvironmentInput(
            name=self.env.name,
            app=AppInformation(
                name=self.app.name,
                domain=self.app.domain,
                account_principal_arn=deploy_input.root_user_arn,
            ),
            version=LATEST_ENV_TEMPLATE_VERSION,
            additional_tags=dict(self.app.tags),
            custom_resources_urls=dict(deploy_input.custom_resources_urls),
            artifact_bucket_arn=format_arn(partition, resources.s3_bucket),
            artifact_bucket_key_arn=resources.kms_key_arn,
            manifest=deploy_input.manifest,
            raw_manifest=deploy_input.raw_manifest,
        )


def new_env_deployer(app: Application, env: Environment,
        session: Optional[boto3.session.Session] = None) -> EnvDeployer:
    """Build an EnvDeployer backed by AWS.

    The default session reads the application's stack set and uploads
    artifacts in the environment's region. The stack itself is deployed with
    credentials of the environment manager role.
    """
    session = session or boto3.session.Session()
    cfn_in_env_region = session.client("cloudformation", region_name=env.region)
    if env.manager_role_arn:
        creds = session.client("sts", region_name=env.region).assume_role(
            RoleArn=env.manager_role_arn,
            RoleSessionName=f"envstack-{app.name}-{env.name}",
        )["Credentials"]
        cfn_in_env_region = boto3.session.Session(
            aws_access_key_id=creds["AccessKeyId"],
            aws_secret_access_key=creds["SecretAccessKey"],
            aws_session_token=creds["SessionToken"],
            region_name=env.region,
        ).client("cloudformation")

    uploader = S3Uploader(session.client("s3", region_name=env.region))
    app_cfn = AppStackSetClient(
        session.client("cloudformation"),
        lambda region: session.client("cloudformation", region_name=region),
    )
    return EnvDeployer(app, env,
        app_cfn=app_cfn,
        upload=uploader.upload,
        env_deployer=EnvironmentStackClient(cfn_in_env_region, upload=uploader.upload),
    )
