"""Lookup of the resources an application owns in a region.

Each application has an ``<app>-infrastructure`` stack set with one stack
instance per region it deploys to. The instance stack exports the artifact
bucket (``PipelineBucket``) and its KMS key (``KMSKeyARN``).
"""

import logging
from typing import Optional, Protocol

from deployer.config import Application, AppRegionalResources
from deployer.errors import MissingBucketError, ResourceLookupError

logger = logging.getLogger(__name__)

BUCKET_OUTPUT_KEY = "PipelineBucket"
KMS_KEY_OUTPUT_KEY = "KMSKeyARN"


class AppResourcesGetter(Protocol):
    def get_app_resources_by_region(self, app: Application, region: str) -> AppRegionalResources:
        ...


class AppStackSetClient:
    """Reads an application's regional resources from its stack set instance.

    Args:
        cfn_client: boto3 CloudFormation client in the application's home region.
        client_for_region: Callable returning a CloudFormation client for a region.
    """

    def __init__(self, cfn_client, client_for_region) -> None:
        self._cfn = cfn_client
        self._client_for_region = client_for_region

    def get_app_resources_by_region(self, app: Application, region: str) -> AppRegionalResources:
        stack_set_name = f"{app.name}-infrastructure"
        kwargs = {"StackSetName": stack_set_name, "StackInstanceRegion": region}
        if app.account_id:
            kwargs["StackInstanceAccount"] = app.account_id
        summaries = self._cfn.list_stack_instances(**kwargs).get("Summaries", [])
        stack_ids = [s["StackId"] for s in summaries if s.get("StackId")]
        if not stack_ids:
            raise LookupError(f"no stack instance of stack set {stack_set_name} in region {region}")

        stacks = self._client_for_region(region).describe_stacks(StackName=stack_ids[0]).get("Stacks", [])
        outputs = {}
        for stack in stacks:
            for output in stack.get("Outputs", []):
                outputs[output["OutputKey"]] = output.get("OutputValue", "")
        return AppRegionalResources(
            region=region,
            s3_bucket=outputs.get(BUCKET_OUTPUT_KEY, ""),
            kms_key_arn=outputs.get(KMS_KEY_OUTPUT_KEY, ""),
        )


class AppResourcesResolver:
    """Resolves an application's regional resources once and remembers them.

    The cache lives as long as the resolver. It is not guarded for concurrent
    first access.
    """

    def __init__(self, getter: AppResourcesGetter, app: Application, region: str) -> None:
        self._getter = getter
        self._app = app
        self._region = region
        self._resources: Optional[AppRegionalResources] = None

    def resolve(self) -> AppRegionalResources:
        if self._resources is not None:
            return self._resources
        try:
            resources = self._getter.get_app_resources_by_region(self._app, self._region)
        except Exception as e:
            raise ResourceLookupError(self._region, e) from e
        if not resources.s3_bucket:
            raise MissingBucketError(self._region)
        logger.debug("Resolved artifact bucket %s in region %s", resources.s3_bucket, self._region)
        self._resources = resources
        return resources
