"""Errors raised by the environment deployment pipeline.

Every local step wraps its immediate cause behind a short, static prefix so the
message reads as a chain ("get app resources in region us-west-2: boom").
Errors coming back from the CloudFormation deployment itself are not wrapped.
"""


class EnvDeployError(Exception):
    """Base class for environment deployment failures."""


class ResolutionError(EnvDeployError):
    """The application's regional resources could not be resolved."""


class ResourceLookupError(ResolutionError):
    def __init__(self, region: str, cause: Exception) -> None:
        super().__init__(f"get app resources in region {region}: {cause}")
        self.region = region
        self.cause = cause


class MissingBucketError(ResolutionError):
    def __init__(self, region: str) -> None:
        super().__init__(f"cannot find the S3 artifact bucket in region {region}")
        self.region = region


class PartitionLookupError(EnvDeployError):
    def __init__(self, region: str) -> None:
        super().__init__(f"find the partition for region {region}")
        self.region = region


class ArtifactError(EnvDeployError):
    """Staging custom resource artifacts failed. Safe to re-run."""


class CustomResourceReadError(ArtifactError):
    def __init__(self, cause: Exception) -> None:
        super().__init__(f"read custom resources for environments: {cause}")
        self.cause = cause


class ArtifactUploadError(ArtifactError):
    def __init__(self, bucket: str, cause: Exception) -> None:
        super().__init__(f"upload custom resources to bucket {bucket}: {cause}")
        self.bucket = bucket
        self.cause = cause


class ParameterDescribeError(EnvDeployError):
    def __init__(self, cause: Exception) -> None:
        super().__init__(f"describe environment stack parameters: {cause}")
        self.cause = cause


class RenderError(EnvDeployError):
    """Template or parameter serialization failed; indicates a defect."""


class TemplateRenderError(RenderError):
    def __init__(self, cause: Exception) -> None:
        super().__init__(f"generate stack template: {cause}")
        self.cause = cause


class ParameterRenderError(RenderError):
    def __init__(self, cause: Exception) -> None:
        super().__init__(f"generate stack template parameters: {cause}")
        self.cause = cause


class ManifestError(EnvDeployError):
    """The environment manifest is not valid."""


class StackUpdateFailedError(EnvDeployError):
    """CloudFormation finished the deployment in a failed state."""

    def __init__(self, stack_name: str, status: str, reason: str = "") -> None:
        message = f"stack {stack_name} did not deploy successfully: {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.stack_name = stack_name
        self.status = status
        self.reason = reason
