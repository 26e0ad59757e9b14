"""CloudFormation client for environment stacks.

Creates or updates the ``<app>-<env>`` stack, then follows its events until the
stack settles, writing one line per resource event to a progress sink.
"""

import hashlib
import logging
import time
import uuid
from typing import IO, Callable, Dict, List, Optional, Set

from botocore.exceptions import ClientError

from deployer.errors import ParameterRenderError, StackUpdateFailedError, TemplateRenderError
from deployer.inputs import CreateEnvironmentInput
from stacks.environment.serializer import NewStackSerializer, new_env_stack_serializer

logger = logging.getLogger(__name__)

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]
TEMPLATE_KEY_PREFIX = "manual/templates"
# Larger bodies have to be uploaded and passed by URL.
MAX_TEMPLATE_BODY_BYTES = 51200

SUCCESS_STATUSES = frozenset({"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"})
NO_UPDATES_MESSAGE = "No updates are to be performed"


def _error_code(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Code", "")


def _error_message(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Message", "")


def _stack_missing(err: ClientError) -> bool:
    return _error_code(err) == "ValidationError" and "does not exist" in _error_message(err)


class EnvironmentStackClient:
    """Deploys environment stacks.

    Args:
        cfn_client: boto3 CloudFormation client in the environment's region.
        new_stack_serializer: Factory building a serializer from the desired
            input and the deployed parameters.
        upload: Optional callable (bucket, key, body) -> URL used for
            templates over the TemplateBody size limit.
        poll_interval: Seconds between polls of the stack status.
    """

    def __init__(self, cfn_client,
            new_stack_serializer: NewStackSerializer = new_env_stack_serializer,
            upload: Optional[Callable[[str, str, bytes], str]] = None,
            poll_interval: float = 5,
            sleep: Callable[[float], None] = time.sleep) -> None:
        self._cfn = cfn_client
        self._new_stack_serializer = new_stack_serializer
        self._upload = upload
        self._poll_interval = poll_interval
        self._sleep = sleep

    def _describe_stack(self, stack_name: str) -> Optional[dict]:
        try:
            stacks = self._cfn.describe_stacks(StackName=stack_name).get("Stacks", [])
        except ClientError as e:
            if _stack_missing(e):
                return None
            raise
        return stacks[0] if stacks else None

    def environment_parameters(self, app_name: str, env_name: str) -> List[Dict[str, str]]:
        """Return the parameters of the deployed environment stack, [] if there is none."""
        stack = self._describe_stack(f"{app_name}-{env_name}")
        if stack is None:
            return []
        return stack.get("Parameters", [])

    def update_and_render_environment(self, out: IO[str], env_input: CreateEnvironmentInput,
            role_arn: Optional[str] = None,
            template_bucket: Optional[str] = None) -> None:
        """Create or update the environment stack and block until it settles.

        Raises:
            ClientError: If CloudFormation rejects the request.
            StackUpdateFailedError: If the stack ends in a failed or rolled back state.
        """
        stack_name = f"{env_input.app.name}-{env_input.name}"
        stack = self._describe_stack(stack_name)
        previous = stack.get("Parameters", []) if stack is not None else []

        serializer = self._new_stack_serializer(env_input, previous)
        try:
            template = serializer.template()
        except Exception as e:
            raise TemplateRenderError(e) from e
        try:
            parameters = serializer.parameters()
        except Exception as e:
            raise ParameterRenderError(e) from e
        descriptions = serializer.resource_descriptions()

        token = f"envstack-{uuid.uuid4()}"
        request = {
            "StackName": stack_name,
            "Parameters": parameters,
            "Capabilities": CAPABILITIES,
            "Tags": serializer.tags(),
            "ClientRequestToken": token,
        }
        request.update(self._template_source(stack_name, template, template_bucket))
        if role_arn:
            request["RoleARN"] = role_arn

        if stack is None:
            logger.info("Creating stack %s", stack_name)
            self._cfn.create_stack(**request)
        else:
            logger.info("Updating stack %s", stack_name)
            try:
                self._cfn.update_stack(**request)
            except ClientError as e:
                if _error_code(e) == "ValidationError" and NO_UPDATES_MESSAGE in _error_message(e):
                    out.write(f"{stack_name}  no changes to deploy\n")
                    return
                raise
        self._wait(out, stack_name, token, descriptions)

    def _template_source(self, stack_name: str, template: str, bucket: Optional[str]) -> Dict[str, str]:
        body = template.encode("utf-8")
        if len(body) <= MAX_TEMPLATE_BODY_BYTES or not bucket or self._upload is None:
            return {"TemplateBody": template}
        key = f"{TEMPLATE_KEY_PREFIX}/{stack_name}/{hashlib.sha256(body).hexdigest()}.yml"
        return {"TemplateURL": self._upload(bucket, key, body)}

    def _wait(self, out: IO[str], stack_name: str, token: str, descriptions: Dict[str, str]) -> None:
        seen: Set[str] = set()
        while True:
            stack = self._describe_stack(stack_name) or {}
            self._render_events(out, stack_name, token, seen, descriptions)
            status = stack.get("StackStatus", "")
            if status and not status.endswith("_IN_PROGRESS"):
                break
            self._sleep(self._poll_interval)

        if status not in SUCCESS_STATUSES:
            raise StackUpdateFailedError(stack_name, status, stack.get("StackStatusReason", ""))
        logger.info("Stack %s reached %s", stack_name, status)

    def _render_events(self, out: IO[str], stack_name: str, token: str,
            seen: Set[str], descriptions: Dict[str, str]) -> None:
        events = self._cfn.describe_stack_events(StackName=stack_name).get("StackEvents", [])
        # Events come newest first.
        for event in reversed(events):
            if event.get("ClientRequestToken") != token or event["EventId"] in seen:
                continue
            seen.add(event["EventId"])
            logical_id = event.get("LogicalResourceId", "")
            line = f"{descriptions.get(logical_id, logical_id)}  {event.get('ResourceStatus', '')}"
            if event.get("ResourceStatusReason"):
                line = f"{line}  {event['ResourceStatusReason']}"
            out.write(line + "\n")
