"""Thin boto3 wrappers for the CloudFormation, S3 and registry calls used by refactoring."""

import json
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from stackrefactor.errors import NetworkError, NotFoundError
from stackrefactor.models import ResourceModel, StackStatus, ToolkitInfo
from stackrefactor.resource_models import primary_identifier_from_schema
from stackrefactor.template import load_template

logger = logging.getLogger(__name__)

DEFAULT_TOOLKIT_STACK_NAME = "CDKToolkit"
UNKNOWN_TYPE_ERRORS = ("TypeNotFoundException", "CFNRegistryException")


@contextmanager
def translate_errors(action: str) -> Iterator[None]:
    """Re-raise botocore failures as stackrefactor errors, keeping the cause."""
    try:
        yield
    except ClientError as e:
        error = e.response.get("Error", {})
        message = error.get("Message", str(e))
        if error.get("Code") == "ValidationError" and "does not exist" in message:
            raise NotFoundError(f"{action} failed: {message}") from e
        raise NetworkError(f"{action} failed: {message}") from e
    except BotoCoreError as e:
        raise NetworkError(f"{action} failed: {e}") from e


def _client(service: str, region: str | None, session: boto3.Session | None):
    factory = session or boto3
    return factory.client(service, **({"region_name": region} if region else {}))


class CloudFormationClient:
    """Wraps boto3 CloudFormation calls and returns plain stackrefactor values."""

    def __init__(self, region: str | None = None, session: boto3.Session | None = None):
        self._client = _client("cloudformation", region, session)

    def list_stacks(self, stack_names: list[str] | None = None) -> list[dict[str, str]]:
        """List deployed stacks, optionally restricted to some names.

        Returns list of dicts with 'stack_name' and 'stack_id' keys.
        """
        results = []
        with translate_errors("ListStacks"):
            paginator = self._client.get_paginator("list_stacks")
            for page in paginator.paginate(StackStatusFilter=[s.value for s in StackStatus]):
                for summary in page["StackSummaries"]:
                    name = summary["StackName"]
                    if stack_names is not None and name not in stack_names:
                        continue
                    results.append({"stack_name": name, "stack_id": summary["StackId"]})
        return results

    def get_template(self, stack_name: str) -> dict[str, Any]:
        """Fetch the original template of a deployed stack.

        Raises ``ValueError`` if the template body cannot be parsed.
        """
        with translate_errors(f"GetTemplate for {stack_name}"):
            response = self._client.get_template(StackName=stack_name, TemplateStage="Original")
        return load_template(response.get("TemplateBody") or "{}")

    def lookup_toolkit(self, toolkit_stack_name: str = DEFAULT_TOOLKIT_STACK_NAME) -> ToolkitInfo:
        """Find the staging bucket published by the bootstrap stack."""
        try:
            with translate_errors(f"DescribeStacks for {toolkit_stack_name}"):
                response = self._client.describe_stacks(StackName=toolkit_stack_name)
        except NotFoundError:
            return ToolkitInfo(found=False)

        stacks = response.get("Stacks") or []
        if not stacks:
            return ToolkitInfo(found=False)
        outputs = {o["OutputKey"]: o.get("OutputValue") for o in stacks[0].get("Outputs", [])}
        bucket_name = outputs.get("BucketName")
        if not bucket_name:
            logger.warning("Toolkit stack %s has no BucketName output", toolkit_stack_name)
            return ToolkitInfo(found=False)
        return ToolkitInfo(
            found=True,
            bucket_name=bucket_name,
            bucket_domain_name=outputs.get("BucketDomainName") or f"{bucket_name}.s3.amazonaws.com",
        )

    def describe_resource_type(self, type_name: str) -> dict[str, Any] | None:
        """Return the registry schema of a resource type, or None if the type is unknown."""
        try:
            response = self._client.describe_type(Type="RESOURCE", TypeName=type_name)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in UNKNOWN_TYPE_ERRORS:
                logger.debug("No resource schema for %s", type_name)
                return None
            raise NetworkError(f"DescribeType for {type_name} failed: {e}") from e
        except BotoCoreError as e:
            raise NetworkError(f"DescribeType for {type_name} failed: {e}") from e
        schema = response.get("Schema")
        return json.loads(schema) if schema else None


class S3Uploader:
    """Uploads template bodies to the staging bucket."""

    def __init__(self, region: str | None = None, session: boto3.Session | None = None):
        self._client = _client("s3", region, session)

    def upload(self, bucket: str, key: str, body: str) -> None:
        with translate_errors(f"PutObject s3://{bucket}/{key}"):
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="application/json",
            )


class EnvironmentToolkit:
    """Bootstrap resources of one environment: staging bucket lookup and upload."""

    def __init__(
        self,
        cloudformation: CloudFormationClient,
        uploader: S3Uploader,
        toolkit_stack_name: str = DEFAULT_TOOLKIT_STACK_NAME,
    ):
        self._cloudformation = cloudformation
        self._uploader = uploader
        self._toolkit_stack_name = toolkit_stack_name

    def lookup_toolkit(self) -> ToolkitInfo:
        return self._cloudformation.lookup_toolkit(self._toolkit_stack_name)

    def upload(self, bucket: str, key: str, body: str) -> None:
        self._uploader.upload(bucket, key, body)


class CloudFormationResourceModels:
    """Resource models read from the CloudFormation registry, cached per type."""

    def __init__(self, client: CloudFormationClient):
        self._client = client
        self._cache: dict[str, ResourceModel | None] = {}
        self._lock = threading.Lock()

    def load(self, resource_type: str) -> ResourceModel | None:
        with self._lock:
            if resource_type in self._cache:
                return self._cache[resource_type]

        schema = self._client.describe_resource_type(resource_type)
        model = None
        if schema is not None:
            model = ResourceModel(
                type_name=resource_type,
                primary_identifier=primary_identifier_from_schema(schema),
            )

        with self._lock:
            self._cache[resource_type] = model
        return model
