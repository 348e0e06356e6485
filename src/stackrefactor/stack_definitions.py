"""Generation of the stack templates that accompany a refactor request.

A refactor request carries, besides the mappings, the resulting template of
every affected stack. Those are the synthesized (local) templates, except that:

- the ``CDKMetadata`` resource is taken from the deployed stack, since a
  refactor never touches it;
- stacks that only lose resources (mapping sources with no local counterpart)
  use the deployed template minus the moved resources and without outputs;
- stacks created by the refactor cannot declare ``Rules`` or ``Parameters``.

Templates larger than 50KiB are uploaded to the toolkit staging bucket and
passed by URL.
"""

import copy
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from stackrefactor.digest import content_hash
from stackrefactor.errors import NotFoundError, TemplateTooLargeError, ValidationError
from stackrefactor.models import (
    CloudFormationStack,
    Environment,
    ResourceMapping,
    StackDefinition,
    ToolkitInfo,
)
from stackrefactor.template import serialize_template

logger = logging.getLogger(__name__)

LARGE_TEMPLATE_SIZE_KB = 50
CDK_METADATA_ID = "CDKMetadata"
NEW_STACK_FORBIDDEN_SECTIONS = ("Rules", "Parameters")


class ToolkitResources(Protocol):
    """Access to the bootstrap resources of one environment."""

    def lookup_toolkit(self) -> ToolkitInfo: ...

    def upload(self, bucket: str, key: str, body: str) -> None: ...


def generate_stack_definitions(
    mappings: Sequence[ResourceMapping],
    deployed_stacks: Sequence[CloudFormationStack],
    local_stacks: Sequence[CloudFormationStack],
    environment: Environment | None = None,
    toolkit: ToolkitResources | None = None,
) -> list[StackDefinition]:
    """Build the stack definitions needed to execute ``mappings``."""
    templates = _resulting_templates(mappings, deployed_stacks, local_stacks)

    for stack_name, template in templates.items():
        if not template.get("Resources"):
            raise ValidationError(
                f"Stack {stack_name} has no resources after refactor. You must add a resource to this "
                "stack. This resource can be a simple one, like a waitCondition resource type."
            )

    bodies = {name: serialize_template(template) for name, template in templates.items()}
    limit = LARGE_TEMPLATE_SIZE_KB * 1024
    sizes = {name: len(body.encode("utf-8")) for name, body in bodies.items()}
    oversized = {name: size for name, size in sizes.items() if size > limit}

    if not oversized:
        return [StackDefinition(stack_name=name, template_body=body) for name, body in bodies.items()]

    toolkit_info = toolkit.lookup_toolkit() if toolkit is not None else ToolkitInfo(found=False)
    if not toolkit_info.found:
        name, size = next(iter(oversized.items()))
        raise TemplateTooLargeError(name, size, str(environment) if environment else None)

    definitions = []
    for name, body in bodies.items():
        if name not in oversized:
            definitions.append(StackDefinition(stack_name=name, template_body=body))
            continue
        key = f"cdk-refactor/{name}/{content_hash(body)}.json"
        logger.info(
            "Uploading %dKiB template of %s to s3://%s/%s",
            round(oversized[name] / 1024),
            name,
            toolkit_info.bucket_name,
            key,
        )
        toolkit.upload(toolkit_info.bucket_name, key, body)
        definitions.append(StackDefinition(stack_name=name, template_url=toolkit_info.object_url(key)))
    return definitions


def _resulting_templates(
    mappings: Sequence[ResourceMapping],
    deployed_stacks: Sequence[CloudFormationStack],
    local_stacks: Sequence[CloudFormationStack],
) -> dict[str, dict[str, Any]]:
    deployed_by_name = {s.stack_name: s for s in deployed_stacks}
    templates: dict[str, dict[str, Any]] = {}

    for stack in local_stacks:
        template = copy.deepcopy(stack.template)
        deployed = deployed_by_name.get(stack.stack_name)
        if deployed is None:
            for section in NEW_STACK_FORBIDDEN_SECTIONS:
                template.pop(section, None)
            _splice_cdk_metadata(template, {})
            templates[stack.stack_name] = template
            continue

        _splice_cdk_metadata(template, deployed.template)
        if template != deployed.template:
            templates[stack.stack_name] = template

    local_names = {s.stack_name for s in local_stacks}
    for mapping in mappings:
        stack_name = mapping.source.stack_name
        if stack_name in local_names:
            continue
        deployed = deployed_by_name.get(stack_name)
        if deployed is None:
            raise NotFoundError(f"Stack {stack_name} is the source of a mapping but is not deployed")
        if stack_name not in templates:
            template = copy.deepcopy(deployed.template)
            # Outputs may reference the resources being moved out
            template.pop("Outputs", None)
            templates[stack_name] = template
        resources = templates[stack_name].get("Resources")
        if isinstance(resources, dict):
            resources.pop(mapping.source.logical_id, None)

    return templates


def _splice_cdk_metadata(template: dict[str, Any], deployed_template: dict[str, Any]) -> None:
    deployed_resources = deployed_template.get("Resources")
    metadata = deployed_resources.get(CDK_METADATA_ID) if isinstance(deployed_resources, dict) else None
    resources = template.get("Resources")

    if metadata is not None:
        if not isinstance(resources, dict):
            resources = template["Resources"] = {}
        resources[CDK_METADATA_ID] = copy.deepcopy(metadata)
    elif isinstance(resources, dict):
        resources.pop(CDK_METADATA_ID, None)
