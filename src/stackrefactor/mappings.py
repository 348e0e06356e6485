"""User-prescribed resource mappings, read from a mapping file.

A mapping file lists, per environment, the moves to perform::

    {
      "environments": [
        {
          "account": "123456789012",
          "region": "us-east-1",
          "resources": {"Stack1.Queue": "Stack2.Queue"}
        }
      ]
    }
"""

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from stackrefactor.environments import StackSource, get_deployed_stacks
from stackrefactor.errors import NotFoundError, ValidationError
from stackrefactor.models import (
    CloudFormationStack,
    Environment,
    EnvironmentRefactor,
    ResourceLocation,
    ResourceMapping,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappingGroup:
    """Source-to-destination locations (``Stack.LogicalId``) for one environment."""

    account: str
    region: str
    resources: dict[str, str] = field(default_factory=dict)

    @property
    def environment(self) -> Environment:
        return Environment(account=self.account, region=self.region)

    def reverted(self) -> "MappingGroup":
        return MappingGroup(
            self.account,
            self.region,
            {destination: source for source, destination in self.resources.items()},
        )

    def to_dict(self) -> dict:
        return {"account": self.account, "region": self.region, "resources": dict(self.resources)}


def parse_mapping_groups(text: str) -> list[MappingGroup]:
    """Parse the content of a mapping file.

    Raises ``ValidationError`` if the document is malformed or if a destination
    is used twice within an environment.
    """
    try:
        content = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Mapping file is not valid JSON: {e}") from e

    environments = content.get("environments") if isinstance(content, dict) else None
    if not isinstance(environments, list):
        raise ValidationError("Expected an 'environments' array")

    groups = []
    for entry in environments:
        if not isinstance(entry, dict):
            raise ValidationError("Each entry of 'environments' must be an object")
        account, region = entry.get("account"), entry.get("region")
        resources = entry.get("resources") or {}
        if not isinstance(account, str) or not isinstance(region, str):
            raise ValidationError("Each environment needs an 'account' and a 'region'")
        if not isinstance(resources, dict) or not all(isinstance(v, str) for v in resources.values()):
            raise ValidationError(f"'resources' of aws://{account}/{region} must map locations to locations")
        groups.append(MappingGroup(account, region, dict(resources)))

    for group in groups:
        _check_duplicate_destinations(group)
    return groups


def use_prescribed_mappings(
    groups: Sequence[MappingGroup],
    sdk_provider: StackSource,
    revert: bool = False,
) -> list[ResourceMapping]:
    """Turn mapping groups into resource mappings, validated against the deployed stacks.

    Every source must point at a deployed resource and no destination may point
    at one. With ``revert``, each group is applied backwards, which undoes a
    previous refactor done with the same file.
    """
    if revert:
        groups = [g.reverted() for g in groups]

    with_stacks: list[tuple[MappingGroup, list[CloudFormationStack]]] = []
    for group in groups:
        _check_duplicate_destinations(group)
        with_stacks.append((group, get_deployed_stacks(sdk_provider, group.environment)))

    result = []
    for group, stacks in with_stacks:
        environment = group.environment
        for source, destination in group.resources.items():
            if not _in_use(source, stacks):
                raise NotFoundError(
                    f"Source resource '{source}' does not exist in environment {_label(group)}"
                )
            if _in_use(destination, stacks):
                raise ValidationError(
                    f"Destination resource '{destination}' already in use in environment {_label(group)}"
                )
            result.append(
                ResourceMapping(
                    _make_location(source, environment, stacks),
                    _make_location(destination, environment),
                )
            )
    logger.debug("Using %d prescribed mapping(s)", len(result))
    return result


def overrides_from_groups(
    groups: Iterable[MappingGroup],
    environment: Environment,
    deployed_stacks: Sequence[CloudFormationStack],
    local_stacks: Sequence[CloudFormationStack],
) -> list[ResourceMapping]:
    """Mappings of ``environment`` used to settle ambiguous moves.

    Locations are either ``Stack.LogicalId`` or a construct path
    (``aws:cdk:path`` metadata). Sources are looked up in the deployed stacks
    and destinations in the local stacks; an override that matches no
    ambiguous move is ignored.
    """
    return [
        ResourceMapping(
            _find_location(source, deployed_stacks),
            _find_location(destination, local_stacks),
        )
        for group in groups
        if group.environment == environment
        for source, destination in group.resources.items()
    ]


def mapping_groups_from_results(results: Iterable[EnvironmentRefactor]) -> list[MappingGroup]:
    """Record computed mappings as groups, in the mapping file format."""
    return [
        MappingGroup(
            r.environment.account,
            r.environment.region,
            {m.source.to_location_string(): m.destination.to_location_string() for m in r.mappings},
        )
        for r in results
        if r.mappings
    ]


def dump_mapping_groups(groups: Iterable[MappingGroup]) -> str:
    return json.dumps({"environments": [g.to_dict() for g in groups]}, indent=2)


def _check_duplicate_destinations(group: MappingGroup) -> None:
    seen = set()
    for destination in group.resources.values():
        if destination in seen:
            raise ValidationError(
                f"Duplicate destination resource '{destination}' in environment {_label(group)}"
            )
        seen.add(destination)


def _split_location(location: str) -> tuple[str, str]:
    stack_name, _, logical_id = location.partition(".")
    if not stack_name or not logical_id:
        raise ValidationError(f"Invalid location '{location}'")
    return stack_name, logical_id


def _in_use(location: str, stacks: Sequence[CloudFormationStack]) -> bool:
    stack_name, logical_id = _split_location(location)
    stack = next((s for s in stacks if s.stack_name == stack_name), None)
    return stack is not None and stack.resources.get(logical_id) is not None


def _make_location(
    location: str, environment: Environment, stacks: Sequence[CloudFormationStack] = ()
) -> ResourceLocation:
    stack_name, logical_id = _split_location(location)
    stack = next((s for s in stacks if s.stack_name == stack_name), None)
    template = stack.template if stack is not None else {}
    return ResourceLocation(CloudFormationStack(stack_name, environment, template), logical_id)


def _find_location(location: str, stacks: Sequence[CloudFormationStack]) -> ResourceLocation:
    stack_name, _, logical_id = location.partition(".")
    for stack in stacks:
        if stack.stack_name == stack_name and stack.resources.get(logical_id) is not None:
            return ResourceLocation(stack, logical_id)
    for stack in stacks:
        for candidate in stack.resources:
            resource = ResourceLocation(stack, candidate)
            if resource.to_path() == location:
                return resource
    raise ValidationError(f"Cannot find resource in location {location}")


def _label(group: MappingGroup) -> str:
    return f"{group.account}/{group.region}"
