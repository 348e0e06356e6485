"""Grouping of local and deployed stacks by target environment."""

import logging
from collections.abc import Iterable, Sequence
from typing import Protocol

from stackrefactor.errors import NotFoundError
from stackrefactor.models import CloudFormationStack, Environment, EnvironmentGroup

logger = logging.getLogger(__name__)


class StackSource(Protocol):
    """The slice of the SDK provider needed to read deployed stacks."""

    def resolve_environment(self, environment: Environment) -> Environment: ...

    def cloudformation(self, environment: Environment): ...


def partition_by_environment(
    sdk_provider: StackSource, local_stacks: Iterable[CloudFormationStack]
) -> dict[Environment, list[CloudFormationStack]]:
    """Bucket local stacks by their resolved environment, keeping the input order.

    Stacks synthesized with placeholder accounts or regions are rebound to the
    resolved environment so their locations compare equal to deployed ones.
    """
    result: dict[Environment, list[CloudFormationStack]] = {}
    for stack in local_stacks:
        environment = sdk_provider.resolve_environment(stack.environment)
        if environment != stack.environment:
            stack = CloudFormationStack(stack.stack_name, environment, stack.template)
        result.setdefault(environment, []).append(stack)
    return result


def get_deployed_stacks(
    sdk_provider: StackSource,
    environment: Environment,
    stack_names: Iterable[str] | None = None,
) -> list[CloudFormationStack]:
    """Fetch the templates of deployed stacks in ``environment``.

    Only stacks in a stable state are considered. When ``stack_names`` is given,
    other stacks are not fetched at all. Stacks whose template cannot be read or
    parsed are skipped with a warning.
    """
    cfn = sdk_provider.cloudformation(environment)
    names = list(stack_names) if stack_names is not None else None
    summaries = cfn.list_stacks(stack_names=names)

    stacks = []
    for summary in summaries:
        stack_name = summary["stack_name"]
        try:
            template = cfn.get_template(stack_name)
        except (ValueError, NotFoundError) as e:
            logger.warning("Skipping stack %s in %s: %s", stack_name, environment, e)
            continue
        stacks.append(CloudFormationStack(stack_name, environment, template))
    logger.debug("Fetched %d deployed stack(s) in %s", len(stacks), environment)
    return stacks


def build_group(
    sdk_provider: StackSource,
    environment: Environment,
    local_stacks: Sequence[CloudFormationStack],
    additional_stack_names: Iterable[str] = (),
) -> EnvironmentGroup:
    """Pair the local stacks of one environment with their deployed counterparts.

    A deployed stack belongs to the group when a local stack has the same name
    or when it is named in ``additional_stack_names``.
    """
    wanted = {s.stack_name for s in local_stacks} | set(additional_stack_names)
    deployed = get_deployed_stacks(sdk_provider, environment, stack_names=sorted(wanted))
    return EnvironmentGroup(
        environment=environment,
        deployed_stacks=deployed,
        local_stacks=list(local_stacks),
    )


def group_stacks(
    sdk_provider: StackSource,
    local_stacks: Iterable[CloudFormationStack],
    additional_stack_names: Iterable[str] = (),
) -> list[EnvironmentGroup]:
    additional = list(additional_stack_names)
    return [
        build_group(sdk_provider, environment, stacks, additional)
        for environment, stacks in partition_by_environment(sdk_provider, local_stacks).items()
    ]
