"""Orchestrates refactor planning across environments."""

import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

from stackrefactor.environments import build_group, partition_by_environment
from stackrefactor.errors import ValidationError
from stackrefactor.exclude import ExcludeList, NeverExclude
from stackrefactor.mappings import MappingGroup, overrides_from_groups, use_prescribed_mappings
from stackrefactor.models import (
    CloudFormationStack,
    Environment,
    EnvironmentRefactor,
    RefactorResult,
    ResourceMapping,
)
from stackrefactor.movements import RefactoringContext
from stackrefactor.stack_definitions import generate_stack_definitions

logger = logging.getLogger(__name__)


class Refactorer:
    """Computes refactor plans for every environment targeted by a set of local stacks."""

    def __init__(self, sdk_provider, max_concurrent: int = 4):
        self._sdk = sdk_provider
        self._max_concurrent = max_concurrent

    def plan(
        self,
        local_stacks: Sequence[CloudFormationStack],
        additional_stack_names: Iterable[str] = (),
        exclude: ExcludeList | None = None,
        overrides: Sequence[MappingGroup] = (),
        prescribed: Sequence[MappingGroup] | None = None,
        stack_definitions: bool = False,
        revert: bool = False,
    ) -> RefactorResult:
        """Plan the refactor of ``local_stacks`` against what is deployed.

        ``overrides`` are mapping groups that settle ambiguous moves. With
        ``prescribed`` mapping groups the mappings are taken as given (after
        validation) instead of being computed. A ``ValidationError`` anywhere aborts
        the whole plan; any other failure only marks its environment as failed.
        """
        exclude = exclude or NeverExclude()
        additional = list(additional_stack_names)
        local_by_env = partition_by_environment(self._sdk, local_stacks)

        prescribed_by_env: dict[Environment, list[ResourceMapping]] | None = None
        if prescribed is not None:
            prescribed_by_env = {}
            for mapping in use_prescribed_mappings(prescribed, self._sdk, revert=revert):
                prescribed_by_env.setdefault(mapping.source.environment, []).append(mapping)
            for environment in prescribed_by_env:
                local_by_env.setdefault(environment, [])

        if not local_by_env:
            return RefactorResult(results=[], failed_environments=[])

        results: list[EnvironmentRefactor] = []
        failed_environments: list[str] = []

        executor = ThreadPoolExecutor(max_workers=self._max_concurrent)
        futures: dict[Future, Environment] = {}
        try:
            for environment, stacks in local_by_env.items():
                env_prescribed = None if prescribed_by_env is None else prescribed_by_env.get(environment, [])
                future = executor.submit(
                    self._plan_environment,
                    environment,
                    stacks,
                    additional,
                    exclude,
                    overrides,
                    env_prescribed,
                    stack_definitions,
                )
                futures[future] = environment

            for future in as_completed(futures):
                environment = futures[future]
                try:
                    results.append(future.result())
                except ValidationError:
                    raise
                except Exception:
                    logger.exception("Failed to plan refactor for %s", environment)
                    failed_environments.append(str(environment))
        except BaseException:
            for future in futures:
                future.cancel()
            raise
        finally:
            executor.shutdown(wait=True)

        results.sort(key=lambda r: str(r.environment))
        return RefactorResult(results=results, failed_environments=sorted(failed_environments))

    def _plan_environment(
        self,
        environment: Environment,
        local_stacks: list[CloudFormationStack],
        additional_stack_names: list[str],
        exclude: ExcludeList,
        overrides: Sequence[MappingGroup],
        prescribed: list[ResourceMapping] | None,
        stack_definitions: bool,
    ) -> EnvironmentRefactor:
        if prescribed is not None:
            additional_stack_names = additional_stack_names + [m.source.stack_name for m in prescribed]
        group = build_group(self._sdk, environment, local_stacks, additional_stack_names)

        if prescribed is not None:
            mappings, ambiguous = prescribed, []
        else:
            env_overrides = overrides_from_groups(
                overrides, environment, group.deployed_stacks, group.local_stacks
            )
            context = RefactoringContext(
                environment,
                group.deployed_stacks,
                group.local_stacks,
                overrides=env_overrides,
                exclude=exclude,
                resource_models=self._sdk.resource_models(environment),
            )
            mappings, ambiguous = context.mappings, context.ambiguous_movements

        deployed_names = {s.stack_name for s in group.deployed_stacks}
        new_stacks = sorted(s.stack_name for s in group.local_stacks if s.stack_name not in deployed_names)

        definitions = []
        if stack_definitions and mappings and not ambiguous:
            definitions = generate_stack_definitions(
                mappings,
                group.deployed_stacks,
                group.local_stacks,
                environment=environment,
                toolkit=self._sdk.toolkit(environment),
            )

        logger.info(
            "%s: %d mapping(s), %d ambiguous group(s)",
            environment,
            len(mappings),
            len(ambiguous),
        )
        return EnvironmentRefactor(
            environment=environment,
            mappings=mappings,
            ambiguous_paths=ambiguous,
            stack_definitions=definitions,
            new_stacks=new_stacks,
        )
