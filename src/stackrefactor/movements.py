"""Detection of resource movements and their resolution into mappings."""

import itertools
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from stackrefactor.digest import compute_resource_digests
from stackrefactor.exclude import ExcludeList
from stackrefactor.models import (
    AmbiguousPath,
    CloudFormationStack,
    Environment,
    GraphDirection,
    ResourceLocation,
    ResourceMapping,
    ResourceMovement,
)
from stackrefactor.resource_models import ResourceModelLoader

logger = logging.getLogger(__name__)


@dataclass
class _Move:
    """All distinct locations sharing one digest in one environment, identity pairs removed."""

    digest: str
    sources: list[ResourceLocation] = field(default_factory=list)
    destinations: list[ResourceLocation] = field(default_factory=list)

    @property
    def is_ambiguous(self) -> bool:
        # Additions and deletions (one side empty) are never ambiguous
        return bool(self.sources and self.destinations) and (
            len(self.sources) > 1 or len(self.destinations) > 1
        )

    @property
    def is_mapping(self) -> bool:
        return len(self.sources) == 1 and len(self.destinations) == 1

    def without(self, mapping: ResourceMapping) -> "_Move":
        return _Move(
            self.digest,
            [s for s in self.sources if s != mapping.source],
            [d for d in self.destinations if d != mapping.destination],
        )


def resource_movements(
    deployed_stacks: Iterable[CloudFormationStack],
    local_stacks: Iterable[CloudFormationStack],
    resource_models: ResourceModelLoader | None = None,
    direction: GraphDirection = GraphDirection.DIRECT,
    exclude: ExcludeList | None = None,
) -> list[ResourceMovement]:
    """Pair deployed and local resources that have the same digest in the same environment.

    Every (source, destination) combination of a digest is returned, including
    identity pairs. Digests present on one side only produce movements with the
    other side set to ``None``. Excluded locations that actually move are left out
    on both sides; an excluded resource that stays in place keeps its identity pair.
    """
    before = _locations_by_digest(deployed_stacks, resource_models, direction)
    after = _locations_by_digest(local_stacks, resource_models, direction)

    movements: list[ResourceMovement] = []
    for key in dict.fromkeys([*before, *after]):
        digest = key[1]
        sources = before.get(key, [])
        destinations = after.get(key, [])
        if exclude is not None:
            unmoved = [s for s in sources if s in destinations]
            sources = [s for s in sources if s in unmoved or not exclude.is_excluded(s)]
            destinations = [d for d in destinations if d in unmoved or not exclude.is_excluded(d)]

        if sources and destinations:
            movements.extend(
                ResourceMovement(digest, source, destination)
                for source, destination in itertools.product(sources, destinations)
            )
        elif sources:
            movements.extend(ResourceMovement(digest, source, None) for source in sources)
        else:
            movements.extend(ResourceMovement(digest, None, destination) for destination in destinations)

    return movements


def resource_mappings(
    movements: Iterable[ResourceMovement],
    stacks: Sequence[CloudFormationStack] | None = None,
) -> list[ResourceMapping]:
    """Return the unambiguous 1:1 moves, optionally limited to moves touching ``stacks``."""
    mappings = [_to_mapping(move) for move in _group_moves(movements) if move.is_mapping]
    return _filter_by_stacks(mappings, stacks)


def ambiguous_movements(movements: Iterable[ResourceMovement]) -> list[AmbiguousPath]:
    """Return every digest group with several possible sources or destinations."""
    return [_to_ambiguous_path(move) for move in _group_moves(movements) if move.is_ambiguous]


class RefactoringContext:
    """Mappings and ambiguities for refactoring the stacks of a single environment."""

    def __init__(
        self,
        environment: Environment,
        deployed_stacks: Sequence[CloudFormationStack],
        local_stacks: Sequence[CloudFormationStack],
        overrides: Sequence[ResourceMapping] = (),
        exclude: ExcludeList | None = None,
        resource_models: ResourceModelLoader | None = None,
    ):
        self.environment = environment
        movements = resource_movements(deployed_stacks, local_stacks, resource_models, exclude=exclude)
        structural = _structural_overrides(deployed_stacks, local_stacks, resource_models, exclude)
        non_ambiguous, ambiguous = _partition_by_ambiguity(
            [*overrides, *structural], _group_moves(movements)
        )
        self._mappings = [_to_mapping(move) for move in non_ambiguous if move.is_mapping]
        self._ambiguous = [_to_ambiguous_path(move) for move in ambiguous]
        logger.debug(
            "%s: %d mapping(s), %d ambiguous group(s)",
            environment,
            len(self._mappings),
            len(self._ambiguous),
        )

    @property
    def mappings(self) -> list[ResourceMapping]:
        return list(self._mappings)

    @property
    def ambiguous_movements(self) -> list[AmbiguousPath]:
        return list(self._ambiguous)

    @property
    def ambiguous_paths(self) -> list[tuple[list[str], list[str]]]:
        return [a.to_paths() for a in self._ambiguous]


def _structural_overrides(
    deployed_stacks: Sequence[CloudFormationStack],
    local_stacks: Sequence[CloudFormationStack],
    resource_models: ResourceModelLoader | None,
    exclude: ExcludeList | None,
) -> list[ResourceMapping]:
    """Mappings deduced from the opposite resource graph.

    Given ``A -> B`` and ``C -> D`` where B and D are identical but A and C are
    not, B and D share a digest and moving both is ambiguous. Digesting along
    the reversed edges makes B and D differ (their dependents differ), and the
    unambiguous mappings found that way disambiguate the original moves.
    """
    movements = resource_movements(
        deployed_stacks, local_stacks, resource_models, GraphDirection.OPPOSITE, exclude
    )
    return resource_mappings(movements)


def _partition_by_ambiguity(
    overrides: Sequence[ResourceMapping], moves: list[_Move]
) -> tuple[list[_Move], list[_Move]]:
    non_ambiguous: list[_Move] = []
    ambiguous: list[_Move] = []

    for move in moves:
        if move.is_ambiguous:
            for override in overrides:
                source = next((s for s in move.sources if s == override.source), None)
                destination = next((d for d in move.destinations if d == override.destination), None)
                if source is not None and destination is not None:
                    non_ambiguous.append(_Move(move.digest, [source], [destination]))
                    move = move.without(override)

        if move.is_ambiguous:
            ambiguous.append(move)
        else:
            non_ambiguous.append(move)

    return non_ambiguous, ambiguous


def _group_moves(movements: Iterable[ResourceMovement]) -> list[_Move]:
    groups: dict[tuple[Environment, str], _Move] = {}
    for movement in movements:
        location = movement.source or movement.destination
        if location is None:
            continue
        move = groups.setdefault((location.environment, movement.digest), _Move(movement.digest))
        if movement.source is not None and movement.source not in move.sources:
            move.sources.append(movement.source)
        if movement.destination is not None and movement.destination not in move.destinations:
            move.destinations.append(movement.destination)

    result = []
    for move in groups.values():
        unmoved = [s for s in move.sources if s in move.destinations]
        result.append(
            _Move(
                move.digest,
                [s for s in move.sources if s not in unmoved],
                [d for d in move.destinations if d not in unmoved],
            )
        )
    return result


def _locations_by_digest(
    stacks: Iterable[CloudFormationStack],
    resource_models: ResourceModelLoader | None,
    direction: GraphDirection,
) -> dict[tuple[Environment, str], list[ResourceLocation]]:
    by_environment: dict[Environment, list[CloudFormationStack]] = {}
    for stack in stacks:
        by_environment.setdefault(stack.environment, []).append(stack)

    entries: list[tuple[ResourceLocation, str]] = []
    for environment_stacks in by_environment.values():
        stacks_by_name = {s.stack_name: s for s in environment_stacks}
        digests = compute_resource_digests(environment_stacks, resource_models, direction)
        for node, digest in digests.items():
            stack_name, _, logical_id = node.partition(".")
            entries.append((ResourceLocation(stacks_by_name[stack_name], logical_id), digest))

    result: dict[tuple[Environment, str], list[ResourceLocation]] = {}
    for location, digest in sorted(entries, key=lambda e: e[0].key):
        result.setdefault((location.environment, digest), []).append(location)
    return result


def _filter_by_stacks(
    mappings: list[ResourceMapping], stacks: Sequence[CloudFormationStack] | None
) -> list[ResourceMapping]:
    if stacks is None:
        return mappings
    names = {s.stack_name for s in stacks}
    return [m for m in mappings if m.source.stack_name in names or m.destination.stack_name in names]


def _to_mapping(move: _Move) -> ResourceMapping:
    return ResourceMapping(move.sources[0], move.destinations[0])


def _to_ambiguous_path(move: _Move) -> AmbiguousPath:
    return AmbiguousPath(tuple(move.sources), tuple(move.destinations))
