"""Dependency graph of resources across one or more CloudFormation stacks."""

import logging
from collections import deque
from collections.abc import Iterable

from stackrefactor.errors import NodeNotFoundError
from stackrefactor.intrinsics import (
    DependsOn,
    GetAtt,
    ImportValue,
    Ref,
    find_references,
    index_exports,
    resolve_import,
)
from stackrefactor.models import CloudFormationStack

logger = logging.getLogger(__name__)


def node_id(stack_name: str, logical_id: str) -> str:
    return f"{stack_name}.{logical_id}"


class ResourceGraph:
    """An immutable directed graph of resources.

    Nodes are ``"StackName.LogicalId"`` strings. An edge ``a -> b`` means that
    resource ``a`` depends on resource ``b`` (through ``Ref``, ``Fn::GetAtt``,
    ``Fn::ImportValue`` or ``DependsOn``).
    """

    def __init__(self, edges: dict[str, frozenset[str]], reverse_edges: dict[str, frozenset[str]]):
        self._edges = edges
        self._reverse_edges = reverse_edges

    @classmethod
    def from_stacks(cls, stacks: Iterable[CloudFormationStack]) -> "ResourceGraph":
        stacks = list(stacks)
        exports = index_exports(stacks)

        edges: dict[str, set[str]] = {}
        reverse_edges: dict[str, set[str]] = {}
        for stack in stacks:
            for logical_id in stack.resources:
                node = node_id(stack.stack_name, logical_id)
                edges[node] = set()
                reverse_edges[node] = set()

        for stack in stacks:
            for logical_id, resource in stack.resources.items():
                source = node_id(stack.stack_name, logical_id)
                for target in _dependencies(stack.stack_name, resource, exports):
                    # Parameters, pseudo parameters and unknown exports are not nodes
                    if target not in edges or target == source:
                        continue
                    edges[source].add(target)
                    reverse_edges[target].add(source)

        return cls(
            {k: frozenset(v) for k, v in edges.items()},
            {k: frozenset(v) for k, v in reverse_edges.items()},
        )

    @property
    def nodes(self) -> list[str]:
        return sorted(self._edges)

    @property
    def sorted_nodes(self) -> list[str]:
        """Nodes in dependency order: a node appears after everything it depends on.

        Nodes that are part of a cycle (or depend on one) never reach an
        out-degree of zero and are left out of the result.
        """
        out_degree = {node: len(targets) for node, targets in self._edges.items()}
        queue = deque(sorted(node for node, degree in out_degree.items() if degree == 0))
        result: list[str] = []

        while queue:
            node = queue.popleft()
            result.append(node)
            for dependent in sorted(self._reverse_edges[node]):
                out_degree[dependent] -= 1
                if out_degree[dependent] == 0:
                    queue.append(dependent)

        if len(result) < len(out_degree):
            logger.debug("Resource graph has %d node(s) in or behind a cycle", len(out_degree) - len(result))
        return result

    def in_neighbors(self, node: str) -> list[str]:
        """Nodes that depend on ``node``."""
        if node not in self._edges:
            raise NodeNotFoundError(node)
        return sorted(self._reverse_edges[node])

    def out_neighbors(self, node: str) -> list[str]:
        """Nodes that ``node`` depends on."""
        if node not in self._edges:
            raise NodeNotFoundError(node)
        return sorted(self._edges[node])

    def opposite(self) -> "ResourceGraph":
        """Return a graph with the same nodes and every edge reversed."""
        return ResourceGraph(self._reverse_edges, self._edges)

    def __contains__(self, node: str) -> bool:
        return node in self._edges

    def __len__(self) -> int:
        return len(self._edges)


def _dependencies(stack_name: str, resource, exports) -> list[str]:
    result = []
    for reference in find_references(resource):
        if isinstance(reference, (Ref, GetAtt)):
            result.append(node_id(stack_name, reference.target))
        elif isinstance(reference, DependsOn):
            result.extend(node_id(stack_name, t) for t in reference.targets)
        elif isinstance(reference, ImportValue):
            resolved = resolve_import(reference, exports)
            if resolved is not None:
                exporting_stack, target_ref = resolved
                result.append(node_id(exporting_stack, target_ref.target))
    return result
