"""Content digests that identify "the same resource" across template versions.

Conceptually::

    digest(resource) = hash(type + properties + digests of dependencies)

References to other resources inside the properties are replaced by the digest
of the referenced resource, so a digest survives a rename of any of its
dependencies, as long as the dependencies themselves are unchanged. When the
resource type has a primary identifier (its physical name) and the template
sets it, only the type and the identifier are hashed.
"""

import hashlib
import json
import logging
from collections.abc import Iterable, Iterator
from typing import Any

from stackrefactor.graph import ResourceGraph, node_id
from stackrefactor.intrinsics import (
    GetAtt,
    ImportValue,
    ScopedExport,
    index_exports,
    parse_depends_on,
    parse_intrinsic,
    resolve_import,
)
from stackrefactor.models import (
    CDK_METADATA_TYPE,
    CloudFormationStack,
    Environment,
    GraphDirection,
    ResourceModel,
)
from stackrefactor.resource_models import ResourceModelLoader

logger = logging.getLogger(__name__)

# Stands in for the digest of a resource that is part of a dependency cycle
UNRESOLVED = "__unresolved__"
# Stands in for any reference when digesting along the opposite graph
REFERENCE = "__reference__"

HASHED_ATTRIBUTES = ("Properties", "UpdateReplacePolicy", "DeletionPolicy")


def hash_object(obj: Any) -> str:
    """SHA-256 of the canonical (sorted-key) JSON encoding of ``obj``."""
    canonical = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_template_digests(
    template: Any, resource_models: ResourceModelLoader | None = None
) -> dict[str, str]:
    """Digest every resource of a single template, keyed by logical ID."""
    stack = CloudFormationStack(
        stack_name="Template",
        environment=Environment(account="", region=""),
        template=template if isinstance(template, dict) else {},
    )
    prefix = "Template."
    return {
        key[len(prefix) :]: digest
        for key, digest in compute_resource_digests([stack], resource_models).items()
    }


def compute_resource_digests(
    stacks: Iterable[CloudFormationStack],
    resource_models: ResourceModelLoader | None = None,
    direction: GraphDirection = GraphDirection.DIRECT,
) -> dict[str, str]:
    """Digest every resource of a set of stacks, keyed by ``"StackName.LogicalId"``.

    All stacks are expected to belong to the same environment, so that
    ``Fn::ImportValue`` can be followed to the exporting stack.
    """
    stacks = list(stacks)
    calculator = _DigestCalculator(stacks, resource_models, GraphDirection(direction))
    return calculator.compute()


class _DigestCalculator:
    def __init__(
        self,
        stacks: list[CloudFormationStack],
        resource_models: ResourceModelLoader | None,
        direction: GraphDirection,
    ):
        self._direction = direction
        self._resource_models = resource_models
        self._models: dict[str, ResourceModel | None] = {}
        self._exports: dict[str, ScopedExport] = index_exports(stacks)
        self._resources: dict[str, tuple[str, dict]] = {}
        for stack in stacks:
            for logical_id, resource in stack.resources.items():
                if not isinstance(resource, dict) or resource.get("Type") == CDK_METADATA_TYPE:
                    continue
                self._resources[node_id(stack.stack_name, logical_id)] = (stack.stack_name, resource)

        graph = ResourceGraph.from_stacks(stacks)
        # Along the opposite graph a resource is digested after its dependents
        self._graph = graph.opposite() if direction == GraphDirection.OPPOSITE else graph

    def compute(self) -> dict[str, str]:
        digests: dict[str, str] = {}
        for node in self._graph.sorted_nodes:
            if node in self._resources:
                digests[node] = self._digest(node, digests)

        remaining = sorted(n for n in self._resources if n not in digests)
        if remaining:
            logger.debug("Resolving digests of %d resource(s) involved in cycles", len(remaining))
            digests.update(self._resolve_cycles(remaining, digests))

        return {node: digests[node] for node in self._resources}

    def _resolve_cycles(self, remaining: list[str], resolved: dict[str, str]) -> dict[str, str]:
        known = dict(resolved)
        for component in self._components(remaining):
            if len(component) == 1:
                known[component[0]] = self._digest(component[0], known)
                continue
            # Jacobi iteration over the cycle members from a constant placeholder, bounded by the cycle size
            pending = {node: UNRESOLVED for node in component}
            for _ in range(len(component)):
                known.update(pending)
                updated = {node: self._digest(node, known) for node in component}
                if updated == pending:
                    break
                pending = updated
            known.update(pending)
        return {node: known[node] for node in remaining}

    def _components(self, nodes: list[str]) -> list[list[str]]:
        """Strongly connected components of ``nodes`` (Tarjan), dependencies first."""
        members = set(nodes)
        index: dict[str, int] = {}
        lowlink: dict[str, int] = {}
        stack: list[str] = []
        on_stack: set[str] = set()
        components: list[list[str]] = []

        def visit(node: str) -> Iterator[str]:
            index[node] = lowlink[node] = len(index)
            stack.append(node)
            on_stack.add(node)
            return iter([n for n in self._graph.out_neighbors(node) if n in members])

        for root in nodes:
            if root in index:
                continue
            work = [(root, visit(root))]
            while work:
                node, successors = work[-1]
                for successor in successors:
                    if successor not in index:
                        work.append((successor, visit(successor)))
                        break
                    if successor in on_stack:
                        lowlink[node] = min(lowlink[node], index[successor])
                else:
                    work.pop()
                    if work:
                        parent = work[-1][0]
                        lowlink[parent] = min(lowlink[parent], lowlink[node])
                    if lowlink[node] == index[node]:
                        component = []
                        while True:
                            member = stack.pop()
                            on_stack.discard(member)
                            component.append(member)
                            if member == node:
                                break
                        components.append(sorted(component))
        return components

    def _digest(self, node: str, known: dict[str, str]) -> str:
        stack_name, resource = self._resources[node]
        resource_type = resource.get("Type")
        properties = resource.get("Properties")

        model = self._model(resource_type)
        if model is not None and model.primary_identifier and isinstance(properties, dict):
            if all(name in properties for name in model.primary_identifier):
                return hash_object(
                    {
                        "Type": resource_type,
                        "PrimaryIdentifier": [
                            self._substitute(stack_name, properties[name], known)
                            for name in model.primary_identifier
                        ],
                    }
                )

        body: dict[str, Any] = {"Type": resource_type}
        for attribute in HASHED_ATTRIBUTES:
            if attribute in resource:
                body[attribute] = self._substitute(stack_name, resource[attribute], known)

        depends_on = parse_depends_on(resource)
        if self._direction == GraphDirection.DIRECT:
            if depends_on is not None:
                body["DependsOn"] = sorted(
                    self._dependency_digest(node_id(stack_name, t), t, known) for t in depends_on.targets
                )
        else:
            if depends_on is not None:
                body["DependsOn"] = [REFERENCE] * len(depends_on.targets)
            body["Dependents"] = sorted(
                known.get(n, UNRESOLVED) for n in self._graph.out_neighbors(node) if n in self._resources
            )

        return hash_object(body)

    def _dependency_digest(self, target: str, literal: str, known: dict[str, str]) -> str:
        if target not in self._resources:
            return literal
        if self._direction == GraphDirection.OPPOSITE:
            return REFERENCE
        return known.get(target, UNRESOLVED)

    def _substitute(self, stack_name: str, value: Any, known: dict[str, str]) -> Any:
        """Replace references to known resources by the digests of those resources."""
        if isinstance(value, list):
            return [self._substitute(stack_name, v, known) for v in value]
        if not isinstance(value, dict):
            return value

        reference = parse_intrinsic(value)
        target_stack = stack_name
        if isinstance(reference, ImportValue):
            resolved = resolve_import(reference, self._exports)
            reference = None
            if resolved is not None:
                target_stack, reference = resolved

        if reference is None:
            return {k: self._substitute(stack_name, v, known) for k, v in value.items()}

        target = node_id(target_stack, reference.target)
        if target not in self._resources:
            # Parameters and pseudo parameters are hashed as written
            return value
        digest = self._dependency_digest(target, reference.target, known)
        if isinstance(reference, GetAtt):
            return {"Fn::GetAtt": [{"Digest": digest}, reference.attribute]}
        return {"Ref": {"Digest": digest}}

    def _model(self, resource_type: Any) -> ResourceModel | None:
        if self._resource_models is None or not isinstance(resource_type, str):
            return None
        if resource_type not in self._models:
            self._models[resource_type] = self._resource_models.load(resource_type)
        return self._models[resource_type]
