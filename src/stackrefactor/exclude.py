"""Lists of resource locations that must not take part in a refactor."""

import re
from abc import ABC, abstractmethod
from typing import Any, Protocol

from stackrefactor.models import ResourceLocation

STACK_ARTIFACT_TYPE = "aws:cloudformation:stack"
DO_NOT_REFACTOR = "aws:cdk:do-not-refactor"
LOGICAL_ID = "aws:cdk:logicalId"

LOCATION_PATTERN = re.compile(r"^[A-Za-z0-9-]+\.[A-Za-z0-9]+$")


class ExcludeList(Protocol):
    def is_excluded(self, location: ResourceLocation) -> bool: ...

    def union(self, other: "ExcludeList") -> "ExcludeList": ...


class _BaseExcludeList(ABC):
    @abstractmethod
    def is_excluded(self, location: ResourceLocation) -> bool: ...

    def union(self, other: ExcludeList) -> ExcludeList:
        return UnionExcludeList([self, other])


class InMemoryExcludeList(_BaseExcludeList):
    """Excludes locations given as ``Stack.LogicalId`` or as construct paths."""

    def __init__(self, items: list[str]):
        self._locations: set[tuple[str, str]] = set()
        self._paths: set[str] = set()
        for item in items:
            item = item.strip()
            if not item:
                continue
            if LOCATION_PATTERN.match(item):
                stack_name, _, logical_id = item.partition(".")
                self._locations.add((stack_name, logical_id))
            else:
                self._paths.add(item)

    def is_excluded(self, location: ResourceLocation) -> bool:
        if (location.stack_name, location.logical_id) in self._locations:
            return True
        return location.to_path() in self._paths


class ManifestExcludeList(_BaseExcludeList):
    """Excludes resources flagged with ``aws:cdk:do-not-refactor`` in a cloud assembly manifest."""

    def __init__(self, manifest: dict[str, Any]):
        self._locations = self._excluded_locations(manifest)

    @staticmethod
    def _excluded_locations(manifest: dict[str, Any]) -> set[tuple[str, str]]:
        result = set()
        for artifact_id, artifact in (manifest.get("artifacts") or {}).items():
            if artifact.get("type") != STACK_ARTIFACT_TYPE:
                continue
            stack_name = (artifact.get("properties") or {}).get("stackName") or artifact_id
            for entries in (artifact.get("metadata") or {}).values():
                if not any(e.get("type") == DO_NOT_REFACTOR and e.get("data") is True for e in entries):
                    continue
                logical_id = next((e.get("data") for e in entries if e.get("type") == LOGICAL_ID), None)
                if isinstance(logical_id, str):
                    result.add((stack_name, logical_id))
        return result

    def is_excluded(self, location: ResourceLocation) -> bool:
        return (location.stack_name, location.logical_id) in self._locations


class UnionExcludeList(_BaseExcludeList):
    def __init__(self, exclude_lists: list[ExcludeList]):
        self._exclude_lists = exclude_lists

    def is_excluded(self, location: ResourceLocation) -> bool:
        return any(e.is_excluded(location) for e in self._exclude_lists)


class NeverExclude(_BaseExcludeList):
    def is_excluded(self, location: ResourceLocation) -> bool:
        return False


class AlwaysExclude(_BaseExcludeList):
    def is_excluded(self, location: ResourceLocation) -> bool:
        return True
