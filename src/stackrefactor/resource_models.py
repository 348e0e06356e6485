"""Lookup of CloudFormation resource models (schema primary identifiers)."""

from collections.abc import Iterable, Mapping
from typing import Protocol

from stackrefactor.models import ResourceModel


class ResourceModelLoader(Protocol):
    """Anything that can return the resource model of a CloudFormation type."""

    def load(self, resource_type: str) -> ResourceModel | None:
        """Return the model for ``resource_type``, or ``None`` if the type is unknown."""
        ...


class StaticResourceModels:
    """Resource models from an in-memory table of primary identifiers."""

    def __init__(self, primary_identifiers: Mapping[str, Iterable[str]] | None = None):
        self._models = {
            type_name: ResourceModel(type_name=type_name, primary_identifier=tuple(identifiers))
            for type_name, identifiers in (primary_identifiers or {}).items()
        }

    def load(self, resource_type: str) -> ResourceModel | None:
        return self._models.get(resource_type)


NO_RESOURCE_MODELS = StaticResourceModels()


def primary_identifier_from_schema(schema: dict) -> tuple[str, ...]:
    """Extract property names from a registry schema's ``primaryIdentifier``.

    Schemas list identifiers as JSON pointers (``/properties/BucketName``);
    nested pointers keep only the top-level property name.
    """
    result = []
    for pointer in schema.get("primaryIdentifier") or []:
        if not isinstance(pointer, str):
            continue
        parts = [p for p in pointer.split("/") if p]
        if len(parts) >= 2 and parts[0] == "properties":
            result.append(parts[1])
    return tuple(result)
