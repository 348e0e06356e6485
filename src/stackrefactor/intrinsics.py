"""Recognition of CloudFormation intrinsic functions that create dependencies.

Templates are plain JSON-shaped data. Every place that needs to know whether a
value refers to another resource goes through :func:`parse_intrinsic`, which
turns the raw value into one of the reference variants below (or ``None`` for
plain data).
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from stackrefactor.models import CloudFormationStack


@dataclass(frozen=True)
class Ref:
    target: str


@dataclass(frozen=True)
class GetAtt:
    target: str
    attribute: str


@dataclass(frozen=True)
class ImportValue:
    export_name: Any


@dataclass(frozen=True)
class DependsOn:
    targets: tuple[str, ...]


Reference = Ref | GetAtt | ImportValue | DependsOn


@dataclass(frozen=True)
class ScopedExport:
    """An exported stack output, with the stack it belongs to."""

    stack_name: str
    output_name: str
    value: Any


def parse_intrinsic(value: Any) -> Ref | GetAtt | ImportValue | None:
    """Classify a JSON value as a reference intrinsic, or ``None`` for plain data."""
    if not isinstance(value, dict):
        return None
    if "Ref" in value:
        return Ref(str(value["Ref"]))
    if "Fn::GetAtt" in value:
        return _parse_get_att(value["Fn::GetAtt"])
    if "Fn::ImportValue" in value:
        return ImportValue(value["Fn::ImportValue"])
    return None


def _parse_get_att(arg: Any) -> GetAtt:
    if isinstance(arg, str):
        target, _, attribute = arg.partition(".")
        return GetAtt(target, attribute)
    if isinstance(arg, list) and arg:
        attribute = arg[1] if len(arg) > 1 else ""
        return GetAtt(str(arg[0]), attribute if isinstance(attribute, str) else str(attribute))
    return GetAtt(str(arg), "")


def parse_depends_on(resource: Any) -> DependsOn | None:
    """Read the top-level ``DependsOn`` attribute of a resource (string or list)."""
    if not isinstance(resource, dict) or "DependsOn" not in resource:
        return None
    depends_on = resource["DependsOn"]
    if isinstance(depends_on, str):
        return DependsOn((depends_on,))
    if isinstance(depends_on, list):
        return DependsOn(tuple(d for d in depends_on if isinstance(d, str)))
    return None


def find_references(resource: Any) -> Iterator[Reference]:
    """Yield every reference found in a resource body, DependsOn first."""
    depends_on = parse_depends_on(resource)
    if depends_on is not None:
        yield depends_on
    if not isinstance(resource, dict):
        return
    for key, child in resource.items():
        if key != "DependsOn":
            yield from _walk(child)


def _walk(value: Any) -> Iterator[Ref | GetAtt | ImportValue]:
    if isinstance(value, list):
        for item in value:
            yield from _walk(item)
        return
    if not isinstance(value, dict):
        return

    reference = parse_intrinsic(value)
    if reference is not None:
        yield reference
        return

    for child in value.values():
        yield from _walk(child)


def index_exports(stacks: Iterable[CloudFormationStack]) -> dict[str, ScopedExport]:
    """Map export names to the output that produces them."""
    exports: dict[str, ScopedExport] = {}
    for stack in stacks:
        outputs = stack.template.get("Outputs")
        if not isinstance(outputs, dict):
            continue
        for output_name, output in outputs.items():
            if not isinstance(output, dict):
                continue
            export = output.get("Export")
            if isinstance(export, dict) and isinstance(export.get("Name"), str):
                exports[export["Name"]] = ScopedExport(
                    stack_name=stack.stack_name,
                    output_name=output_name,
                    value=output.get("Value"),
                )
    return exports


def resolve_import(
    reference: ImportValue, exports: dict[str, ScopedExport]
) -> tuple[str, Ref | GetAtt] | None:
    """Follow an ``Fn::ImportValue`` to the stack and resource that export it.

    Returns ``None`` when the export is unknown or its value is not a plain
    ``Ref``/``Fn::GetAtt`` (for example a literal or an ``Fn::Sub``).
    """
    if not isinstance(reference.export_name, str):
        return None
    export = exports.get(reference.export_name)
    if export is None:
        return None
    target = parse_intrinsic(export.value)
    if isinstance(target, (Ref, GetAtt)):
        return export.stack_name, target
    return None
