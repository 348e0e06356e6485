"""Reading and writing CloudFormation template documents."""

import json
from typing import Any

import yaml


class _CloudFormationLoader(yaml.SafeLoader):
    """SafeLoader that understands CloudFormation short-form tags (``!Ref``, ``!GetAtt``...)."""


def _construct_tag(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> dict[str, Any]:
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    if tag_suffix == "Ref":
        return {"Ref": value}
    if tag_suffix == "GetAtt" and isinstance(value, str):
        return {"Fn::GetAtt": value.split(".", 1)}
    if tag_suffix == "Condition":
        return {"Condition": value}
    return {f"Fn::{tag_suffix}": value}


_CloudFormationLoader.add_multi_constructor("!", _construct_tag)


def load_template(body: Any) -> dict[str, Any]:
    """Parse a template given as a JSON/YAML string or an already decoded mapping.

    Raises ``ValueError`` when the body cannot be parsed into a mapping.
    """
    if isinstance(body, dict):
        return body
    if not isinstance(body, str):
        raise ValueError(f"Unsupported template body of type {type(body).__name__}")
    try:
        template = json.loads(body)
    except json.JSONDecodeError:
        try:
            template = yaml.load(body, Loader=_CloudFormationLoader)
        except yaml.YAMLError as e:
            raise ValueError(f"Template is neither valid JSON nor YAML: {e}") from e
    if template is None:
        return {}
    if not isinstance(template, dict):
        raise ValueError("Template must be a mapping")
    return template


def serialize_template(template: dict[str, Any]) -> str:
    # YAML templates may carry dates (AWSTemplateFormatVersion), hence default=str
    return json.dumps(template, separators=(",", ":"), ensure_ascii=False, default=str)
