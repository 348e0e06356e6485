"""Tests for data models."""

import pytest

from stackrefactor.errors import ValidationError
from stackrefactor.models import (
    AmbiguousPath,
    CloudFormationStack,
    Environment,
    EnvironmentRefactor,
    ResourceLocation,
    ResourceMapping,
    ResourceMovement,
    StackDefinition,
    StackStatus,
    ToolkitInfo,
)


def test_environment_parse():
    env = Environment.parse("aws://123456789012/eu-west-1")
    assert env.account == "123456789012"
    assert env.region == "eu-west-1"
    assert str(env) == "aws://123456789012/eu-west-1"


@pytest.mark.parametrize("value", ["123/us-east-1", "aws://123", "aws:///us-east-1", "aws://123/"])
def test_environment_parse_invalid(value):
    with pytest.raises(ValidationError):
        Environment.parse(value)


def test_environment_equality_ignores_name():
    assert Environment("1", "r", name="a") == Environment("1", "r", name="b")
    assert hash(Environment("1", "r", name="a")) == hash(Environment("1", "r"))
    assert Environment("1", "r") != Environment("2", "r")


def test_environment_is_unresolved():
    assert Environment("unknown-account", "us-east-1").is_unresolved
    assert Environment("123", "${AWS::Region}").is_unresolved
    assert not Environment("123", "us-east-1").is_unresolved


def test_stack_resources_tolerates_malformed_template(env):
    assert CloudFormationStack("S", env, {"Resources": ["not", "a", "map"]}).resources == {}
    assert CloudFormationStack("S", env, {}).resources == {}


def test_location_equality_uses_stack_name_and_environment(env):
    a = ResourceLocation(CloudFormationStack("S", env, {"Resources": {"Q": {"Type": "A"}}}), "Q")
    b = ResourceLocation(CloudFormationStack("S", env, {}), "Q")
    other_env = ResourceLocation(CloudFormationStack("S", Environment("999", "us-east-1"), {}), "Q")

    assert a == b
    assert hash(a) == hash(b)
    assert a != other_env


def test_location_path_prefers_cdk_path(make_stack):
    stack = make_stack(
        "S",
        {
            "Q": {"Type": "AWS::SQS::Queue", "Metadata": {"aws:cdk:path": "S/Queue/Resource"}},
            "T": {"Type": "AWS::SNS::Topic"},
        },
    )
    assert ResourceLocation(stack, "Q").to_path() == "S/Queue/Resource"
    assert ResourceLocation(stack, "T").to_path() == "S.T"
    assert ResourceLocation(stack, "T").resource_type == "AWS::SNS::Topic"


def test_movement_is_candidate(make_stack):
    stack = make_stack("S", {"A": {"Type": "X"}, "B": {"Type": "X"}})
    a, b = ResourceLocation(stack, "A"), ResourceLocation(stack, "B")

    assert ResourceMovement("d", a, b).is_candidate
    assert not ResourceMovement("d", a, a).is_candidate
    assert not ResourceMovement("d", a, None).is_candidate
    assert not ResourceMovement("d", None, b).is_candidate


def test_mapping_to_cfn_and_typed_mapping(make_stack):
    source = ResourceLocation(make_stack("Foo", {"B": {"Type": "AWS::S3::Bucket"}}), "B")
    destination = ResourceLocation(make_stack("Bar", {"B2": {"Type": "AWS::S3::Bucket"}}), "B2")
    mapping = ResourceMapping(source, destination)

    assert mapping.to_cfn() == {
        "Source": {"StackName": "Foo", "LogicalResourceId": "B"},
        "Destination": {"StackName": "Bar", "LogicalResourceId": "B2"},
    }
    typed = mapping.to_typed_mapping()
    assert typed.type == "AWS::S3::Bucket"
    assert (typed.source_path, typed.destination_path) == ("Foo.B", "Bar.B2")


def test_ambiguous_path_to_paths(make_stack):
    stack = make_stack("S", {"A": {"Type": "X"}, "B": {"Type": "X"}, "C": {"Type": "X"}})
    path = AmbiguousPath(
        (ResourceLocation(stack, "A"), ResourceLocation(stack, "B")),
        (ResourceLocation(stack, "C"),),
    )
    assert path.to_paths() == (["S.A", "S.B"], ["S.C"])


def test_stack_definition_to_api():
    assert StackDefinition("S", template_body="{}").to_api() == {"StackName": "S", "TemplateBody": "{}"}
    assert StackDefinition("S", template_url="https://b/k").to_api() == {
        "StackName": "S",
        "TemplateURL": "https://b/k",
    }


def test_toolkit_object_url():
    info = ToolkitInfo(found=True, bucket_name="b", bucket_domain_name="b.s3.amazonaws.com")
    assert info.object_url("cdk-refactor/S/abc.json") == "https://b.s3.amazonaws.com/cdk-refactor/S/abc.json"


def test_typed_mappings_hide_cdk_metadata(env, make_stack):
    old = make_stack("Old", {"M": {"Type": "AWS::CDK::Metadata"}, "Q": {"Type": "AWS::SQS::Queue"}})
    new = make_stack("New", {"M": {"Type": "AWS::CDK::Metadata"}, "Q": {"Type": "AWS::SQS::Queue"}})
    refactor = EnvironmentRefactor(
        environment=env,
        mappings=[
            ResourceMapping(ResourceLocation(old, "M"), ResourceLocation(new, "M")),
            ResourceMapping(ResourceLocation(old, "Q"), ResourceLocation(new, "Q")),
        ],
        ambiguous_paths=[],
    )
    assert [t.type for t in refactor.typed_mappings] == ["AWS::SQS::Queue"]
    assert not refactor.is_empty


def test_stack_status_values():
    assert StackStatus.UPDATE_ROLLBACK_COMPLETE == "UPDATE_ROLLBACK_COMPLETE"
    assert len(list(StackStatus)) == 5
