"""Tests for mapping files and prescribed mappings."""

import json

import pytest

from stackrefactor.errors import NotFoundError, ValidationError
from stackrefactor.mappings import (
    MappingGroup,
    dump_mapping_groups,
    mapping_groups_from_results,
    overrides_from_groups,
    parse_mapping_groups,
    use_prescribed_mappings,
)
from stackrefactor.models import EnvironmentRefactor, ResourceLocation, ResourceMapping

ACCOUNT = "123456789012"
REGION = "us-east-1"
QUEUE = {"Type": "AWS::SQS::Queue"}


def _file(resources, account=ACCOUNT, region=REGION):
    return json.dumps({"environments": [{"account": account, "region": region, "resources": resources}]})


def test_parse_mapping_groups():
    groups = parse_mapping_groups(_file({"Foo.Queue": "Bar.Queue"}))

    assert groups == [MappingGroup(ACCOUNT, REGION, {"Foo.Queue": "Bar.Queue"})]
    assert groups[0].environment.region == REGION


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "[]",
        '{"mappings": []}',
        '{"environments": {}}',
        '{"environments": [{"region": "us-east-1", "resources": {}}]}',
        '{"environments": [{"account": "1", "region": "r", "resources": {"A.B": 1}}]}',
    ],
)
def test_parse_mapping_groups_rejects_malformed_files(text):
    with pytest.raises(ValidationError):
        parse_mapping_groups(text)


def test_parse_mapping_groups_rejects_duplicate_destinations():
    with pytest.raises(ValidationError, match="Duplicate destination resource 'Bar.Queue'"):
        parse_mapping_groups(_file({"Foo.Queue": "Bar.Queue", "Foo.Other": "Bar.Queue"}))


def test_prescribed_mappings(env, make_stack, sdk_provider):
    sdk_provider.deployed[env] = [make_stack("Foo", {"Queue": QUEUE})]
    groups = parse_mapping_groups(_file({"Foo.Queue": "Bar.Jobs"}))

    [mapping] = use_prescribed_mappings(groups, sdk_provider)

    assert mapping.source.to_location_string() == "Foo.Queue"
    assert mapping.source.resource_type == "AWS::SQS::Queue"
    assert mapping.destination.to_location_string() == "Bar.Jobs"
    assert mapping.destination.environment == env


def test_prescribed_source_must_exist(env, make_stack, sdk_provider):
    sdk_provider.deployed[env] = [make_stack("Foo", {"Queue": QUEUE})]
    groups = parse_mapping_groups(_file({"Foo.Missing": "Bar.Jobs"}))

    with pytest.raises(NotFoundError, match="Source resource 'Foo.Missing' does not exist"):
        use_prescribed_mappings(groups, sdk_provider)


def test_prescribed_destination_must_be_free(env, make_stack, sdk_provider):
    sdk_provider.deployed[env] = [make_stack("Foo", {"Queue": QUEUE}), make_stack("Bar", {"Jobs": QUEUE})]
    groups = parse_mapping_groups(_file({"Foo.Queue": "Bar.Jobs"}))

    with pytest.raises(ValidationError, match="already in use"):
        use_prescribed_mappings(groups, sdk_provider)


def test_prescribed_invalid_location(env, make_stack, sdk_provider):
    sdk_provider.deployed[env] = [make_stack("Foo", {"Queue": QUEUE})]

    with pytest.raises(ValidationError, match="Invalid location 'FooQueue'"):
        use_prescribed_mappings([MappingGroup(ACCOUNT, REGION, {"FooQueue": "Bar.Jobs"})], sdk_provider)


def test_prescribed_mappings_can_be_reverted(env, make_stack, sdk_provider):
    sdk_provider.deployed[env] = [make_stack("Bar", {"Jobs": QUEUE})]
    groups = parse_mapping_groups(_file({"Foo.Queue": "Bar.Jobs"}))

    [mapping] = use_prescribed_mappings(groups, sdk_provider, revert=True)

    assert mapping.source.to_location_string() == "Bar.Jobs"
    assert mapping.destination.to_location_string() == "Foo.Queue"


def test_overrides_accept_stack_locations(env, make_stack):
    deployed = [make_stack("Foo", {"A": QUEUE})]
    local = [make_stack("Bar", {"B": QUEUE})]
    groups = [MappingGroup(ACCOUNT, REGION, {"Foo.A": "Bar.B"})]

    [override] = overrides_from_groups(groups, env, deployed, local)

    assert override.source.stack is deployed[0]
    assert override.destination.stack is local[0]
    assert override.source.to_location_string() == "Foo.A"
    assert override.destination.to_location_string() == "Bar.B"


def test_overrides_accept_construct_paths(env, make_stack):
    deployed = [make_stack("Foo", {"A": {**QUEUE, "Metadata": {"aws:cdk:path": "Foo/Jobs/Resource"}}})]
    local = [make_stack("Bar", {"B": {**QUEUE, "Metadata": {"aws:cdk:path": "Bar/Work/Jobs/Resource"}}})]
    groups = [MappingGroup(ACCOUNT, REGION, {"Foo/Jobs/Resource": "Bar/Work/Jobs/Resource"})]

    [override] = overrides_from_groups(groups, env, deployed, local)

    assert override.source.to_location_string() == "Foo.A"
    assert override.destination.to_location_string() == "Bar.B"


def test_overrides_of_other_environments_are_ignored(env, make_stack):
    groups = [MappingGroup("210987654321", "eu-west-1", {"Foo.A": "Bar.B"})]

    assert overrides_from_groups(groups, env, [make_stack("Foo", {"A": QUEUE})], []) == []


@pytest.mark.parametrize(
    "resources",
    [{"Foo.Missing": "Bar.B"}, {"Foo.A": "Bar/Nowhere/Resource"}],
)
def test_override_locations_must_exist(env, make_stack, resources):
    deployed = [make_stack("Foo", {"A": QUEUE})]
    local = [make_stack("Bar", {"B": QUEUE})]

    with pytest.raises(ValidationError, match="Cannot find resource in location"):
        overrides_from_groups([MappingGroup(ACCOUNT, REGION, resources)], env, deployed, local)


def test_recorded_mappings_round_trip_through_the_file_format(env, make_stack):
    foo = make_stack("Foo", {"Queue": QUEUE})
    bar = make_stack("Bar", {"Jobs": QUEUE})
    results = [
        EnvironmentRefactor(
            environment=env,
            mappings=[ResourceMapping(ResourceLocation(foo, "Queue"), ResourceLocation(bar, "Jobs"))],
            ambiguous_paths=[],
        ),
        EnvironmentRefactor(environment=env, mappings=[], ambiguous_paths=[]),
    ]

    text = dump_mapping_groups(mapping_groups_from_results(results))

    assert parse_mapping_groups(text) == [MappingGroup(ACCOUNT, REGION, {"Foo.Queue": "Bar.Jobs"})]
