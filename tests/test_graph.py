"""Tests for the resource dependency graph."""

import pytest

from stackrefactor.errors import NodeNotFoundError, NotFoundError
from stackrefactor.graph import ResourceGraph


def test_edges_from_ref_getatt_and_depends_on(make_stack):
    stack = make_stack(
        "S",
        {
            "Queue": {"Type": "AWS::SQS::Queue"},
            "Topic": {"Type": "AWS::SNS::Topic", "DependsOn": "Queue"},
            "Function": {
                "Type": "AWS::Lambda::Function",
                "Properties": {
                    "Queue": {"Ref": "Queue"},
                    "Topic": {"Fn::GetAtt": "Topic.TopicArn"},
                    "Region": {"Ref": "AWS::Region"},
                    "Param": {"Ref": "SomeParameter"},
                },
            },
        },
    )
    graph = ResourceGraph.from_stacks([stack])

    assert graph.nodes == ["S.Function", "S.Queue", "S.Topic"]
    assert graph.out_neighbors("S.Function") == ["S.Queue", "S.Topic"]
    assert graph.out_neighbors("S.Topic") == ["S.Queue"]
    assert graph.in_neighbors("S.Queue") == ["S.Function", "S.Topic"]
    assert graph.sorted_nodes == ["S.Queue", "S.Topic", "S.Function"]


def test_import_value_links_to_exporting_stack(make_stack):
    producer = make_stack(
        "Producer",
        {"Bucket": {"Type": "AWS::S3::Bucket"}},
        Outputs={"Name": {"Value": {"Ref": "Bucket"}, "Export": {"Name": "bucket-name"}}},
    )
    consumer = make_stack(
        "Consumer",
        {
            "Reader": {
                "Type": "AWS::IAM::Policy",
                "Properties": {"Bucket": {"Fn::ImportValue": "bucket-name"}},
            }
        },
    )
    graph = ResourceGraph.from_stacks([producer, consumer])

    assert graph.out_neighbors("Consumer.Reader") == ["Producer.Bucket"]
    assert graph.in_neighbors("Producer.Bucket") == ["Consumer.Reader"]


def test_unknown_node_raises(make_stack):
    graph = ResourceGraph.from_stacks([make_stack("S", {"A": {"Type": "X"}})])

    with pytest.raises(NodeNotFoundError, match="Node S.Missing not found"):
        graph.in_neighbors("S.Missing")
    with pytest.raises(NotFoundError):
        graph.out_neighbors("Missing")


def test_opposite_is_a_new_graph(make_stack):
    stack = make_stack("S", {"A": {"Type": "X", "DependsOn": "B"}, "B": {"Type": "X"}})
    graph = ResourceGraph.from_stacks([stack])
    opposite = graph.opposite()

    assert opposite is not graph
    assert opposite.out_neighbors("S.B") == ["S.A"]
    assert graph.out_neighbors("S.B") == []
    assert opposite.sorted_nodes == ["S.A", "S.B"]
    assert graph.sorted_nodes == ["S.B", "S.A"]


def test_cycle_does_not_raise_and_terminates(make_stack):
    stack = make_stack(
        "S",
        {
            "A": {"Type": "X", "DependsOn": "B"},
            "B": {"Type": "X", "DependsOn": ["A"]},
            "C": {"Type": "X"},
        },
    )
    graph = ResourceGraph.from_stacks([stack])

    assert graph.sorted_nodes == ["S.C"]
    assert len(graph) == 3
    assert "S.A" in graph


def test_self_reference_is_ignored(make_stack):
    graph = ResourceGraph.from_stacks([make_stack("S", {"A": {"Type": "X", "DependsOn": "A"}})])
    assert graph.out_neighbors("S.A") == []
    assert graph.sorted_nodes == ["S.A"]
