"""Shared test fixtures."""

import boto3
import pytest
from moto import mock_aws

from stackrefactor.models import CloudFormationStack, Environment
from stackrefactor.resource_models import NO_RESOURCE_MODELS

ACCOUNT = "123456789012"
REGION = "us-east-1"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Set dummy AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)


@pytest.fixture
def cfn_client(aws_credentials):
    """Create a moto-mocked CloudFormation boto3 client."""
    with mock_aws():
        yield boto3.client("cloudformation", region_name=REGION)


@pytest.fixture
def env():
    return Environment(account=ACCOUNT, region=REGION)


@pytest.fixture
def make_stack(env):
    """Build a CloudFormationStack from a Resources mapping."""

    def _make(name, resources, environment=None, **sections):
        template = {"Resources": resources, **sections}
        return CloudFormationStack(stack_name=name, environment=environment or env, template=template)

    return _make


@pytest.fixture
def sdk_provider():
    """An SDK provider serving deployed stacks from an in-memory table.

    Set ``sdk_provider.deployed[environment] = [CloudFormationStack, ...]``.
    """
    return _FakeSdkProvider()


class _FakeCloudFormation:
    def __init__(self, stacks):
        self._stacks = stacks

    def list_stacks(self, stack_names=None):
        return [
            {"stack_name": s.stack_name, "stack_id": f"arn:{s.stack_name}"}
            for s in self._stacks
            if stack_names is None or s.stack_name in stack_names
        ]

    def get_template(self, stack_name):
        return next(s.template for s in self._stacks if s.stack_name == stack_name)


class _FakeSdkProvider:
    def __init__(self):
        self.deployed = {}
        self.toolkits = {}

    def resolve_environment(self, environment):
        return environment

    def cloudformation(self, environment):
        return _FakeCloudFormation(self.deployed.get(environment, []))

    def resource_models(self, environment):
        return NO_RESOURCE_MODELS

    def toolkit(self, environment):
        return self.toolkits[environment]


SIMPLE_TEMPLATE = """{
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "MyQueue": {
            "Type": "AWS::SQS::Queue",
            "Properties": {
                "QueueName": "my-test-queue"
            }
        }
    }
}"""

YAML_TEMPLATE = """AWSTemplateFormatVersion: "2010-09-09"
Resources:
  MyTopic:
    Type: AWS::SNS::Topic
    Properties:
      TopicName: my-test-topic
"""

TOOLKIT_TEMPLATE = """{
    "Resources": {
        "StagingBucket": {
            "Type": "AWS::S3::Bucket"
        }
    },
    "Outputs": {
        "BucketName": {"Value": "cdk-staging-bucket"},
        "BucketDomainName": {"Value": "cdk-staging-bucket.s3.us-east-1.amazonaws.com"}
    }
}"""
