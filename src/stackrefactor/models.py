"""Core data models for CloudFormation stack refactoring."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from stackrefactor.errors import ValidationError

UNRESOLVED_ACCOUNTS = frozenset({"unknown-account", "${AWS::AccountId}"})
UNRESOLVED_REGIONS = frozenset({"unknown-region", "${AWS::Region}"})

CDK_METADATA_TYPE = "AWS::CDK::Metadata"
CDK_PATH_METADATA_KEY = "aws:cdk:path"


class StackStatus(StrEnum):
    """Stack statuses whose templates are considered deployed."""

    CREATE_COMPLETE = "CREATE_COMPLETE"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    UPDATE_ROLLBACK_COMPLETE = "UPDATE_ROLLBACK_COMPLETE"
    IMPORT_COMPLETE = "IMPORT_COMPLETE"
    ROLLBACK_COMPLETE = "ROLLBACK_COMPLETE"


class GraphDirection(StrEnum):
    """Which edges a resource digest follows."""

    DIRECT = "direct"
    OPPOSITE = "opposite"


@dataclass(frozen=True)
class Environment:
    """A target AWS account and region. The name is cosmetic and ignored by equality."""

    account: str
    region: str
    name: str = field(default="", compare=False)

    @classmethod
    def parse(cls, value: str) -> "Environment":
        """Parse an ``aws://account/region`` environment string."""
        prefix = "aws://"
        if not value.startswith(prefix):
            raise ValidationError(f"Invalid environment {value!r} (expected 'aws://ACCOUNT/REGION')")
        account, _, region = value[len(prefix) :].partition("/")
        if not account or not region:
            raise ValidationError(f"Invalid environment {value!r} (expected 'aws://ACCOUNT/REGION')")
        return cls(account=account, region=region, name=value)

    @property
    def is_unresolved(self) -> bool:
        return self.account in UNRESOLVED_ACCOUNTS or self.region in UNRESOLVED_REGIONS

    def __str__(self) -> str:
        return f"aws://{self.account}/{self.region}"


@dataclass(frozen=True, eq=False)
class CloudFormationStack:
    """A named template bound to one environment, either deployed or synthesized."""

    stack_name: str
    environment: Environment
    template: dict[str, Any]

    @property
    def resources(self) -> dict[str, Any]:
        resources = self.template.get("Resources")
        return resources if isinstance(resources, dict) else {}


@dataclass(frozen=True, eq=False)
class ResourceLocation:
    """A logical resource inside a specific stack."""

    stack: CloudFormationStack
    logical_id: str

    @property
    def stack_name(self) -> str:
        return self.stack.stack_name

    @property
    def environment(self) -> Environment:
        return self.stack.environment

    @property
    def key(self) -> tuple[str, str, str, str]:
        env = self.stack.environment
        return (env.account, env.region, self.stack.stack_name, self.logical_id)

    @property
    def resource(self) -> dict[str, Any]:
        resource = self.stack.resources.get(self.logical_id)
        return resource if isinstance(resource, dict) else {}

    @property
    def resource_type(self) -> str:
        return self.resource.get("Type", "")

    def to_location_string(self) -> str:
        return f"{self.stack_name}.{self.logical_id}"

    def to_path(self) -> str:
        """Return the construct path of the resource, falling back to ``Stack.LogicalId``."""
        metadata = self.resource.get("Metadata")
        if isinstance(metadata, dict) and isinstance(metadata.get(CDK_PATH_METADATA_KEY), str):
            return metadata[CDK_PATH_METADATA_KEY]
        return self.to_location_string()

    def to_cfn(self) -> dict[str, str]:
        return {"StackName": self.stack_name, "LogicalResourceId": self.logical_id}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceLocation):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"ResourceLocation({self.to_location_string()!r}, {str(self.environment)!r})"


@dataclass(frozen=True)
class ResourceMovement:
    """A candidate pairing of a deployed and a local location sharing a digest."""

    digest: str
    source: ResourceLocation | None
    destination: ResourceLocation | None

    @property
    def is_candidate(self) -> bool:
        """Both ends are present and the resource actually changes location."""
        return (
            self.source is not None
            and self.destination is not None
            and self.source != self.destination
        )


@dataclass(frozen=True)
class TypedMapping:
    """A mapping annotated with its resource type, for display."""

    type: str
    source_path: str
    destination_path: str


@dataclass(frozen=True)
class ResourceMapping:
    """An unambiguous move of one resource from a source to a destination location."""

    source: ResourceLocation
    destination: ResourceLocation

    def to_cfn(self) -> dict[str, dict[str, str]]:
        return {"Source": self.source.to_cfn(), "Destination": self.destination.to_cfn()}

    def to_typed_mapping(self) -> TypedMapping:
        return TypedMapping(
            type=self.source.resource_type or self.destination.resource_type,
            source_path=self.source.to_path(),
            destination_path=self.destination.to_path(),
        )


@dataclass(frozen=True)
class AmbiguousPath:
    """Sources and destinations sharing one digest that cannot be paired automatically."""

    sources: tuple[ResourceLocation, ...]
    destinations: tuple[ResourceLocation, ...]

    def to_paths(self) -> tuple[list[str], list[str]]:
        return [s.to_path() for s in self.sources], [d.to_path() for d in self.destinations]


@dataclass(frozen=True)
class EnvironmentGroup:
    """Local stacks of one environment together with the matching deployed stacks."""

    environment: Environment
    deployed_stacks: list[CloudFormationStack]
    local_stacks: list[CloudFormationStack]


@dataclass(frozen=True)
class StackDefinition:
    """A stack template to be sent with a refactor request."""

    stack_name: str
    template_body: str | None = None
    template_url: str | None = None

    def to_api(self) -> dict[str, str]:
        result = {"StackName": self.stack_name}
        if self.template_url is not None:
            result["TemplateURL"] = self.template_url
        else:
            result["TemplateBody"] = self.template_body or "{}"
        return result


@dataclass(frozen=True)
class ToolkitInfo:
    """Result of looking up the bootstrap (toolkit) stack of an environment."""

    found: bool
    bucket_name: str | None = None
    bucket_domain_name: str | None = None

    def object_url(self, key: str) -> str:
        return f"https://{self.bucket_domain_name}/{key}"


@dataclass(frozen=True)
class ResourceModel:
    """The parts of a CloudFormation resource schema used for resource identity."""

    type_name: str
    primary_identifier: tuple[str, ...] = ()


@dataclass(frozen=True)
class EnvironmentRefactor:
    """Refactor plan for a single environment."""

    environment: Environment
    mappings: list[ResourceMapping]
    ambiguous_paths: list[AmbiguousPath]
    stack_definitions: list[StackDefinition] = field(default_factory=list)
    new_stacks: list[str] = field(default_factory=list)

    @property
    def typed_mappings(self) -> list[TypedMapping]:
        return [
            m.to_typed_mapping()
            for m in self.mappings
            if m.source.resource_type != CDK_METADATA_TYPE
        ]

    @property
    def is_empty(self) -> bool:
        return not self.mappings and not self.ambiguous_paths


@dataclass(frozen=True)
class RefactorResult:
    """Plans for every environment, plus environments that could not be processed."""

    results: list[EnvironmentRefactor]
    failed_environments: list[str]
