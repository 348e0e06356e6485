"""Reading synthesized stacks from a cloud assembly directory (``cdk.out``)."""

import fnmatch
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from stackrefactor.errors import NotFoundError, ValidationError
from stackrefactor.exclude import STACK_ARTIFACT_TYPE, ManifestExcludeList
from stackrefactor.models import CloudFormationStack, Environment
from stackrefactor.template import load_template

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"


@dataclass(frozen=True)
class CloudAssembly:
    """The stacks of a synthesized app, with the manifest they were declared in."""

    directory: Path
    manifest: dict[str, Any]
    stacks: list[CloudFormationStack]

    def exclude_list(self) -> ManifestExcludeList:
        return ManifestExcludeList(self.manifest)

    def select(self, patterns: list[str] | tuple[str, ...] = ()) -> list[CloudFormationStack]:
        """Return the stacks whose name matches any of the glob ``patterns`` (all stacks if none).

        Raises ``NotFoundError`` when patterns are given but nothing matches.
        """
        if not patterns:
            return list(self.stacks)
        selected = [s for s in self.stacks if any(fnmatch.fnmatchcase(s.stack_name, p) for p in patterns)]
        if not selected:
            raise NotFoundError(f"No stacks match {', '.join(patterns)}")
        return selected


def load_cloud_assembly(directory: str | Path) -> CloudAssembly:
    """Load every CloudFormation stack artifact of the assembly in ``directory``."""
    directory = Path(directory)
    manifest_path = directory / MANIFEST_FILE
    if not manifest_path.is_file():
        raise NotFoundError(f"No cloud assembly found in {directory} ({MANIFEST_FILE} is missing)")

    try:
        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid cloud assembly manifest {manifest_path}: {e}") from e

    stacks = []
    for artifact_id, artifact in (manifest.get("artifacts") or {}).items():
        if artifact.get("type") != STACK_ARTIFACT_TYPE:
            continue
        properties = artifact.get("properties") or {}
        template_file = properties.get("templateFile")
        if not template_file:
            raise ValidationError(f"Stack artifact {artifact_id} has no templateFile")
        environment = Environment.parse(artifact.get("environment", "aws://unknown-account/unknown-region"))
        try:
            template = load_template((directory / template_file).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ValidationError(f"Cannot read template of {artifact_id}: {e}") from e
        stacks.append(
            CloudFormationStack(
                stack_name=properties.get("stackName") or artifact_id,
                environment=environment,
                template=template,
            )
        )

    logger.debug("Loaded %d stack(s) from %s", len(stacks), directory)
    return CloudAssembly(directory=directory, manifest=manifest, stacks=stacks)
