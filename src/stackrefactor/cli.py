"""CLI entrypoint for stackrefactor."""

import logging
import sys
from pathlib import Path

import click

from stackrefactor.assembly import load_cloud_assembly
from stackrefactor.aws.client import DEFAULT_TOOLKIT_STACK_NAME
from stackrefactor.aws.sdk import SdkProvider
from stackrefactor.errors import RefactorError
from stackrefactor.exclude import InMemoryExcludeList
from stackrefactor.formatter import format_json, format_markdown, format_table
from stackrefactor.mappings import (
    dump_mapping_groups,
    mapping_groups_from_results,
    parse_mapping_groups,
)
from stackrefactor.refactorer import Refactorer

EXIT_OK = 0
EXIT_AMBIGUOUS = 1
EXIT_FAILED = 2


def _read_lines(path: str | None) -> list[str]:
    if path is None:
        return []
    return [line for line in Path(path).read_text(encoding="utf-8").splitlines() if line.strip()]


@click.command()
@click.option(
    "--app",
    "assembly_dir",
    envvar="STACKREFACTOR_ASSEMBLY",
    default="cdk.out",
    show_default=True,
    type=click.Path(file_okay=False),
    help="Cloud assembly directory to read synthesized stacks from.",
)
@click.option("--stack", multiple=True, help="Stack name pattern(s) to refactor (glob).")
@click.option(
    "--exclude-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="File listing destination locations (Stack.LogicalId or construct path) to leave alone.",
)
@click.option(
    "--override-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Mapping file used to settle ambiguous moves.",
)
@click.option(
    "--mappings-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Mapping file with the exact moves to perform, instead of computing them.",
)
@click.option("--revert", is_flag=True, help="Apply --mappings-file backwards.")
@click.option(
    "--additional-stack-name",
    multiple=True,
    help="Deployed stack to include although it has no local counterpart.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "markdown"]),
    default="table",
    help="Output format.",
)
@click.option(
    "--max-concurrent",
    type=click.IntRange(1, 20),
    default=4,
    help="Max environments planned concurrently.",
)
@click.option("--profile", envvar="AWS_PROFILE", default=None, help="AWS profile.")
@click.option("--region", envvar="AWS_REGION", default=None, help="AWS region.")
@click.option(
    "--toolkit-stack-name",
    envvar="STACKREFACTOR_TOOLKIT_STACK",
    default=DEFAULT_TOOLKIT_STACK_NAME,
    show_default=True,
    help="Bootstrap stack holding the staging bucket for large templates.",
)
@click.option(
    "--show-stack-definitions",
    is_flag=True,
    help="Also generate the resulting stack templates (may upload to S3).",
)
@click.option(
    "--record-mappings",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the computed mappings to this file, in mapping file format.",
)
@click.option("--dry-run", is_flag=True, help="Only show the proposed refactor.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(
    assembly_dir,
    stack,
    exclude_file,
    override_file,
    mappings_file,
    revert,
    additional_stack_name,
    output_format,
    max_concurrent,
    profile,
    region,
    toolkit_stack_name,
    show_stack_definitions,
    record_mappings,
    dry_run,
    verbose,
):
    """Plan the refactor of CloudFormation stacks: detect moved and renamed resources."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not dry_run:
        click.echo(
            "Error: Refactor is not available yet. Run with --dry-run to see the proposed changes.",
            err=True,
        )
        sys.exit(EXIT_FAILED)
    if revert and not mappings_file:
        click.echo("Error: --revert requires --mappings-file.", err=True)
        sys.exit(EXIT_FAILED)
    if mappings_file and (exclude_file or override_file):
        click.echo(
            "Error: --mappings-file cannot be combined with --exclude-file or --override-file.",
            err=True,
        )
        sys.exit(EXIT_FAILED)

    try:
        assembly = load_cloud_assembly(assembly_dir)
        local_stacks = assembly.select(list(stack))

        exclude = assembly.exclude_list()
        if exclude_file:
            exclude = exclude.union(InMemoryExcludeList(_read_lines(exclude_file)))

        overrides = []
        if override_file:
            overrides = parse_mapping_groups(Path(override_file).read_text(encoding="utf-8"))

        prescribed = None
        if mappings_file:
            prescribed = parse_mapping_groups(Path(mappings_file).read_text(encoding="utf-8"))

        sdk_provider = SdkProvider(profile=profile, region=region, toolkit_stack_name=toolkit_stack_name)
        refactorer = Refactorer(sdk_provider, max_concurrent=max_concurrent)
        result = refactorer.plan(
            local_stacks,
            additional_stack_names=additional_stack_name,
            exclude=exclude,
            overrides=overrides,
            prescribed=prescribed,
            stack_definitions=show_stack_definitions,
            revert=revert,
        )
    except RefactorError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)

    formatters = {
        "table": format_table,
        "json": format_json,
        "markdown": format_markdown,
    }
    click.echo(formatters[output_format](result))

    if record_mappings:
        Path(record_mappings).write_text(
            dump_mapping_groups(mapping_groups_from_results(result.results)) + "\n",
            encoding="utf-8",
        )

    if result.failed_environments:
        sys.exit(EXIT_FAILED)
    has_ambiguity = any(r.ambiguous_paths for r in result.results)
    sys.exit(EXIT_AMBIGUOUS if has_ambiguity else EXIT_OK)
