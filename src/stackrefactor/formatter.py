"""Output formatters for refactor plans."""

import json

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from stackrefactor.models import EnvironmentRefactor, RefactorResult

NOTHING_TO_REFACTOR = "Nothing to refactor."
MAPPING_HEADERS = ("Resource Type", "Old Construct Path", "New Construct Path")


def _escape_md_cell(value: str) -> str:
    """Escape characters that break markdown table cells."""
    return value.replace("|", "\\|").replace("\n", " ")


def _is_empty(result: RefactorResult) -> bool:
    return not result.failed_environments and all(r.is_empty for r in result.results)


def format_json(result: RefactorResult) -> str:
    """Format the plan as JSON."""
    environments = []
    for r in result.results:
        environments.append(
            {
                "environment": str(r.environment),
                "mappings": [m.to_cfn() for m in r.mappings],
                "typed_mappings": [
                    {
                        "type": t.type,
                        "source_path": t.source_path,
                        "destination_path": t.destination_path,
                    }
                    for t in r.typed_mappings
                ],
                "ambiguous_paths": [
                    {"sources": sources, "destinations": destinations}
                    for sources, destinations in (a.to_paths() for a in r.ambiguous_paths)
                ],
                "new_stacks": r.new_stacks,
                "stack_definitions": [d.to_api() for d in r.stack_definitions],
            }
        )

    return json.dumps(
        {
            "summary": {
                "environments": len(result.results),
                "mappings": sum(len(r.mappings) for r in result.results),
                "ambiguous_groups": sum(len(r.ambiguous_paths) for r in result.results),
                "failed_environments": result.failed_environments,
            },
            "environments": environments,
        },
        indent=2,
    )


def format_markdown(result: RefactorResult) -> str:
    """Format the plan as Markdown."""
    if _is_empty(result):
        return NOTHING_TO_REFACTOR

    lines = ["## Refactor Plan", ""]
    for r in result.results:
        lines.append(f"### {r.environment}")
        lines.append("")
        lines.extend(_markdown_environment(r))
        lines.append("")

    if result.failed_environments:
        lines.append("### Failed environments")
        lines.append("")
        lines.extend(f"- {env}" for env in result.failed_environments)
        lines.append("")

    return "\n".join(lines)


def _markdown_environment(r: EnvironmentRefactor) -> list[str]:
    lines = []
    typed = r.typed_mappings
    if typed:
        lines.append("The following resources were moved or renamed:")
        lines.append("")
        lines.append("| " + " | ".join(MAPPING_HEADERS) + " |")
        lines.append("|---------------|--------------------|--------------------|")
        for t in typed:
            lines.append(
                f"| {_escape_md_cell(t.type)} | `{_escape_md_cell(t.source_path)}` "
                f"| `{_escape_md_cell(t.destination_path)}` |"
            )
    elif not r.ambiguous_paths:
        lines.append(NOTHING_TO_REFACTOR)

    if r.ambiguous_paths:
        lines.append("")
        lines.append("#### Ambiguous Resource Name Changes")
        for sources, destinations in (a.to_paths() for a in r.ambiguous_paths):
            lines.append("")
            lines.append("```diff")
            lines.extend(f"- {s}" for s in sources)
            lines.extend(f"+ {d}" for d in destinations)
            lines.append("```")

    if r.new_stacks:
        lines.append("")
        lines.append("New stacks: " + ", ".join(f"`{_escape_md_cell(s)}`" for s in r.new_stacks))
    return lines


def format_table(result: RefactorResult) -> str:
    """Format the plan as a Rich tree view, returned as a string."""
    if _is_empty(result):
        return NOTHING_TO_REFACTOR

    console = Console(record=True, width=120)
    tree = Tree("[bold]Refactor Plan[/bold]")

    for r in result.results:
        style = "yellow" if r.ambiguous_paths else "green"
        env_branch = tree.add(Text.from_markup(f"[{style}]{r.environment}[/{style}]"))

        typed = r.typed_mappings
        if typed:
            table = Table(*MAPPING_HEADERS, title="The following resources were moved or renamed:")
            for t in typed:
                table.add_row(t.type, t.source_path, t.destination_path, style="green")
            env_branch.add(table)
        elif not r.ambiguous_paths:
            env_branch.add(NOTHING_TO_REFACTOR)

        if r.ambiguous_paths:
            ambiguous_branch = env_branch.add(
                Text.from_markup("[bold yellow]Ambiguous Resource Name Changes[/bold yellow]")
            )
            for sources, destinations in (a.to_paths() for a in r.ambiguous_paths):
                group = Text()
                for s in sources:
                    group.append(f"- {s}\n", style="red")
                for d in destinations:
                    group.append(f"+ {d}\n", style="green")
                group.rstrip()
                ambiguous_branch.add(group)

        if r.new_stacks:
            env_branch.add(Text("New stacks: " + ", ".join(r.new_stacks)))

        if r.stack_definitions:
            defs_branch = env_branch.add(Text.from_markup("[bold]Stack definitions[/bold]"))
            for d in r.stack_definitions:
                where = d.template_url if d.template_url else f"inline, {len(d.template_body or '')} bytes"
                defs_branch.add(Text(f"{d.stack_name} ({where})"))

    for env in result.failed_environments:
        tree.add(Text.from_markup(f"[red]{env}[/red]: failed"))

    console.print(tree)
    return console.export_text()
