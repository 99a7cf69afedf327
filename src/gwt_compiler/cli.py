"""Click CLI entry point for gwt-compiler."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

import click

from gwt_compiler import __version__
from gwt_compiler.config import (
    GWT_DIR,
    REGISTRY_SKELETON,
    ensure_initialized,
    is_initialized,
    load_config,
    save_config,
)
from gwt_compiler.errors import PipelineError, RegistryError, SpecSyntaxError
from gwt_compiler.models import ProjectConfig
from gwt_compiler.parser import HEADER_BAR_LINE
from gwt_compiler.pipeline import (
    EXIT_PIPELINE_ERROR,
    EXIT_RED,
    PipelineReport,
    compile_project,
    discover_specs,
    parse_project,
    run_project,
)


@click.group()
@click.version_option(version=__version__, prog_name="gwtc")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """GWT compiler: from Given/When/Then specs to runnable pytest suites."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _require_project() -> ProjectConfig:
    """Load the project config or exit with an error."""
    try:
        return ensure_initialized(Path.cwd())
    except (RuntimeError, ValueError) as e:
        click.echo(f"Error: {e}")
        raise click.exceptions.Exit(1) from e


def _echo_errors(errors: list[PipelineError], indent: str = "  ") -> None:
    for error in errors:
        click.echo(f"{indent}[{error.stage}] {error}")


@cli.command()
def init() -> None:
    """Initialize a project for spec compilation."""
    project_root = Path.cwd()
    already = is_initialized(project_root)

    if already:
        click.echo("Warning: Project is already initialized. Keeping existing configuration.")
        config = load_config(project_root)
    else:
        config = ProjectConfig()

    specs_dir = project_root / config.specs_dir
    specs_dir.mkdir(parents=True, exist_ok=True)
    config_path = save_config(config, project_root)

    registry_path = project_root / config.registry
    if not registry_path.exists():
        registry_path.parent.mkdir(parents=True, exist_ok=True)
        registry_path.write_text(REGISTRY_SKELETON)

    if already:
        click.echo("Existing spec files and registry preserved.")
    else:
        click.echo("Initialized gwt-compiler project.")
        click.echo(f"  Created: {project_root / GWT_DIR}/")
        click.echo(f"  Created: {specs_dir}/")
        click.echo(f"  Registry: {registry_path}")
        click.echo(f"  Config:  {config_path}")


@cli.command()
@click.argument("description")
def new(description: str) -> None:
    """Create a new spec file from a description."""
    config = _require_project()
    specs_dir = Path.cwd() / config.specs_dir
    specs_dir.mkdir(parents=True, exist_ok=True)

    slug = _slugify(description) or "spec"
    gwt_file = specs_dir / f"{slug}.gwt"
    if gwt_file.exists():
        click.echo(f"Warning: {gwt_file} already exists. Skipping.")
        return

    title = description.rstrip(".")
    content = f"""{HEADER_BAR_LINE}
; {title}.
{HEADER_BAR_LINE}
GIVEN <precondition>.
WHEN <action>.
THEN <expected result>.
"""
    gwt_file.write_text(content)
    click.echo(f"Created: {gwt_file}")


@cli.command("parse")
@click.option("--inspect", is_flag=True, default=False, help="Display IR in readable format")
@click.pass_context
def parse_cmd(ctx: click.Context, inspect: bool) -> None:
    """Parse GWT spec files and write their IR."""
    config = _require_project()
    report = parse_project(Path.cwd(), config)

    if not report.files:
        click.echo("No spec files found.")
        return

    scenarios = sum(f.parsed for f in report.files)
    click.echo(f"Parsed {scenarios} scenario(s) from {len(report.files)} file(s).")
    for file_report in report.files:
        if file_report.errors:
            click.echo(f"Error: {file_report.errors[0]}")
            continue
        if not inspect or file_report.document is None:
            continue
        document = file_report.document
        click.echo(f"\n{document.spec_file}")
        if document.description:
            click.echo(f"  {document.description}")
        for scenario in document.scenarios:
            click.echo(f"\n  Scenario: {scenario.title or '(untitled)'}")
            click.echo(f"  Id: {scenario.scenario_id}  Line: {scenario.line_number}")
            for step in scenario.steps:
                click.echo(f"    {step.kind.value} {step.statement}.")
                for param in step.parameters:
                    click.echo(f"      {param.name}: {param.value!r} ({param.type_name})")

    if report.pipeline_errors:
        ctx.exit(EXIT_PIPELINE_ERROR)


@cli.command()
@click.pass_context
def resolve(ctx: click.Context) -> None:
    """Resolve spec statements against the operation registry."""
    config = _require_project()
    report = compile_project(Path.cwd(), config, emit=False)
    _echo_compile_report(report)

    if report.pipeline_errors:
        ctx.exit(EXIT_PIPELINE_ERROR)
    click.echo("All statements resolved.")


@cli.command()
@click.pass_context
def generate(ctx: click.Context) -> None:
    """Generate pytest modules from resolved specs."""
    config = _require_project()
    report = compile_project(Path.cwd(), config)
    _echo_compile_report(report)

    outputs = sorted(f.output for f in report.files if f.output)
    output_dir = Path.cwd() / config.output_dir
    click.echo(f"Generated {len(outputs)} test module(s) in {output_dir}/")
    for name in outputs:
        click.echo(f"  {name}")
    for name in report.pruned:
        click.echo(f"  removed stale {name}")

    if report.pipeline_errors:
        ctx.exit(EXIT_PIPELINE_ERROR)


def _echo_compile_report(report: PipelineReport) -> None:
    for error in report.errors:
        click.echo(f"Error: {error}")
    if not report.files and not report.errors:
        click.echo("No spec files found.")
    for file_report in report.files:
        click.echo(
            f"{file_report.spec_file}: {file_report.parsed} parsed, "
            f"{file_report.resolved} resolved, {file_report.unresolved} unresolved"
        )
        _echo_errors(file_report.errors)


@cli.command()
@click.option(
    "--select", multiple=True,
    help="Run only this generated test node id (repeatable, run in the order given)",
)
@click.pass_context
def test(ctx: click.Context, select: tuple[str, ...]) -> None:
    """Run the generated tests without regenerating them."""
    from gwt_compiler.runner import run_generated_tests

    config = _require_project()
    project_root = Path.cwd()
    result = run_generated_tests(
        project_root / config.output_dir,
        project_root,
        timeout=config.timeout,
        select=list(select) or None,
    )
    if result.output:
        click.echo(result.output)
    click.echo(result.summary())

    failures = result.failures()
    if failures:
        click.echo("\nFailing tests:")
        for failure in failures:
            click.echo(f"  {failure.test_name}")
            if failure.statement:
                click.echo(f"    {failure.source_file}: {failure.statement}")

    if not result.success:
        ctx.exit(EXIT_RED)


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the JSON summary")
@click.option(
    "--select", multiple=True,
    help="Run only this generated test node id (repeatable, run in the order given)",
)
@click.pass_context
def run(ctx: click.Context, as_json: bool, select: tuple[str, ...]) -> None:
    """Parse, resolve, generate and run: the whole pipeline."""
    config = _require_project()
    report = run_project(Path.cwd(), config, select=list(select) or None)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, sort_keys=True))
    else:
        click.echo(report.summary())
    ctx.exit(report.exit_code)


@cli.command()
def status() -> None:
    """Show the current state of the project."""
    from gwt_compiler.parser import parse_spec_file
    from gwt_compiler.registry import load_registry

    project_root = Path.cwd()
    if not is_initialized(project_root):
        click.echo("Project is not initialized. Run `gwtc init`.")
        return
    config = _require_project()

    spec_files = discover_specs(project_root / config.specs_dir)
    scenario_count = 0
    broken = 0
    for path in spec_files:
        try:
            scenario_count += len(parse_spec_file(path).scenarios)
        except SpecSyntaxError:
            broken += 1

    click.echo(f"Spec files: {len(spec_files)}")
    click.echo(f"Scenarios: {scenario_count}")
    if broken:
        click.echo(f"Spec files with syntax errors: {broken}")

    try:
        registry = load_registry(project_root / config.registry)
    except RegistryError as e:
        click.echo(f"Registry: invalid ({e})")
    else:
        click.echo(f"Registry: {len(registry.templates)} template(s) for module {registry.module}")

    ir_dir = project_root / config.ir_dir
    ir_count = len(list(ir_dir.glob("*.json"))) if ir_dir.is_dir() else 0
    click.echo(f"IR documents: {ir_count}")

    gen_dir = project_root / config.output_dir
    modules = sorted(gen_dir.glob("test_*.py")) if gen_dir.is_dir() else []
    click.echo(f"Generated test modules: {len(modules) or 'none'}")


def _slugify(text: str) -> str:
    """Convert a description to a filename slug."""
    slug = text.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"[\s]+", "-", slug)
    slug = slug.strip("-")
    return slug
