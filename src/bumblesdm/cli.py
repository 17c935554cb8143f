"""Command-line interface for the bumblesdm pipeline."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="bumblesdm",
    help="Maxent species distribution model for a single bumblebee species.",
    no_args_is_help=True,
)

console = Console()

ConfigOption = Annotated[
    Path,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration YAML file.",
        exists=True,
        dir_okay=False,
    ),
]
LogLevelOption = Annotated[
    str,
    typer.Option("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)."),
]


@app.command()
def run(
    config: ConfigOption,
    log_level: LogLevelOption = "INFO",
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Emit log events as JSON lines."),
    ] = False,
    write: Annotated[
        bool,
        typer.Option("--write/--no-write", help="Write plots, prediction raster and model."),
    ] = True,
) -> None:
    """Run the full pipeline: study area, layers, occurrences, assembly, model."""
    from bumblesdm.config.loader import load_config
    from bumblesdm.errors import SDMError
    from bumblesdm.evaluation.report import print_summary
    from bumblesdm.utils.logging import configure_logging
    from bumblesdm.workflow.pipeline import SDMPipeline, write_outputs

    configure_logging(log_level, json_output=json_logs)

    console.print(f"[blue]Loading configuration from {config}[/blue]")
    try:
        pipeline_config = load_config(config)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(code=1) from e

    console.print(
        f"[blue]Fitting Maxent model for {pipeline_config.species} "
        f"({pipeline_config.project})[/blue]"
    )

    try:
        result = SDMPipeline(pipeline_config).run()
    except SDMError as e:
        console.print(f"[red]Stage '{e.stage}' failed: {e.message}[/red]")
        if e.context:
            for key, value in e.context.items():
                console.print(f"[dim]  {key}: {value}[/dim]")
        raise typer.Exit(code=1) from e

    console.print()
    print_summary(result, console)

    if write:
        paths = write_outputs(result)
        console.print("\n[green]Outputs:[/green]")
        for name, path in paths.items():
            console.print(f"  {name}: {path}")


@app.command()
def fetch(
    config: ConfigOption,
    log_level: LogLevelOption = "INFO",
) -> None:
    """Download boundaries and covariate layers into the cache."""
    from bumblesdm.config.loader import load_config
    from bumblesdm.errors import SDMError
    from bumblesdm.utils.logging import configure_logging
    from bumblesdm.workflow.pipeline import SDMPipeline

    configure_logging(log_level)
    pipeline_config = load_config(config)
    pipeline = SDMPipeline(pipeline_config)

    try:
        study_area = pipeline.resolve_study_area()
        stack = pipeline.build_stack(study_area)
    except SDMError as e:
        console.print(f"[red]Fetch failed: {e}[/red]")
        raise typer.Exit(code=1) from e

    table = Table(title="Cached layers")
    table.add_column("Layer", style="cyan")
    table.add_column("Valid cells", style="green", justify="right")
    for name in stack.names:
        table.add_row(name, str(int(stack.valid_mask(name).sum())))
    console.print(table)
    console.print(f"[dim]Grid: {stack.shape[0]} x {stack.shape[1]}, CRS {stack.crs}[/dim]")
    console.print(f"[green]Cache: {pipeline_config.cache_dir}[/green]")


@app.command("show-config")
def show_config(config: ConfigOption) -> None:
    """Print the resolved run configuration."""
    from bumblesdm.config.loader import load_config

    try:
        pipeline_config = load_config(config)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(code=1) from e

    table = Table(title=f"Configuration: {pipeline_config.project}")
    table.add_column("Option", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("species", pipeline_config.species)
    for key, value in pipeline_config.summary().items():
        table.add_row(key, str(value))
    table.add_row("output", str(pipeline_config.project_dir))
    table.add_row("cache", str(pipeline_config.cache_dir))
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from bumblesdm import __version__

    console.print(f"bumblesdm version {__version__}")


if __name__ == "__main__":
    app()
