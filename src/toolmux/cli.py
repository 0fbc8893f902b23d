"""
CLI entry point for toolmux.

This module provides the Typer-based command-line interface for toolmux.
Each command loads the configuration, starts the configured providers,
does its work and shuts every provider down again.

Commands:
    providers   List the configured providers and their tools
    tools       List every tool the agent can call
    call        Invoke one tool with JSON arguments
    check       Bootstrap each provider and report whether it is reachable

The CLI is thin: everything it does goes through ProviderStore, so the
same operations are available programmatically.
"""

import asyncio
import json
import logging
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from toolmux import __version__
from toolmux.errors import ToolmuxError
from toolmux.providers.store import ProviderStore
from toolmux.schema import ProviderSummary, ToolmuxConfig, ToolSummary, load_config

app = typer.Typer(
    name="toolmux",
    help="Aggregate tools from MCP servers, HTTP bridges and dynamic code.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

ConfigOption = Annotated[
    Path,
    typer.Option(
        "--config",
        "-c",
        envvar="TOOLMUX_CONFIG",
        help="Path to the toolmux YAML configuration.",
    ),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output results in JSON format.")]
VerboseOption = Annotated[bool, typer.Option("--verbose", help="Show debug logging from providers.")]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]toolmux[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    toolmux - One tool namespace over many providers.

    Start the providers listed in the configuration and list or call the
    tools they expose.
    """
    pass


# =============================================================================
# Helpers
# =============================================================================


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load(config_path: Path, json_output: bool, verbose: bool) -> ToolmuxConfig:
    """Load the configuration or exit with code 1."""
    _configure_logging(verbose)
    try:
        config = load_config(config_path)
    except ToolmuxError as e:
        if json_output:
            _output_json_error(e)
        else:
            console.print(f"[red]Error loading config: {e.message}[/red]")
            if e.suggestion:
                console.print(f"[dim]{e.suggestion}[/dim]")
        raise typer.Exit(code=1)

    if verbose and not json_output:
        console.print(f"[dim]Loaded config: {config_path}[/dim]")
        console.print(f"[dim]  Providers: {len(config.providers)}[/dim]")
    return config


def _output_json_error(error: ToolmuxError, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    output: dict[str, Any] = {"error": True, **error.to_dict()}
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2, default=str))


def _print_failures(failures: dict[str, str]) -> None:
    for name, message in failures.items():
        console.print(f"[yellow]Provider {name} unavailable: {message}[/yellow]")


async def _collect(config: ToolmuxConfig) -> tuple[list[ProviderSummary], list[ToolSummary], dict[str, str]]:
    async with ProviderStore(settings=config.dynamic_tools) as store:
        failures = await store.start(config)
        return store.list_providers(), store.list_tools(), failures


# =============================================================================
# Commands
# =============================================================================


@app.command()
def providers(
    config_path: ConfigOption = Path("toolmux.yaml"),
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    List the configured providers.

    Starts every provider in the configuration, shows what each one exposes,
    then shuts them down.

    Example:
        $ toolmux providers --config toolmux.yaml
    """
    config = _load(config_path, json_output, verbose)
    summaries, _, failures = asyncio.run(_collect(config))

    if json_output:
        output = {
            "providers": [p.model_dump(mode="json") for p in summaries],
            "unavailable": failures,
        }
        print(json.dumps(output, indent=2, default=str))
        return

    if not summaries and not failures:
        console.print("[dim]No providers configured.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Provider", style="cyan")
    table.add_column("Kind")
    table.add_column("Tools", justify="right")
    table.add_column("Tool names")

    for summary in summaries:
        table.add_row(
            summary.name,
            summary.provider_kind.value,
            str(len(summary.tool_names)),
            ", ".join(summary.tool_names),
        )
    for name in failures:
        table.add_row(name, "[red]unavailable[/red]", "-", "")

    console.print(table)
    _print_failures(failures)


@app.command()
def tools(
    config_path: ConfigOption = Path("toolmux.yaml"),
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    List every tool the agent can call.

    Example:
        $ toolmux tools --json
    """
    config = _load(config_path, json_output, verbose)
    _, summaries, failures = asyncio.run(_collect(config))

    if json_output:
        print(json.dumps([t.model_dump(mode="json") for t in summaries], indent=2, default=str))
        return

    if not summaries:
        console.print("[dim]No tools available.[/dim]")
        _print_failures(failures)
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Tool", style="cyan")
    table.add_column("Provider")
    table.add_column("Parameters")
    table.add_column("Description")

    for summary in summaries:
        properties = summary.parameter_schema.get("properties") or {}
        required = set(summary.parameter_schema.get("required") or [])
        params = ", ".join(f"{p}*" if p in required else p for p in properties)
        table.add_row(
            summary.name,
            summary.provider or summary.provider_kind.value,
            params,
            summary.description,
        )

    console.print(table)
    _print_failures(failures)


@app.command()
def call(
    tool_name: Annotated[str, typer.Argument(help="Name of the tool to invoke.")],
    args_json: Annotated[
        str,
        typer.Option(
            "--args",
            "-a",
            help="Tool arguments as a JSON object.",
        ),
    ] = "{}",
    config_path: ConfigOption = Path("toolmux.yaml"),
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Invoke one tool.

    Example:
        $ toolmux call kubectl_get --args '{"resourceType": "pods", "namespace": "default"}'
    """
    try:
        args = json.loads(args_json)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid --args JSON: {e}[/red]")
        raise typer.Exit(code=1)
    if not isinstance(args, dict):
        console.print("[red]--args must be a JSON object[/red]")
        raise typer.Exit(code=1)

    config = _load(config_path, json_output, verbose)

    async def _call() -> Any:
        async with ProviderStore(settings=config.dynamic_tools) as store:
            failures = await store.start(config)
            if failures and not json_output:
                _print_failures(failures)
            return await store.invoke(tool_name, args)

    try:
        result = asyncio.run(_call())
    except ToolmuxError as e:
        if json_output:
            _output_json_error(e, include_traceback=verbose)
        else:
            console.print(f"[red]{e.message}[/red]")
            if e.suggestion:
                console.print(f"[dim]{e.suggestion}[/dim]")
            if verbose:
                console.print(f"[dim]{traceback.format_exc()}[/dim]")
        raise typer.Exit(code=1)

    if json_output:
        print(json.dumps({"tool": tool_name, "result": result}, indent=2, default=str))
    elif isinstance(result, str):
        console.print(result, markup=False, highlight=False)
    else:
        console.print_json(json.dumps(result, default=str))


@app.command()
def check(
    config_path: ConfigOption = Path("toolmux.yaml"),
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Check that every configured provider can be reached.

    Each provider is bootstrapped (process handshake or health check) and
    reported. Exits with code 1 if any provider is unavailable.

    Example:
        $ toolmux check
    """
    config = _load(config_path, json_output, verbose)
    summaries, _, failures = asyncio.run(_collect(config))

    checks = [
        {
            "name": summary.name,
            "ok": True,
            "kind": summary.provider_kind.value,
            "message": f"{len(summary.tool_names)} tool(s)",
        }
        for summary in summaries
    ]
    checks.extend(
        {"name": name, "ok": False, "kind": None, "message": message}
        for name, message in failures.items()
    )
    all_ok = not failures

    if json_output:
        print(json.dumps({"ok": all_ok, "version": __version__, "checks": checks}, indent=2))
    else:
        console.print(f"[bold]toolmux check[/bold] v{__version__}")
        console.print()

        for item in checks:
            if item["ok"]:
                console.print(f"[green]✓[/green] {item['name']}: [dim]{item['kind']}[/dim] - {item['message']}")
            else:
                console.print(f"[red]✗[/red] {item['name']}")
                console.print(f"    [red]{item['message']}[/red]")

        console.print()
        if not checks:
            console.print("[dim]No providers configured.[/dim]")
        elif all_ok:
            console.print("[green]All providers reachable![/green]")
        else:
            console.print("[yellow]Some providers are unavailable. See above for details.[/yellow]")

    raise typer.Exit(code=0 if all_ok else 1)


if __name__ == "__main__":
    app()
