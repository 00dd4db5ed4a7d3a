"""
Command-line interface of composeflow.

Usage:
    composeflow inspect my_app.pipelines:rag_chain
    composeflow inspect my_app.pipelines:rag_chain --format mermaid
    composeflow inspect my_app.pipelines:build_graph --format json --config composeflow.yaml
    composeflow version

``inspect`` imports ``module:attribute``. The attribute may be a compiled
``Runnable``, a ``Chain``/``Graph`` builder (compiled on the fly) or a
function without arguments returning one of those.
"""

import importlib
import json
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import typer

from composeflow import __version__
from composeflow.config import ComposeConfig, set_config
from composeflow.exceptions import CompileError
from composeflow.visualization import describe, to_dot, to_mermaid

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="composeflow",
    help="composeflow - compose LLM pipelines from typed nodes",
    no_args_is_help=True,
    add_completion=False,
)


class OutputFormat(str, Enum):
    """Output format for inspect command."""

    text = "text"
    json = "json"
    mermaid = "mermaid"
    dot = "dot"


def setup_logging(verbose: int, quiet: bool):
    """Configure logging based on verbosity flags."""
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def load_target(target: str) -> Any:
    """
    Import ``module:attribute`` and return a compiled ``Runnable``.

    Raises:
        typer.Exit: If the target cannot be imported or compiled.
    """
    module_path, _, attribute = target.partition(":")
    if not module_path or not attribute:
        typer.echo(f"Error: Target must look like 'package.module:attribute', got '{target}'", err=True)
        raise typer.Exit(1)

    if "" not in sys.path:
        sys.path.insert(0, "")
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        typer.echo(f"Error: Cannot import module '{module_path}': {e}", err=True)
        raise typer.Exit(1)

    obj = module
    for part in attribute.split("."):
        if not hasattr(obj, part):
            typer.echo(f"Error: '{module_path}' has no attribute '{attribute}'", err=True)
            raise typer.Exit(1)
        obj = getattr(obj, part)

    if callable(obj) and not hasattr(obj, "compile") and not hasattr(obj, "compiled"):
        logger.debug(f"Calling factory {attribute}()")
        obj = obj()

    if hasattr(obj, "compiled"):
        return obj
    if hasattr(obj, "compile"):
        try:
            return obj.compile()
        except CompileError as e:
            typer.echo(f"Error: Failed to compile '{target}': {e}", err=True)
            raise typer.Exit(1)

    typer.echo(
        f"Error: '{target}' is a {type(obj).__name__}, expected a Chain, a Graph or a compiled Runnable",
        err=True,
    )
    raise typer.Exit(1)


def _print_text(info: dict, indent: str = "") -> None:
    typer.echo(f"{indent}Graph: {info['name']} ({info['input_type']} -> {info['output_type']})")
    typer.echo(f"{indent}Max run steps: {info['max_run_steps']}")
    typer.echo()
    typer.echo(f"{indent}Nodes ({len(info['nodes'])}):")
    for node in info["nodes"]:
        parts = [f"{indent}  {node['key']}", f"[{node['kind']}]"]
        parts.append(f"{node['input_type']} -> {node['output_type']}")
        if node.get("methods"):
            parts.append(f"(invoke: {node['methods']['invoke']}, stream: {node['methods']['stream']})")
        if node.get("targets"):
            parts.append(f"targets: {', '.join(node['targets'])}")
        typer.echo(" ".join(parts))
        if node.get("subgraph"):
            _print_text(node["subgraph"], indent + "    ")
    typer.echo()
    typer.echo(f"{indent}Edges ({len(info['edges'])}):")
    for edge in info["edges"]:
        line = f"{indent}  {edge['from']} -> {edge['to']}"
        if edge.get("branch_value") is not None:
            line += f" (when {edge['branch_value']})"
        if edge.get("output_key"):
            line += f" (as {edge['output_key']})"
        if edge.get("runtime_check"):
            line += f" (checked: {edge['runtime_check']})"
        typer.echo(line)


@app.command()
def inspect(
    target: str = typer.Argument(..., help="Builder or runnable as package.module:attribute"),
    format: OutputFormat = typer.Option(OutputFormat.text, "--format", "-f", help="Output format (text, json, mermaid, dot)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="composeflow YAML configuration"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase verbosity"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show errors"),
):
    """Compile a chain or graph and print its structure."""
    setup_logging(verbose, quiet)

    if config is not None:
        if not config.exists():
            typer.echo(f"Error: Config file not found: {config}", err=True)
            raise typer.Exit(1)
        try:
            set_config(ComposeConfig.resolve(str(config)))
        except ValueError as e:
            typer.echo(f"Error: Invalid configuration: {e}", err=True)
            raise typer.Exit(1)

    runnable = load_target(target)

    if format == OutputFormat.json:
        typer.echo(json.dumps(describe(runnable), indent=2))
    elif format == OutputFormat.mermaid:
        typer.echo(to_mermaid(runnable))
    elif format == OutputFormat.dot:
        typer.echo(to_dot(runnable))
    else:
        _print_text(describe(runnable))


@app.command()
def version():
    """Show the composeflow version."""
    typer.echo(f"composeflow {__version__}")


def main():
    """Entry point for the composeflow CLI."""
    app()


if __name__ == "__main__":
    main()
