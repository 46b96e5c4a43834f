import asyncio
import json
import logging

from dataclasses import asdict
from pathlib import Path
from rich.console import Console
from typing import Optional

import typer

from uvaclient import __version__
from uvaclient.client import AnalyzerClient
from uvaclient.config import ClientConfig, load_client_config
from uvaclient.errors import SPAWN_FAILURE_MESSAGE, AnalyzerError
from uvaclient.models import Declaration
from uvaclient.projection import DocumentIndex, Projection, definition_range, project

app = typer.Typer(
    help="uvac - Uva analyzer client: navigation, highlighting and lint data",
    no_args_is_help=True,
)

console = Console()


def _read_document(file: Path) -> tuple[str, str]:
    """Read a document, returning its absolute path and text."""
    try:
        return str(file.resolve()), file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def _check_language(config: ClientConfig, language: Optional[str]) -> str:
    language_id = language or config.language_id
    if language_id != config.language_id:
        typer.echo(
            f"Error: Unsupported language '{language_id}', expected '{config.language_id}'",
            err=True,
        )
        raise typer.Exit(code=1)
    return language_id


def _start_client(config: ClientConfig) -> tuple[AnalyzerClient, list[AnalyzerError]]:
    """Start a client and collect the runtime errors it reports."""
    client = AnalyzerClient(config, root=Path.cwd())
    if not client.start():
        typer.echo(f"Error: {SPAWN_FAILURE_MESSAGE}", err=True)
        raise typer.Exit(code=1)

    errors: list[AnalyzerError] = []
    client.on_error(errors.append)
    return client, errors


def _exit_on_errors(errors: list[AnalyzerError]) -> None:
    if errors:
        for error in errors:
            typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1)


def _projection_to_dict(projection: Projection) -> dict:
    return {
        "decorations": {
            kind: [[span.start, span.end] for span in spans]
            for kind, spans in projection.decorations.items()
        },
        "diagnostics": {
            file: [asdict(diagnostic) for diagnostic in diagnostics]
            for file, diagnostics in projection.diagnostics.items()
        },
        "tokens": [asdict(token) for token in projection.tokens],
    }


LanguageOption = typer.Option(
    None, "--language", "-l", help="Language id of the document (defaults to the configured one)"
)


@app.command()
def analyze(file: Path, language: Optional[str] = LanguageOption):
    """Analyze a file and print its decorations and diagnostics as JSON.

    Args:
        file: Path of the source file to analyze
    """
    config = load_client_config()
    language_id = _check_language(config, language)
    document_path, text = _read_document(file)

    client, errors = _start_client(config)
    try:
        result = client.analyze(text, document_path, language_id)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)
    finally:
        client.close()

    _exit_on_errors(errors)
    typer.echo(json.dumps(_projection_to_dict(project(result, document_path)), indent=2))


def _symbol_at(text: str, offset: Optional[int]) -> str:
    """The identifier under ``offset``, for lookups without an explicit name."""
    if offset is None:
        typer.echo("Error: Give a symbol NAME or an --offset into the file", err=True)
        raise typer.Exit(code=1)

    word = DocumentIndex(text).word_at(offset)
    if word is None:
        typer.echo(f"Error: No symbol at offset {offset}", err=True)
        raise typer.Exit(code=1)
    return word


@app.command()
def definition(
    file: Path,
    name: Optional[str] = typer.Argument(None, help="Name of the symbol"),
    offset: Optional[int] = typer.Option(
        None, "--offset", help="Look up the symbol under this character offset instead of NAME"
    ),
    language: Optional[str] = LanguageOption,
):
    """Print the location and range where a symbol is declared.

    Args:
        file: Path of the source file the symbol is used in
        name: Name of the symbol
        offset: Character offset of a use of the symbol, when NAME is omitted

    Examples:
        uvac definition src/main.uva parse_args
        uvac definition src/main.uva --offset 120
    """
    config = load_client_config()
    language_id = _check_language(config, language)
    document_path, text = _read_document(file)
    if name is None:
        name = _symbol_at(text, offset)

    client, errors = _start_client(config)
    try:
        location = client.definition(text, document_path, language_id, name)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)
    finally:
        client.close()

    _exit_on_errors(errors)
    if location is None:
        typer.echo(f"Error: Declaration '{name}' not found", err=True)
        raise typer.Exit(code=1)

    output = asdict(location)
    output["range"] = asdict(definition_range(Declaration(name=name, location=location)))
    typer.echo(json.dumps(output, indent=2))


@app.command()
def tokens(file: Path, language: Optional[str] = LanguageOption):
    """Print the syntax tokens of a file, from a one-shot analyzer run.

    Args:
        file: Path of the source file to tokenize
    """
    config = load_client_config()
    language_id = _check_language(config, language)
    document_path, text = _read_document(file)

    # Token queries never talk to the persistent server
    client = AnalyzerClient(config, root=Path.cwd())
    errors: list[AnalyzerError] = []
    client.on_error(errors.append)
    result = client.tokens(text, document_path, language_id)

    _exit_on_errors(errors)
    projection = project(result, document_path)
    typer.echo(json.dumps([asdict(token) for token in projection.tokens], indent=2))


@app.command()
def mcp_server():
    """Start the MCP server exposing definition and diagnostics tools.

    The server speaks the Model Context Protocol over stdio and answers each
    tool call by running this CLI.
    """
    from uvaclient.mcp_server import main

    asyncio.run(main())


def _version_callback(value: bool):
    """Show version and exit."""
    if value:
        console.print(f"uvac version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Log analyzer traffic to stderr",
    )):
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
