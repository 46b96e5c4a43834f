"""MCP server that exposes the Uva analyzer to MCP hosts.

This server wraps the `uvac` CLI tool, so every tool call runs in its own
process and gets its own analyzer.
"""

import json
import subprocess
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent


# Initialize MCP server
app = Server("uvac")


@app.list_tools()
async def list_tools() -> list[Tool]:
    """Declare available tools."""
    return [
        Tool(
            name="uva_definition",
            description=(
                "Find where a symbol is declared in Uva source code. "
                "Returns the file, line, column and offset of the declaration."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "file": {
                        "type": "string",
                        "description": "Path of the .uva file the symbol is used in",
                    },
                    "name": {
                        "type": "string",
                        "description": "Name of the symbol (e.g., 'parse_args')",
                    },
                },
                "required": ["file", "name"],
            },
        ),
        Tool(
            name="uva_diagnostics",
            description=(
                "Run the Uva analyzer on a file and list its lint warnings and "
                "errors, grouped by file, with line and column."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "file": {
                        "type": "string",
                        "description": "Path of the .uva file to analyze",
                    }
                },
                "required": ["file"],
            },
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls by routing to the matching CLI command."""
    if name == "uva_definition":
        return await _handle_definition(arguments["file"], arguments["name"])
    elif name == "uva_diagnostics":
        return await _handle_diagnostics(arguments["file"])

    raise ValueError(f"Unknown tool: {name}")


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


def _run_cli(args: list[str]) -> Any:
    result = subprocess.run(
        ["uvac", *args],
        capture_output=True,
        text=True,
        check=True,
    )
    return json.loads(result.stdout)


async def _handle_definition(file: str, name: str) -> list[TextContent]:
    """Handle uva_definition tool calls.

    Args:
        file: Path of the file the symbol is used in
        name: Symbol name

    Returns:
        List containing a single TextContent describing the location
    """
    try:
        location = _run_cli(["definition", file, name])
    except subprocess.CalledProcessError as e:
        error_msg = e.stderr.strip() if e.stderr else str(e)
        return _text(f"Error running uvac definition: {error_msg}")
    except json.JSONDecodeError as e:
        return _text(f"Error parsing uvac output: {e}")
    except Exception as e:
        return _text(f"Unexpected error: {e}")

    return _text(
        f"'{name}' is declared in {location['file']} "
        f"(line {location['line']}, column {location['column']}, offset {location['offset']})"
    )


async def _handle_diagnostics(file: str) -> list[TextContent]:
    """Handle uva_diagnostics tool calls.

    Args:
        file: Path of the file to analyze

    Returns:
        List containing a single TextContent with one line per diagnostic
    """
    try:
        output = _run_cli(["analyze", file])
    except subprocess.CalledProcessError as e:
        error_msg = e.stderr.strip() if e.stderr else str(e)
        return _text(f"Error running uvac analyze: {error_msg}")
    except json.JSONDecodeError as e:
        return _text(f"Error parsing uvac output: {e}")
    except Exception as e:
        return _text(f"Unexpected error: {e}")

    lines = []
    for path, diagnostics in output.get("diagnostics", {}).items():
        for diagnostic in diagnostics:
            start = diagnostic["range"]["start"]
            lines.append(
                f"{path}:{start['line']}:{start['column']}: "
                f"{diagnostic['severity']}: {diagnostic['message']}"
            )

    if not lines:
        return _text(f"No diagnostics for {file}")
    return _text("\n".join(lines))


async def main():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
