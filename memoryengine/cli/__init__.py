"""Memory engine CLI — inspect and maintain a scope's memory from the shell.

Entry point registered in pyproject.toml:
    memoryengine = "memoryengine.cli:app"

Commands:
    memoryengine search        — semantic search within a scope
    memoryengine update        — conflict-aware update of one fact
    memoryengine conflicts     — list conflict groups in a scope
    memoryengine summary       — entry counts by type
    memoryengine import        — bulk-load segments or updates from a JSON file
    memoryengine delete-scope  — remove every entry of a scope

Usage:
    memoryengine --help
    memoryengine search --scope-id acme "what are your hours"
    MEMORY_SCOPE_ID=acme memoryengine summary
"""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from memoryengine.cli.commands import (
    conflicts,
    delete_scope,
    import_file,
    search,
    summary,
    update,
)
from memoryengine.config import get_settings

app = typer.Typer(
    name="memoryengine",
    help="Memory engine CLI — manage per-scope writable memory",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else get_settings().log_level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


app.command()(search)
app.command()(update)
app.command()(conflicts)
app.command()(summary)
app.command("import")(import_file)
app.command("delete-scope")(delete_scope)
