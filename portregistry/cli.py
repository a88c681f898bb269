"""Registry inspection CLI.

Typer commands for creating a registry file and looking at what it records:
- Initializing a registry
- Listing entries
- Listing the files an entry owns / finding the owner of a file
- Comparing version strings
"""

import logging
from pathlib import Path
from typing import Optional

import typer

from portregistry.errors import RegistryError
from portregistry.settings import RegistrySettings, load_settings
from portregistry.storage import MatchStrategy, Registry
from portregistry.utils.logging_config import setup_logging
from portregistry.utils.version_compare import compare

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="portregistry",
    help="Inspect the registry of installed ports",
    no_args_is_help=True,
)

_REGISTRY_OPTION = typer.Option(
    None,
    "--registry",
    "-r",
    help="Registry database file. Overrides the configured registry_path.",
)
_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to a YAML settings file. If not provided, defaults and PORTREGISTRY_* env vars are used.",
)


def _settings(registry_path: Optional[Path], config_path: Optional[Path]) -> RegistrySettings:
    settings = load_settings(config_path)
    if registry_path is not None:
        settings.registry_path = registry_path
    setup_logging(log_dir=settings.log_dir, level=logging.WARNING)
    return settings


def _open(settings: RegistrySettings) -> Registry:
    try:
        return Registry.from_settings(settings)
    except RegistryError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)


def _format_entry(record) -> str:
    return (
        f"{record.name} @{record.version}_{record.revision}{record.variants or ''}"
        f" (epoch {record.epoch}, {record.state or 'no state'})"
    )


@app.command()
def init(
    registry_path: Optional[Path] = _REGISTRY_OPTION,
    config_path: Optional[Path] = _CONFIG_OPTION,
):
    """
    Create the registry file (or verify an existing one).
    """
    settings = _settings(registry_path, config_path)
    with _open(settings) as registry:
        version = registry.metadata_value("version")
        typer.echo(f"Registry {registry.location} ready (schema v{version})")


@app.command("list")
def list_entries(
    state: Optional[str] = typer.Option(None, "--state", help="Only entries in this state."),
    name: Optional[str] = typer.Option(None, "--name", help="Only entries with this name."),
    glob: bool = typer.Option(False, "--glob", help="Match --state/--name as glob patterns."),
    registry_path: Optional[Path] = _REGISTRY_OPTION,
    config_path: Optional[Path] = _CONFIG_OPTION,
):
    """
    List recorded entries.
    """
    predicates = []
    if name is not None:
        predicates.append(("name", name))
    if state is not None:
        predicates.append(("state", state))
    strategy = MatchStrategy.GLOB if glob else MatchStrategy.EXACT

    settings = _settings(registry_path, config_path)
    with _open(settings) as registry:
        entries = registry.entries.search(predicates, strategy=strategy)
        for entry in entries:
            typer.echo(_format_entry(entry.describe()))
        typer.echo(f"{len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")


@app.command()
def files(
    name: str = typer.Argument(..., help="Port name."),
    version: Optional[str] = typer.Option(None, "--version", help="Only this version."),
    registry_path: Optional[Path] = _REGISTRY_OPTION,
    config_path: Optional[Path] = _CONFIG_OPTION,
):
    """
    List the files owned by installed entries of a port.
    """
    settings = _settings(registry_path, config_path)
    with _open(settings) as registry:
        entries = registry.entries.installed(name, version)
        if not entries:
            typer.echo(f"No installed entries for {name}", err=True)
            raise typer.Exit(1)
        for entry in entries:
            for path in entry.files():
                typer.echo(path)


@app.command()
def owner(
    path: str = typer.Argument(..., help="Filesystem path."),
    registry_path: Optional[Path] = _REGISTRY_OPTION,
    config_path: Optional[Path] = _CONFIG_OPTION,
):
    """
    Show which entry owns a file.
    """
    settings = _settings(registry_path, config_path)
    with _open(settings) as registry:
        entry = registry.files.owner(path)
        if entry is None:
            typer.echo(f"{path} is not owned by any port")
            raise typer.Exit(1)
        typer.echo(f"{path} is provided by: {_format_entry(entry.describe())}")


@app.command()
def vercmp(
    a: str = typer.Argument(..., help="First version."),
    b: str = typer.Argument(..., help="Second version."),
):
    """
    Compare two version strings (prints -1, 0 or 1).
    """
    typer.echo(str(compare(a, b)))


if __name__ == "__main__":
    app()
