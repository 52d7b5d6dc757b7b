"""Main CLI application for codex-market."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from codex_market import __version__
from codex_market.cli.spinner import Spinner
from codex_market.config.parser import ConfigError
from codex_market.config.paths import ConfigPaths
from codex_market.config.schemas import InstallRecord
from codex_market.core.installer import InstallError, PluginInstaller
from codex_market.core.ledger import InstallLedger
from codex_market.core.marketplace import MarketplaceError, MarketplaceRegistry
from codex_market.core.search import search_plugins
from codex_market.registry.git import GitAuthError, GitClient, GitError

app = typer.Typer(
    name="codex-market",
    help="Install Claude-style plugins (skills, commands, MCP servers) into Codex",
    add_completion=False,
    no_args_is_help=True,
)
marketplace_app = typer.Typer(help="Manage plugin marketplaces", no_args_is_help=True)
app.add_typer(marketplace_app, name="marketplace")

console = Console()
error_console = Console(stderr=True)

logger = logging.getLogger("codex_market")

CLI_ERRORS = (InstallError, ConfigError, MarketplaceError, GitError, OSError)


class InstallScope(str, Enum):
    """Where ``install`` puts a plugin."""

    GLOBAL = "global"
    PROJECT = "project"


class UninstallScope(str, Enum):
    """Which installations ``uninstall`` removes."""

    GLOBAL = "global"
    PROJECT = "project"
    ALL = "all"


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2+=DEBUG
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger.setLevel(level)

    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {escape(message)}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {escape(message)}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {escape(message)}")


def report_error(error: Exception) -> None:
    """Print an error raised by the core."""
    if isinstance(error, GitAuthError):
        print_error(f"Git authentication failed for {error.url or 'repository'}")
    else:
        print_error(str(error))


def fail(error: Exception) -> typer.Exit:
    """Report an error and build the exit to raise."""
    report_error(error)
    return typer.Exit(1)


@dataclass
class Services:
    """Collaborators for one command invocation."""

    paths: ConfigPaths
    ledger: InstallLedger
    git: GitClient
    registry: MarketplaceRegistry
    installer: PluginInstaller


def get_services() -> Services:
    """Build the collaborators from the environment."""
    paths = ConfigPaths()
    ledger = InstallLedger(paths.ledger_path)
    git = GitClient()
    registry = MarketplaceRegistry(paths, git)
    installer = PluginInstaller(ledger, registry, git, paths)
    return Services(paths, ledger, git, registry, installer)


def _artifact_summary(record: InstallRecord) -> tuple[str, str, str]:
    return (
        ", ".join(s.name for s in record.skills),
        ", ".join(f"/{c.name}" for c in record.commands),
        ", ".join(m.name for m in record.mcp_servers),
    )


@app.callback()
def callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v info, -vv debug)",
        ),
    ] = 0,
) -> None:
    """codex-market - plugin marketplace manager for the Codex CLI."""
    setup_logging(verbose)


@app.command()
def version() -> None:
    """Show the codex-market version."""
    console.print(f"codex-market {__version__}")


@app.command()
def install(
    plugin_id: Annotated[str, typer.Argument(help="Plugin to install (<plugin>@<marketplace>)")],
    scope: Annotated[
        InstallScope,
        typer.Option("--scope", "-s", help="Install scope"),
    ] = InstallScope.GLOBAL,
) -> None:
    """Install a plugin from a registered marketplace.

    Project scope installs into ./.codex of the current directory.
    """
    services = get_services()
    console.print(f"Installing {plugin_id}...")
    try:
        result = services.installer.install(plugin_id, scope.value)
    except CLI_ERRORS as e:
        raise fail(e) from e

    record = result.record
    print_success(f"Installed {plugin_id} v{record.version} ({record.location})")
    skills, commands, servers = _artifact_summary(record)
    if skills:
        console.print(f"  Skills: {skills}")
        skills_dir = services.paths.skills_dir(record.scope, record.project_path)
        console.print(f"  Skills location: {skills_dir}")
    if commands:
        console.print(f"  Commands: {commands}")
    if servers:
        console.print(f"  MCP servers: {servers}")
        console.print(
            f"  MCP config: {services.paths.mcp_config_path(record.scope, record.project_path)}"
        )
    for warning in result.warnings:
        print_warning(warning)


@app.command()
def uninstall(
    plugin_id: Annotated[str, typer.Argument(help="Plugin to uninstall (<plugin>@<marketplace>)")],
    scope: Annotated[
        UninstallScope,
        typer.Option("--scope", "-s", help="Scope to remove"),
    ] = UninstallScope.GLOBAL,
) -> None:
    """Uninstall a plugin.

    Project scope removes the installation for the current directory only;
    "all" removes every installation of the plugin.
    """
    services = get_services()
    try:
        result = services.installer.uninstall(plugin_id, scope.value)
    except CLI_ERRORS as e:
        raise fail(e) from e

    for record in result.removed:
        console.print(f"Removed from {record.location}")
    for warning in result.warnings:
        print_warning(warning)
    print_success(f"Uninstalled {plugin_id} ({len(result.removed)} installation(s))")


@app.command()
def update(
    plugin_id: Annotated[
        str | None,
        typer.Argument(help="Plugin to update (defaults to every installed plugin)"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Reinstall even if the version is unchanged"),
    ] = False,
) -> None:
    """Update installed plugins.

    Pulls each affected marketplace, then reinstalls plugins whose version
    changed, keeping their original scope and project.
    """
    services = get_services()

    def progress(pid: str) -> Spinner:
        return Spinner(console, f"Reinstalling {pid}")

    try:
        summary = services.installer.update(plugin_id, force=force, progress=progress)
    except CLI_ERRORS as e:
        raise fail(e) from e

    for warning in summary.warnings:
        print_warning(warning)

    if not summary.results:
        console.print("No plugins installed")
        return

    for result in summary.results:
        label = f"{result.plugin_id} ({result.location})"
        if result.status == "updated":
            if result.old_version == result.new_version:
                console.print(f"  {label}: reinstalled v{result.new_version}")
            else:
                console.print(f"  {label}: {result.old_version} → {result.new_version}")
        elif result.status == "up_to_date":
            console.print(f"  {label}: up to date (v{result.old_version})", style="dim")
        else:
            print_error(f"{label}: {result.message}")

    console.print(f"\n{summary.updated_count} plugin(s) updated")
    if not summary.all_successful:
        raise typer.Exit(1)


@app.command("list")
def list_plugins() -> None:
    """List installed plugins."""
    services = get_services()
    try:
        installed = services.ledger.list()
    except CLI_ERRORS as e:
        raise fail(e) from e

    if not installed:
        console.print("No plugins installed")
        return

    table = Table(title="Installed Plugins")
    table.add_column("Plugin", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Scope")
    table.add_column("Skills")
    table.add_column("Commands")
    table.add_column("MCP Servers")

    for pid in sorted(installed):
        for record in installed[pid]:
            table.add_row(pid, record.version, record.location, *_artifact_summary(record))

    console.print(table)


@app.command()
def usage(
    plugin_id: Annotated[str, typer.Argument(help="Installed plugin (<plugin>@<marketplace>)")],
) -> None:
    """Show where a plugin's files were installed."""
    services = get_services()
    try:
        records = services.ledger.get(plugin_id)
    except CLI_ERRORS as e:
        raise fail(e) from e

    if not records:
        print_error(f"{plugin_id} is not installed")
        raise typer.Exit(1)

    console.print(f"[bold]{plugin_id}[/bold]")
    for i, record in enumerate(records, start=1):
        console.print(f"\n[{i}] Scope: {record.location}")
        console.print(f"    Version: {record.version}")
        console.print(f"    Source: {record.source.url}")
        console.print(f"    Installed: {record.installed_at}")
        console.print(f"    Updated: {record.last_updated}")
        for skill in record.skills:
            console.print(f"    Skill {skill.name}: {skill.path}")
        for command in record.commands:
            console.print(f"    Command /{command.name}: {command.path}")
        if record.mcp_servers:
            config_path = services.paths.mcp_config_path(record.scope, record.project_path)
            for server in record.mcp_servers:
                console.print(f"    MCP server {server.name}: {config_path}")

    console.print(f"\nTotal: {len(records)} installation(s)")


@app.command()
def search(
    keyword: Annotated[str, typer.Argument(help="Text to look for")],
) -> None:
    """Search plugins across all registered marketplaces.

    Matches plugin names, descriptions, tags, keywords and categories,
    tolerating typos.
    """
    services = get_services()
    try:
        if not services.registry.list():
            console.print("No marketplaces registered")
            return
        results = search_plugins(services.registry, keyword)
    except CLI_ERRORS as e:
        raise fail(e) from e

    if not results:
        console.print(f"No plugins found matching '{escape(keyword)}'")
        return

    table = Table(title=f"Search results for '{escape(keyword)}'")
    table.add_column("Plugin", style="cyan")
    table.add_column("Version", style="green")
    table.add_column("Description")
    table.add_column("Tags")
    table.add_column("Category")
    for result in results:
        entry = result.plugin
        table.add_row(
            result.plugin_id,
            entry.version or "latest",
            entry.description or "",
            ", ".join(entry.tags),
            entry.category or "",
        )
    console.print(table)
    console.print(f"\n{len(results)} plugin(s) found")


# =============================================================================
# Marketplace commands
# =============================================================================


@marketplace_app.command("add")
def marketplace_add(
    url: Annotated[str, typer.Argument(help="Git URL or local directory of the marketplace")],
) -> None:
    """Add a marketplace."""
    services = get_services()
    console.print(f"Adding {url}...")
    try:
        name, manifest = services.registry.add(url)
    except CLI_ERRORS as e:
        raise fail(e) from e
    print_success(f"Added marketplace '{name}' ({len(manifest.plugins)} plugin(s))")


@marketplace_app.command("remove")
def marketplace_remove(
    name: Annotated[str, typer.Argument(help="Marketplace name")],
) -> None:
    """Remove a marketplace.

    Installed plugins are left in place.
    """
    services = get_services()
    try:
        services.registry.remove(name)
    except CLI_ERRORS as e:
        raise fail(e) from e
    print_success(f"Removed marketplace '{name}'")


@marketplace_app.command("list")
def marketplace_list(
    show_plugins: Annotated[
        bool,
        typer.Option("--all", "-a", help="Also list each marketplace's plugins"),
    ] = False,
) -> None:
    """List registered marketplaces."""
    services = get_services()
    try:
        marketplaces = services.registry.list()
    except CLI_ERRORS as e:
        raise fail(e) from e

    if not marketplaces:
        console.print("No marketplaces registered")
        return

    table = Table(title="Marketplaces")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("Location", style="dim")
    table.add_column("Updated")
    for name in sorted(marketplaces):
        mp = marketplaces[name]
        table.add_row(
            name, mp.source.url or mp.source.path or "", mp.install_location, mp.last_updated
        )
    console.print(table)

    if not show_plugins:
        return
    for name in sorted(marketplaces):
        try:
            manifest = services.registry.load_manifest(name)
        except ConfigError as e:
            print_warning(f"{name}: {e}")
            continue
        console.print(f"\n[bold]{name}[/bold]")
        for entry in manifest.plugins:
            line = f"  {entry.name}@{name} (v{entry.version or 'latest'})"
            if entry.description:
                line += f" - {entry.description}"
            console.print(line)


@marketplace_app.command("update")
def marketplace_update(
    name: Annotated[
        str | None,
        typer.Argument(help="Marketplace to update (defaults to all)"),
    ] = None,
) -> None:
    """Pull the latest content of marketplaces."""
    services = get_services()
    try:
        names = [name] if name else sorted(services.registry.list())
    except CLI_ERRORS as e:
        raise fail(e) from e

    if not names:
        console.print("No marketplaces registered")
        return

    failed = False
    for mp_name in names:
        try:
            services.registry.update(mp_name)
        except CLI_ERRORS as e:
            report_error(e)
            failed = True
            continue
        print_success(f"Updated {mp_name}")

    if failed:
        raise typer.Exit(1)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
