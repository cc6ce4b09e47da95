"""CLI entry points for autorelay.

Commands:
    autorelay run          — Start the runtime and the HTTP ingress
    autorelay workflows    — List, add, clear, enable, disable, or enroll workflows
    autorelay history      — Show recent workflow executions
    autorelay notify       — Inject a notification and run it in-process
    autorelay ask          — One-off prompt against the text model
    autorelay gmail-auth   — Authorize Gmail access and store the token
    autorelay config       — Create the config file and get/set values
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

import autorelay
from autorelay.models import ANY_ACCOUNT, SourceApp, TriggerEvent

console = Console()
app = typer.Typer(
    name="autorelay",
    help="Trigger-driven message relay: notifications, geofences, and photos.",
    no_args_is_help=True,
)
workflows_app = typer.Typer(help="Manage workflow rules.")
app.add_typer(workflows_app, name="workflows")
config_app = typer.Typer(help="Create, inspect, or edit config.toml.")
app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure root logging for CLI output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def _load_config():
    from autorelay.config import ConfigManager

    return ConfigManager().load()


@app.callback(invoke_without_command=True)
def main(
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
) -> None:
    """autorelay command line."""
    if version:
        console.print(f"autorelay {autorelay.__version__}")
        raise typer.Exit()


# ------------------------------------------------------------------
# autorelay run
# ------------------------------------------------------------------


@app.command()
def run(
    host: str = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: int = typer.Option(None, "--port", help="Port (default from config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Start the runtime and serve the HTTP ingress."""
    _setup_logging(verbose)
    import uvicorn

    from autorelay.runtime import RelayRuntime
    from autorelay.server import create_app

    config = _load_config()
    bind_host = host or config.services.host
    bind_port = port or config.services.port
    console.print(f"[bold cyan]autorelay listening on http://{bind_host}:{bind_port}[/bold cyan]")
    uvicorn.run(
        create_app(RelayRuntime(config)),
        host=bind_host,
        port=bind_port,
        log_level="debug" if verbose else config.services.log_level,
    )


# ------------------------------------------------------------------
# autorelay workflows ...
# ------------------------------------------------------------------


@workflows_app.command("list")
def workflows_list(
    all_: bool = typer.Option(False, "--all", "-a", help="Include disabled workflows"),
) -> None:
    """List local workflows."""
    from autorelay.runtime import build_store

    store = build_store(_load_config())
    workflows = [wf for wf in store.load_local() if all_ or wf.active]

    table = Table(title="Workflows", border_style="cyan")
    table.add_column("ID", style="bold")
    table.add_column("Source")
    table.add_column("Destination")
    table.add_column("Active")
    table.add_column("Instructions", style="dim")
    for wf in workflows:
        source = wf.source.value
        if wf.source_account and wf.source_account != ANY_ACCOUNT:
            source += f" ({wf.source_account})"
        destination = wf.destination.value
        if wf.destination_account:
            destination += f" ({wf.destination_account})"
        active = "[green]Yes[/green]" if wf.active else "[dim]No[/dim]"
        table.add_row(wf.id, source, destination, active, wf.instructions or "-")

    console.print()
    console.print(table)
    if not workflows:
        console.print("[dim]No workflows configured.[/dim]")
    console.print()


@workflows_app.command("add")
def workflows_add(
    source: str = typer.Option(..., "--source", "-s", help="Gmail, Telegram, Maps, or Photos"),
    destination: str = typer.Option(..., "--destination", "-d", help="Gmail or Telegram"),
    source_account: str = typer.Option(ANY_ACCOUNT, "--source-account", help="Source filter"),
    destination_account: str = typer.Option(
        ..., "--destination-account", help="Recipient address, phone, or chat id"
    ),
    instructions: str = typer.Option("", "--instructions", "-i", help="Rewrite instructions"),
    latitude: float = typer.Option(None, "--lat", help="Geofence center latitude (Maps)"),
    longitude: float = typer.Option(None, "--lng", help="Geofence center longitude (Maps)"),
    radius: float = typer.Option(None, "--radius", help="Geofence radius in meters (Maps)"),
) -> None:
    """Create a workflow.

    A running relay is asked to add it so its geofence or photo watch is
    armed straight away; otherwise it is written to the local store.
    """
    from autorelay.workflows import new_workflow

    fields = {
        "source": source,
        "destination": destination,
        "destination_account": destination_account,
        "source_account": source_account,
        "instructions": instructions,
        "latitude": latitude,
        "longitude": longitude,
        "radius_meters": radius,
    }
    try:
        workflow = new_workflow(**fields)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from None

    config = _load_config()
    try:
        resp = httpx.post(
            f"http://{config.services.host}:{config.services.port}/workflows",
            json=fields,
            timeout=10,
        )
    except httpx.RequestError:
        from autorelay.runtime import build_store

        saved = asyncio.run(build_store(config).save(workflow))
        console.print(
            f"[green]Saved workflow {saved.id}[/green] ({saved.source} -> {saved.destination})"
        )
        return

    if resp.status_code != 201:
        console.print(f"[red]Relay rejected the workflow: {escape(resp.text)}[/red]")
        raise typer.Exit(code=1)
    saved_id = resp.json()["id"]
    console.print(
        f"[green]Saved workflow {saved_id}[/green] ({workflow.source} -> {workflow.destination})"
        " on the running relay"
    )


@workflows_app.command("clear")
def workflows_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete every local workflow."""
    if not yes and not typer.confirm("Delete all local workflows?"):
        raise typer.Abort()
    from autorelay.runtime import build_store

    count = build_store(_load_config()).clear()
    console.print(f"Removed {count} workflow(s).")


def _set_active(workflow_id: str, active: bool) -> None:
    from autorelay.runtime import build_store

    if not build_store(_load_config()).set_active(workflow_id, active):
        console.print(f"[red]Workflow '{workflow_id}' not found.[/red]")
        raise typer.Exit(code=1)
    state = "enabled" if active else "disabled"
    console.print(f"Workflow [bold]{workflow_id}[/bold] {state}.")


@workflows_app.command("enable")
def workflows_enable(workflow_id: str = typer.Argument(..., help="Workflow id")) -> None:
    """Enable a workflow."""
    _set_active(workflow_id, True)


@workflows_app.command("disable")
def workflows_disable(workflow_id: str = typer.Argument(..., help="Workflow id")) -> None:
    """Disable a workflow."""
    _set_active(workflow_id, False)


@workflows_app.command("enroll")
def workflows_enroll(
    workflow_id: str = typer.Argument(..., help="Photos workflow id"),
    name: str = typer.Argument(..., help="Person name"),
    images: list[Path] = typer.Argument(..., help="Enrollment photos", exists=True),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Enroll a person on a Photos workflow from sample photos."""
    _setup_logging(verbose)
    from autorelay.intelligence.decision import PhotoMatcher
    from autorelay.intelligence.session import InferenceSession
    from autorelay.runtime import build_backend, build_face_analyzer, build_store

    config = _load_config()
    store = build_store(config)
    workflow = store.get(workflow_id)
    if workflow is None or workflow.source is not SourceApp.PHOTOS:
        console.print(f"[red]'{workflow_id}' is not a Photos workflow.[/red]")
        raise typer.Exit(code=1)

    faces = build_face_analyzer(config)
    if faces is None:
        console.print("[red]Set photos.face_service_url to enroll people.[/red]")
        raise typer.Exit(code=1)

    matcher = PhotoMatcher(InferenceSession(build_backend(config)), faces=faces)
    embeddings = asyncio.run(matcher.enroll([p.read_bytes() for p in images]))
    if not embeddings:
        console.print("[yellow]No faces found in the enrollment photos.[/yellow]")
        raise typer.Exit(code=1)

    store.set_person(workflow_id, name, embeddings)
    console.print(f"[green]Enrolled {name}[/green] with {len(embeddings)} embedding(s).")


# ------------------------------------------------------------------
# autorelay history
# ------------------------------------------------------------------


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries"),
) -> None:
    """Show recent workflow executions."""
    from autorelay.executions import ExecutionLog

    config = _load_config()
    db_path = config.get_data_path() / "executions.db"
    if not db_path.exists():
        console.print("[dim]No executions recorded yet.[/dim]")
        return

    log = ExecutionLog(db_path)
    try:
        entries = log.history(limit=limit)
    finally:
        log.close()

    table = Table(title="Executions", border_style="cyan")
    table.add_column("Time", style="dim")
    table.add_column("Workflow", style="bold")
    table.add_column("Result")
    table.add_column("Message")
    for entry in entries:
        result = "[green]OK[/green]" if entry["success"] else "[red]FAIL[/red]"
        table.add_row(entry["timestamp"], entry["workflowRef"], result, entry["message"])
    console.print()
    console.print(table)
    console.print()


# ------------------------------------------------------------------
# autorelay notify
# ------------------------------------------------------------------


@app.command()
def notify(
    package: str = typer.Argument(..., help="Notifying package, e.g. com.google.android.gm"),
    hint: str = typer.Option(None, "--hint", help="Subject hint used to pick the message"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Run the matching workflows for one notification, in-process."""
    _setup_logging(verbose)
    from autorelay.runtime import RelayRuntime

    async def _run() -> list:
        runtime = RelayRuntime(_load_config())
        await runtime.start(watch_photos=False)
        try:
            app_tag = runtime.notifications.resolve(package)
            if app_tag is None:
                return []
            return await runtime.orchestrator.handle(TriggerEvent(source_app=app_tag, hint=hint))
        finally:
            await runtime.stop()

    runs = asyncio.run(_run())
    if not runs:
        console.print(f"[yellow]Package '{package}' is not a recognized source.[/yellow]")
        raise typer.Exit(code=1)
    for pipeline_run in runs:
        outcome = pipeline_run.result.summary if pipeline_run.result else ""
        console.print(f"{pipeline_run.workflow_ref or '-'}: {pipeline_run.state} {outcome}")


# ------------------------------------------------------------------
# autorelay ask
# ------------------------------------------------------------------


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Prompt text"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Send one prompt to the text model and print the reply."""
    _setup_logging(verbose)
    from autorelay.intelligence.session import InferenceSession
    from autorelay.runtime import build_backend

    async def _ask() -> str:
        session = InferenceSession(build_backend(_load_config()))
        try:
            return await session.submit(prompt)
        finally:
            await session.close()

    try:
        reply = asyncio.run(_ask())
    except RuntimeError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    console.print(reply)


# ------------------------------------------------------------------
# autorelay config ...
# ------------------------------------------------------------------

_SECRET_FIELDS = ("bot_token", "api_key")


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a config file holding the defaults."""
    from autorelay.config import ConfigManager

    manager = ConfigManager()
    if not manager.init(force=force):
        console.print(f"[yellow]{manager.get_config_path()} already exists (use --force).[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]Wrote {manager.get_config_path()}[/green]")


@config_app.command("path")
def config_path() -> None:
    """Print where the config file lives."""
    from autorelay.config import ConfigManager

    manager = ConfigManager()
    suffix = "" if manager.exists() else " [dim](not created yet)[/dim]"
    console.print(f"{manager.get_config_path()}{suffix}")


@config_app.command("get")
def config_get(
    key: str = typer.Argument(..., help="Dotted key, e.g. services.port or telegram.chat_ids"),
) -> None:
    """Print a config value. Tokens and API keys are masked."""
    value: object = _load_config().model_dump()
    for part in key.split("."):
        if not isinstance(value, dict) or part not in value:
            console.print(f"[red]Key not found: {key}[/red]")
            raise typer.Exit(code=1)
        value = value[part]

    if key.rsplit(".", 1)[-1] in _SECRET_FIELDS and isinstance(value, str) and value:
        value = value[:4] + "..." + value[-4:] if len(value) > 8 else "****"
    console.print(escape(str(value)))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="section.field, or section.table.entry"),
    value: str = typer.Argument(..., help="New value; lists take comma-separated items"),
) -> None:
    """Update one config value, validated before it is saved."""
    from autorelay.config import ConfigManager

    try:
        ConfigManager().set_value(key, value)
    except KeyError as exc:
        console.print(f"[red]{escape(str(exc.args[0]))}[/red]")
        raise typer.Exit(code=1) from None
    except ValueError as exc:
        console.print(f"[red]Invalid value for {key}:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1) from None
    console.print(f"[green]{key} updated[/green]")


@config_app.command("unset")
def config_unset(
    key: str = typer.Argument(..., help="Table entry to remove, or field to reset"),
) -> None:
    """Remove a table entry or restore a field's default."""
    from autorelay.config import ConfigManager

    try:
        ConfigManager().unset_value(key)
    except KeyError as exc:
        console.print(f"[red]{escape(str(exc.args[0]))}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]{key} reset[/green]")


# ------------------------------------------------------------------
# autorelay gmail-auth
# ------------------------------------------------------------------


@app.command("gmail-auth")
def gmail_auth() -> None:
    """Run the Gmail OAuth consent flow and store the token."""
    from autorelay.sources.gmail import GmailClient

    config = _load_config()
    client = GmailClient(config.gmail.credentials_path, config.gmail.token_path)
    try:
        token_path = client.authorize()
    except FileNotFoundError:
        console.print(f"[red]Client secrets not found at {config.gmail.credentials_path}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]Gmail token stored at {token_path}[/green]")
