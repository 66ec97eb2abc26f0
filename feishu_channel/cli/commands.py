"""CLI commands for feishu-channel."""

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from feishu_channel import __logo__, __version__

app = typer.Typer(
    name="feishu-channel",
    help=f"{__logo__} feishu-channel - Feishu/Lark bot channel",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} feishu-channel v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """feishu-channel - Feishu/Lark bot channel."""
    pass


def _load(config_path: Path | None):
    from feishu_channel.config.loader import load_config

    return load_config(config_path)


# ============================================================================
# Probe / Send
# ============================================================================


@app.command()
def probe(
    account: str | None = typer.Option(None, "--account", "-a", help="Account id"),
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Check credentials by fetching the bot's own info."""
    from feishu_channel.app.bootstrap import build_client
    from feishu_channel.config.accounts import resolve_account

    resolved = resolve_account(_load(config_path), account)
    if not resolved.configured:
        console.print(f"[red]Account {resolved.account_id} has no app credentials[/red]")
        raise typer.Exit(1)

    async def run():
        async with build_client(resolved) as client:
            return await client.get_bot_info()

    try:
        info = asyncio.run(run())
    except Exception as e:
        console.print(f"[red]Probe failed:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] {info.app_name or 'bot'} open_id={info.open_id or '-'}")


@app.command()
def send(
    to: str = typer.Argument(..., help="Target: oc_/ou_/on_ id, user id or email (feishu: prefix optional)"),
    text: str = typer.Argument(..., help="Markdown text"),
    reply_to: str | None = typer.Option(None, "--reply-to", help="Message id to quote"),
    mention: str | None = typer.Option(None, "--mention", help="User id to @mention"),
    account: str | None = typer.Option(None, "--account", "-a", help="Account id"),
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Send a markdown card to a user or chat."""
    from feishu_channel.app.bootstrap import build_client
    from feishu_channel.config.accounts import resolve_account
    from feishu_channel.delivery.outbound import FeishuSender

    resolved = resolve_account(_load(config_path), account)

    async def run():
        async with build_client(resolved) as client:
            sender = FeishuSender(client)
            return await sender.send_text(to, text, reply_to_message_id=reply_to, mention_user_id=mention)

    result = asyncio.run(run())
    if not result.ok:
        console.print(f"[red]Send failed:[/red] {result.error}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] sent message_id={result.message_id}")


# ============================================================================
# Status
# ============================================================================


@app.command()
def status(
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Show configured accounts and configuration issues."""
    from feishu_channel.channels.status import ChannelStatus, collect_status_issues
    from feishu_channel.config.accounts import list_account_ids, resolve_account
    from feishu_channel.config.loader import get_config_path

    path = config_path or get_config_path()
    config = _load(config_path)
    console.print(f"{__logo__} feishu-channel Status\n")
    console.print(f"Config: {path} {'[green]✓[/green]' if path.exists() else '[red]✗[/red]'}")

    table = Table(title="Feishu Accounts")
    table.add_column("Account", style="cyan")
    table.add_column("Enabled", style="green")
    table.add_column("Credentials", style="yellow")
    table.add_column("DM / Group policy")

    snapshots = []
    for account_id in list_account_ids(config):
        account = resolve_account(config, account_id)
        snapshots.append(ChannelStatus.for_account(account))
        credentials = f"{account.app_id} ({account.credential_source})" if account.configured else "[dim]not configured[/dim]"
        table.add_row(
            account.account_id,
            "✓" if account.enabled else "✗",
            credentials,
            f"{account.dm_policy} / {account.group_policy}",
        )
    console.print(table)

    issues = collect_status_issues(snapshots)
    for issue in issues:
        console.print(f"[yellow]![/yellow] [{issue.account_id}] {issue.message}")
        if issue.fix:
            console.print(f"  [dim]{issue.fix}[/dim]")
    if not issues:
        console.print("[green]No issues found[/green]")


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    account: str | None = typer.Option(None, "--account", "-a", help="Account id"),
    config_path: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
    streaming: bool = typer.Option(False, "--streaming", help="Echo replies as streaming card edits"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """Run the monitor in the foreground with the built-in echo responder."""
    from feishu_channel.adapters.local import EchoDispatcher
    from feishu_channel.app.bootstrap import build_local_runtime
    from feishu_channel.channels.feishu import FeishuMonitor

    _configure_logging(verbose)
    config = _load(config_path)
    runtime = build_local_runtime(
        config,
        account,
        dispatcher=EchoDispatcher(streaming=streaming) if streaming else None,
    )
    if not runtime.account.configured:
        console.print(f"[red]Account {runtime.account.account_id} has no app credentials[/red]")
        raise typer.Exit(1)

    console.print(f"{__logo__} Starting Feishu monitor for account {runtime.account.account_id}...")
    monitor = FeishuMonitor(runtime)

    try:
        asyncio.run(monitor.run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


if __name__ == "__main__":
    app()
