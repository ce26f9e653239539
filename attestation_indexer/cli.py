"""
Command line interface for the attestation indexer.

Usage:
    attestation-indexer run
    attestation-indexer poll --stream creation
    attestation-indexer init-db
    attestation-indexer status
    attestation-indexer refresh-preview 0xabc...
"""

import asyncio
import sys

import click
from rich.console import Console
from rich.table import Table

from attestation_indexer import worker as worker_module
from attestation_indexer.checkpoints import CheckpointStore
from attestation_indexer.config import Settings
from attestation_indexer.database import DatabaseAdapter
from attestation_indexer.errors import ConfigError
from attestation_indexer.link_preview import LinkPreviewWorker
from attestation_indexer.models import CREATION_STREAM, REVOCATION_STREAM

console = Console()

STREAM_CHOICES = {
    'creation': CREATION_STREAM,
    'revocation': REVOCATION_STREAM,
}


def load_settings() -> Settings:
    try:
        return Settings.from_env()
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@click.group()
@click.option('--log-level', envvar='LOG_LEVEL', default='INFO', help='Logging level')
def cli(log_level):
    """Index attestation registry events into a PostgreSQL read model."""
    worker_module.configure_logging(log_level)


@cli.command()
def run():
    """Run the indexer: catch up, then tail live events and poll periodically."""
    settings = load_settings()
    asyncio.run(worker_module.main(settings))


@cli.command()
@click.option('--stream', type=click.Choice(['all', *STREAM_CHOICES]), default='all', help='Stream to poll')
def poll(stream):
    """Run a single poll cycle and exit."""
    settings = load_settings()

    async def run_poll():
        indexer = worker_module.IndexerWorker(settings)
        try:
            await indexer.initialize()
            if stream == 'all':
                results = await indexer.poller.refresh()
            else:
                results = [await indexer.poller.run_once(STREAM_CHOICES[stream])]
        finally:
            # Let queued link previews finish before shutting down
            if indexer.link_previews:
                await indexer.link_previews.queue.join()
            await indexer.stop()

        table = Table(title="Poll results")
        table.add_column("Stream")
        table.add_column("Status")
        table.add_column("Logs", justify="right")
        table.add_column("Unresolved", justify="right")
        table.add_column("Checkpoint", justify="right")
        for result in results:
            table.add_row(
                result.stream,
                result.status,
                f"{result.count:,}",
                f"{result.failed:,}",
                str(result.last_block) if result.last_block is not None else "-",
            )
        console.print(table)

    asyncio.run(run_poll())


@cli.command('init-db')
def init_db():
    """Create the read model tables."""
    settings = load_settings()

    async def run_init():
        db = DatabaseAdapter(settings.database_url)
        await db.connect(pool_size=2, max_retries=1)
        try:
            await db.init_schema()
        finally:
            await db.close()

    asyncio.run(run_init())
    console.print("✓ Schema created/verified", style="green")


@cli.command()
def status():
    """Show stream checkpoints."""
    settings = load_settings()

    async def run_status():
        db = DatabaseAdapter(settings.database_url)
        await db.connect(pool_size=2, max_retries=1)
        try:
            return await CheckpointStore(db, settings.contract_start_block).snapshot()
        finally:
            await db.close()

    checkpoints = asyncio.run(run_status())

    table = Table(show_header=False, box=None)
    table.add_row("Chain:", f"[cyan]{settings.chain.chain_name} ({settings.chain.chain_id})[/cyan]")
    table.add_row("Contract:", f"[cyan]{settings.contract_address}[/cyan]")
    table.add_row("Start block:", f"[blue]{settings.contract_start_block:,}[/blue]")
    for name in (CREATION_STREAM, REVOCATION_STREAM):
        value = checkpoints.get(name)
        table.add_row(f"{name}:", f"[green]{value:,}[/green]" if value else "[yellow]not started[/yellow]")
    console.print(table)


@cli.command('refresh-preview')
@click.argument('post_id')
def refresh_preview(post_id):
    """Re-fetch the link preview for a stored post."""
    settings = load_settings()

    async def run_refresh():
        db = DatabaseAdapter(settings.database_url)
        await db.connect(pool_size=2, max_retries=1)
        previews = LinkPreviewWorker(db, fetch_timeout=settings.preview_timeout)
        await previews.initialize()
        try:
            return await previews.refresh_post(post_id)
        finally:
            await previews.close()
            await db.close()

    if asyncio.run(run_refresh()):
        console.print(f"✓ Link preview updated for {post_id}", style="green")
    else:
        console.print(f"[yellow]No link preview stored for {post_id}[/yellow]")


def main():
    cli()


if __name__ == '__main__':
    main()
