#!/usr/bin/env python3
"""
ShelfSync CLI - Command Line Interface
"""

import asyncio
import json

import click

from shelfsync.config.config_loader import load_config
from shelfsync.core.exceptions import QueueItemInProgressError, QueueItemNotFoundError, SyncDisabledError
from shelfsync.core.logging_manager import setup_logging
from shelfsync.main import build_services


def _run_with_services(config_path, operation):
    """Build services, run one async operation against them, then close them"""
    config = load_config(config_path)
    setup_logging(config)

    async def runner():
        services = build_services(config)
        try:
            await services.db.create_tables()
            return await operation(services)
        finally:
            await services.close()

    return asyncio.run(runner())


@click.group()
@click.option('--config', 'config_path', default=None, help='Path to the YAML configuration file')
@click.pass_context
def cli(ctx, config_path):
    """ShelfSync Command Line Interface"""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


@cli.command()
@click.pass_context
def serve(ctx):
    """Run the API server and the background sync processor"""
    from shelfsync.main import main
    main(ctx.obj['config_path'])


@cli.command()
@click.option('--store-id', default=None, help='Only process items for this store')
@click.pass_context
def process(ctx, store_id):
    """Run a single sweep of the sync queue"""

    async def operation(services):
        return await services.processor.process_pending_items(store_id)

    result = _run_with_services(ctx.obj['config_path'], operation)
    click.echo(json.dumps(result.to_dict(), indent=2))
    if result.failed:
        ctx.exit(1)


@cli.command()
@click.argument('item_id')
@click.pass_context
def retry(ctx, item_id):
    """Reprocess one queue item immediately"""

    async def operation(services):
        await services.processor.process_item_by_id(item_id)

    try:
        _run_with_services(ctx.obj['config_path'], operation)
    except (QueueItemNotFoundError, SyncDisabledError, QueueItemInProgressError) as e:
        click.echo(f"Retry refused: {e}", err=True)
        raise click.Abort()
    except Exception as e:
        click.echo(f"Retry attempted but failed: {e}", err=True)
        raise click.Abort()

    click.echo(f"Queue item {item_id} synced")


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Prune old queue items and fail stuck ones"""

    async def operation(services):
        return await services.queue_store.cleanup()

    counts = _run_with_services(ctx.obj['config_path'], operation)
    click.echo(json.dumps(counts, indent=2))


@cli.command('init-db')
@click.pass_context
def init_db(ctx):
    """Create database tables"""

    async def operation(services):
        return None

    _run_with_services(ctx.obj['config_path'], operation)
    click.echo("Database tables created")


if __name__ == '__main__':
    cli()
