#!/usr/bin/env python3
"""
Command line entry point of the A11yScout accessibility scanner.

Commands:
  enqueue URL   Add a seed URL to the scan queue (or update its limits)
  queue         List the scan queue as JSON
  remove URL    Remove a URL from the scan queue
  cleanup       Drop ineligible queue entries and merge duplicates
  scan URL      Crawl one site right now and print/save its summary
  serve         Run the queue processor until interrupted
  report ID     Print/save the summary of a stored scan
  scans         List recent scans as JSON
  delete-scan ID  Delete a finished scan and its results
  config        Show the effective configuration

Common options:
  --config PATH       YAML/JSON config (default: configs/default.yaml if present)
  --log-level LEVEL   Logging level (DEBUG, INFO, ...)
  --log-file PATH     Log file (stdout only if omitted)
  --log-format FORMAT Logging format string

Example:
  a11y-scout enqueue https://example.com --max-pages 50
  a11y-scout serve
"""
import asyncio
import contextlib
import json
import signal
import sys
from pathlib import Path

import click

from a11y_scout import __version__
from a11y_scout.config import load_config
from a11y_scout.engine import Engine
from a11y_scout.errors import ScoutError
from a11y_scout.logger import DEFAULT_FORMAT, init_logging
from a11y_scout.report.json_report import render_json
from a11y_scout.utils import normalize_url

CONTEXT_SETTINGS = dict(help_option_names=["--help"])


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


def _emit(summary, json_output, pretty):
    if json_output:
        saved = render_json(summary, json_output, pretty=pretty)
        click.echo(f'JSON report: {saved}')
    else:
        click.echo(summary.json(pretty=pretty))


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='A11yScout, version %(version)s')
@click.option(
    '--config', '-c', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Path to a YAML or JSON configuration file.'
)
@click.option(
    '--log-level', 'log_level',
    default='INFO', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Logging level'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Log file (stdout only if omitted)'
)
@click.option(
    '--log-format', 'log_format',
    default=DEFAULT_FORMAT,
    show_default=True,
    help='Logging format string'
)
@click.pass_context
def cli(ctx, config_path, log_level, log_file, log_format):
    """A11yScout: crawl sites and record accessibility findings."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format
    )
    try:
        cfg = load_config(config_path)
    except Exception as e:
        print_error(f'Failed to load configuration: {e}')
    ctx.ensure_object(dict)
    ctx.obj['config'] = cfg


@cli.command('enqueue', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.option('--max-pages', '-p', 'max_pages', type=click.IntRange(min=1), default=None,
              help='Page cap for the crawl (config max_pages if omitted)')
@click.option('--max-depth', '-d', 'max_depth', type=click.IntRange(min=0), default=None,
              help='Link depth for the crawl (config max_depth if omitted)')
@click.pass_context
def enqueue(ctx, url, max_pages, max_depth):
    """Add URL to the scan queue."""
    engine = Engine(ctx.obj['config'])
    try:
        queued = asyncio.run(engine.enqueue(url, max_pages, max_depth))
    except ScoutError as e:
        print_error(f'Cannot queue URL: {e}')
    click.echo(f'Queued: {queued}')


@cli.command('queue', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_queue(ctx):
    """List queued seed URLs as JSON."""
    engine = Engine(ctx.obj['config'])

    async def _list():
        async with engine.open_store() as store:
            return await store.list_entries()

    try:
        entries = asyncio.run(_list())
    except ScoutError as e:
        print_error(f'Cannot read queue: {e}')
    click.echo(json.dumps(
        [
            {
                'url': e.url,
                'max_pages': e.max_pages,
                'max_depth': e.max_depth,
                'enqueued_at': e.enqueued_at.isoformat(),
            }
            for e in entries
        ],
        indent=2,
    ))


@cli.command('remove', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.pass_context
def remove(ctx, url):
    """Remove URL from the scan queue."""
    engine = Engine(ctx.obj['config'])

    async def _remove():
        async with engine.open_store() as store:
            return await store.remove(url) or await store.remove(normalize_url(url))

    try:
        removed = asyncio.run(_remove())
    except ScoutError as e:
        print_error(f'Cannot remove URL: {e}')
    if not removed:
        print_error(f'Not in queue: {url}')
    click.echo(f'Removed: {url}')


@cli.command('scan', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.option('--max-pages', '-p', 'max_pages', type=click.IntRange(min=1), default=None,
              help='Page cap for the crawl')
@click.option('--max-depth', '-d', 'max_depth', type=click.IntRange(min=0), default=None,
              help='Link depth for the crawl')
@click.option('--json', '-j', 'json_output', default=None,
              type=click.Path(writable=True, dir_okay=False, path_type=Path),
              help='Save the JSON summary to a file')
@click.option('--pretty', is_flag=True, help='Indent JSON output')
@click.pass_context
def scan(ctx, url, max_pages, max_depth, json_output, pretty):
    """Crawl URL now and print its summary."""
    engine = Engine(ctx.obj['config'])
    click.echo(f'Starting scan of {url}', err=True)
    try:
        summary = asyncio.run(engine.scan(url, max_pages, max_depth))
    except ScoutError as e:
        print_error(f'Scan failed: {e}')
    _emit(summary, json_output, pretty)
    if summary.status != 'completed':
        sys.exit(1)


@cli.command('report', context_settings=CONTEXT_SETTINGS)
@click.argument('scan_id')
@click.option('--json', '-j', 'json_output', default=None,
              type=click.Path(writable=True, dir_okay=False, path_type=Path),
              help='Save the JSON summary to a file')
@click.option('--pretty', is_flag=True, help='Indent JSON output')
@click.pass_context
def report(ctx, scan_id, json_output, pretty):
    """Show the summary of a stored scan."""
    engine = Engine(ctx.obj['config'])
    try:
        summary = asyncio.run(engine.report(scan_id))
    except ScoutError as e:
        print_error(str(e))
    _emit(summary, json_output, pretty)


@cli.command('cleanup', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def cleanup(ctx):
    """Drop ineligible queue entries and merge duplicate URLs."""
    engine = Engine(ctx.obj['config'])
    try:
        result = asyncio.run(engine.cleanup_queue())
    except ScoutError as e:
        print_error(f'Cannot clean up queue: {e}')
    for url in result.removed:
        click.echo(f'Removed: {url}')
    for url in result.merged:
        click.echo(f'Merged duplicate: {url}')
    for old, new in result.renamed.items():
        click.echo(f'Renamed: {old} -> {new}')
    if not result.changed:
        click.echo('Queue is clean')


@cli.command('scans', context_settings=CONTEXT_SETTINGS)
@click.option('--limit', '-n', 'limit', type=click.IntRange(min=1), default=20, show_default=True,
              help='Number of scans to list')
@click.pass_context
def show_scans(ctx, limit):
    """List the most recent scans as JSON."""
    engine = Engine(ctx.obj['config'])
    try:
        scans = asyncio.run(engine.list_scans(limit))
    except ScoutError as e:
        print_error(f'Cannot read scans: {e}')
    click.echo(json.dumps(
        [
            {
                'scan_id': s.scan_id,
                'url': s.url,
                'status': s.status.value,
                'total_pages_found': s.total_pages_found,
                'pages_scanned': s.pages_scanned,
                'error_message': s.error_message,
                'created_at': s.created_at.isoformat(),
                'updated_at': s.updated_at.isoformat(),
            }
            for s in scans
        ],
        indent=2,
    ))


@cli.command('delete-scan', context_settings=CONTEXT_SETTINGS)
@click.argument('scan_id')
@click.pass_context
def delete_scan(ctx, scan_id):
    """Delete a finished scan and its page results."""
    engine = Engine(ctx.obj['config'])
    try:
        asyncio.run(engine.delete_scan(scan_id))
    except ScoutError as e:
        print_error(f'Cannot delete scan: {e}')
    click.echo(f'Deleted: {scan_id}')


@cli.command('serve', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def serve(ctx):
    """Process the scan queue until interrupted."""
    engine = Engine(ctx.obj['config'])

    async def _serve():
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop.set)
        await engine.serve(stop)

    try:
        asyncio.run(_serve())
    except ScoutError as e:
        print_error(f'Queue processor stopped: {e}')


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_config(ctx):
    """Show the effective configuration as JSON."""
    cfg = ctx.obj['config']
    click.echo(cfg.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
