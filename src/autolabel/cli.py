"""
Autolabel CLI
Command-line interface for running the pipeline on a local batch.
"""

import logging
import sys
from pathlib import Path

import click

from .config import settings


def _build_pipeline(concurrency: int = None):
    from .pipeline import PhotoPipeline
    from .store import RecordStore
    from .vision import OllamaVisionExtractor

    settings.ensure_directories()
    return PhotoPipeline(
        RecordStore(settings.state_file),
        OllamaVisionExtractor(),
        concurrency=concurrency,
    )


def _open_store():
    from .store import RecordStore

    return RecordStore(settings.state_file)


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool):
    """Autolabel - sample code extraction and photo grouping"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--reset", is_flag=True, help="Delete the current batch first")
@click.option("--recursive/--no-recursive", default=True, help="Scan subdirectories")
def ingest(directory: str, reset: bool, recursive: bool):
    """Add the photos of a directory as a pending batch."""
    from .ingest import ingest_directory

    store = _open_store()
    record_ids = ingest_directory(store, Path(directory), recursive=recursive, reset=reset)
    click.echo(f"✅ Added {len(record_ids)} photos ({store.count()} in batch)")


@cli.command()
@click.option("--concurrency", "-c", type=int, default=None, help="Max in-flight vision calls")
def run(concurrency: int):
    """Extract codes for pending photos, then group the rest."""
    pipeline = _build_pipeline(concurrency)
    try:
        pending = len(pipeline.store.pending_ids())
        if pending == 0:
            click.echo("No pending photos")
            return

        click.echo(f"🔎 Processing {pending} photos with {pipeline.extractor.model}...")
        report = pipeline.run_batch()
    finally:
        pipeline.close()

    click.echo("=" * 50)
    click.echo(f"Extracted:   {len(report.extracted)}")
    click.echo(f"Invalid:     {len(report.invalid)}")
    click.echo(f"No code:     {len(report.no_code)}")
    click.echo(f"Failed:      {len(report.failed)}")
    if report.grouping:
        click.echo(f"Auto-grouped: {len(report.grouping.assigned)}")
        click.echo(f"Ungrouped:    {len(report.grouping.ungrouped)}")
    click.echo(f"Time:        {report.duration_seconds:.1f}s")
    click.echo("=" * 50)
    for record_id, error in report.failed.items():
        click.echo(f"❌ {record_id[:8]}: {error[:80]}")


@cli.command()
def group():
    """Re-run similarity grouping over ungrouped photos."""
    pipeline = _build_pipeline()
    try:
        report = pipeline.run_grouping_pass()
    finally:
        pipeline.close()
    click.echo(
        f"✅ Grouped {len(report.assigned)} of {report.considered} photos "
        f"({len(report.ungrouped)} ungrouped, {len(report.failed)} failed)"
    )


@cli.command()
@click.argument("record_id")
def retry(record_id: str):
    """Retry code extraction for one photo."""
    from .naming import NamingCollisionExhaustion
    from .pipeline import ExtractionInProgressError
    from .store import StoreError

    pipeline = _build_pipeline()
    try:
        outcome = pipeline.retry_extraction(record_id).result()
        record = pipeline.store.get(record_id)
    except (StoreError, ExtractionInProgressError, NamingCollisionExhaustion) as e:
        click.echo(f"❌ {e}")
        sys.exit(1)
    finally:
        pipeline.close()
    click.echo(f"{record.original_name}: {outcome} -> {record.overall_status.value}")


@cli.command()
@click.argument("record_id")
@click.option("--group", "-g", default=None, help="New group (empty string clears it)")
@click.option("--name", "-n", "new_name", default=None, help="New export name")
def edit(record_id: str, group: str, new_name: str):
    """Set the group and/or export name of a photo."""
    from .naming import DuplicateNameError
    from .pipeline import UNSET
    from .store import RecordNotFoundError

    pipeline = _build_pipeline()
    try:
        record = pipeline.edit_record(
            record_id,
            new_name=new_name if new_name is not None else UNSET,
            group=group if group is not None else UNSET,
        )
    except (RecordNotFoundError, DuplicateNameError) as e:
        click.echo(f"❌ {e}")
        sys.exit(1)
    finally:
        pipeline.close()
    click.echo(f"✅ {record.original_name}: {record.group or '-'} / {record.new_name or '-'} ({record.overall_status.value})")


@cli.command("list")
@click.option("--view", type=click.Choice(["all", "unknown", "conflict"]), default="all")
@click.option("--search", "-s", default=None, help="Substring of name or code")
def list_records(view: str, search: str):
    """List photos in capture order."""
    store = _open_store()
    records = store.list_by_filter(view=view, search=search)
    if not records:
        click.echo("No photos found.")
        return

    for r in records:
        click.echo(
            f"{r.id[:8]}  {r.capture_timestamp:%Y-%m-%d %H:%M:%S}  "
            f"{r.overall_status.value:<16} {r.original_name[:30]:<30} -> {r.new_name or '-'}"
        )


@cli.command()
def status():
    """Show counts by status."""
    from .status import count_by_status

    store = _open_store()
    by_status = count_by_status(store.all())

    click.echo("📊 Batch Status")
    click.echo("=" * 40)
    click.echo(f"Total photos: {store.count()}")
    for name, count in by_status.items():
        if count:
            click.echo(f"  {name:<17} {count}")

    from .naming import validate_export_names
    errors = validate_export_names(store.all())
    if errors:
        click.echo(f"\n⚠️  {len(errors)} export problems (first: {errors[0]})")


@cli.command()
@click.confirmation_option(prompt="Delete every photo record in the batch?")
def reset():
    """Delete the current batch."""
    count = _open_store().delete_all()
    click.echo(f"🧹 Deleted {count} records")


@cli.command()
@click.option("--port", "-p", default=None, type=int, help="API server port")
def serve(port: int):
    """Start the API server."""
    import uvicorn

    uvicorn.run("autolabel.main:app", host=settings.api_host, port=port or settings.api_port)


def main():
    cli()


if __name__ == "__main__":
    main()
