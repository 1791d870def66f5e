"""CLI entry point for Links2Media."""

import asyncio
import sys
from pathlib import Path

import click

from .config import settings
from .errors import UnsupportedURLError
from .pipeline import Links2MediaPipeline
from .router import Router
from .schemas.result import ParseMode
from .storage import ClickNotifier, DirectoryMediaStore, JsonHistoryStore
from .utils.file_utils import ensure_directory, read_url_list
from .utils.logging_setup import get_logger, setup_logging


def _mode(cover: bool) -> ParseMode:
    return ParseMode.COVER_IMAGE if cover else ParseMode.ARTICLE_IMAGES


@click.group()
@click.version_option(version="0.1.0", prog_name="links2media")
def cli():
    """Links2Media - Resolve social-media post links and download their media."""
    pass


@cli.command()
@click.argument("urls", nargs=-1)
@click.option(
    "--file",
    "-f",
    "url_file",
    type=click.Path(exists=True, path_type=Path),
    help="Text file with one URL per line",
)
@click.option("--cover", is_flag=True, help="Only fetch the cover / first media item")
@click.option("--cookie", default=None, help="Raw cookie string for the platform")
@click.option(
    "--output",
    "-o",
    "output_dir",
    type=click.Path(path_type=Path),
    help="Output directory (overrides .env setting)",
)
@click.option(
    "--gallery",
    "gallery_dir",
    type=click.Path(path_type=Path),
    help="Also copy saved media into this gallery folder",
)
@click.option("--force", is_flag=True, help="Download again even if the URL is in history")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose (DEBUG) logging",
)
def download(
    urls: tuple[str, ...],
    url_file: Path | None,
    cover: bool,
    cookie: str | None,
    output_dir: Path | None,
    gallery_dir: Path | None,
    force: bool,
    verbose: bool,
):
    """
    Download the media of one or more post URLs.

    URLs may also be whole share texts; the first link inside is used.
    """
    if output_dir:
        settings.output_dir = output_dir
    if verbose:
        settings.log_level = "DEBUG"

    setup_logging()
    logger = get_logger(__name__)

    targets = list(urls) + (read_url_list(url_file) if url_file else [])
    if not targets:
        click.echo("Error: no URLs given", err=True)
        sys.exit(2)

    async def _run():
        pipeline = Links2MediaPipeline(
            history=JsonHistoryStore(settings.history_file),
            media_store=DirectoryMediaStore(gallery_dir) if gallery_dir else None,
            notifier=ClickNotifier(),
            output_dir=settings.output_dir,
        )
        async with pipeline:
            return await pipeline.process_many(targets, mode=_mode(cover), cookie=cookie, skip_existing=not force)

    try:
        outcomes = asyncio.run(_run())
    except Exception as e:
        logger.exception("Pipeline failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo("")
    click.echo("=" * 50)
    click.echo("Download Complete")
    click.echo("=" * 50)
    for outcome in outcomes:
        click.echo(f"[{outcome.status}] {outcome.url}")
        for path in outcome.saved_paths:
            click.echo(f"    saved  {path}")
        for url in outcome.failed_urls:
            click.echo(f"    failed {url}")
        if outcome.message and not outcome.saved_paths:
            click.echo(f"    {outcome.message}")
    click.echo(f"Output directory: {settings.output_dir}")

    if any(outcome.status in ("failed", "partial") for outcome in outcomes):
        sys.exit(1)


@cli.command()
@click.argument("url")
def resolve(url: str):
    """Show which parser handles a URL, without any network access."""
    setup_logging()
    router = Router()
    info = router.resolve_info(url)
    click.echo(info.model_dump_json(indent=2))
    asyncio.run(router.aclose())
    if not info.supported:
        sys.exit(1)


@cli.command()
@click.argument("url")
@click.option("--cover", is_flag=True, help="Stop at the cover / first media item")
@click.option("--cookie", default=None, help="Raw cookie string for the platform")
def parse(url: str, cover: bool, cookie: str | None):
    """Parse a single URL and print the media links as JSON."""
    setup_logging()

    async def _run():
        async with Links2MediaPipeline() as pipeline:
            return await pipeline.parse_url(url, mode=_mode(cover), cookie=cookie)

    try:
        result = asyncio.run(_run())
    except UnsupportedURLError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(result.model_dump_json(indent=2))
    if not result.has_media:
        sys.exit(1)


@cli.command()
@click.option("--page", default=0, show_default=True, help="Zero-based page number")
@click.option("--size", default=20, show_default=True, help="Records per page")
@click.option("--delete", "delete_url", default=None, help="Remove the record of this URL")
def history(page: int, size: int, delete_url: str | None):
    """List (or delete) download history records, newest first."""
    store = JsonHistoryStore(settings.history_file)

    if delete_url:
        removed = store.delete(delete_url)
        click.echo("Deleted" if removed else "Not found")
        return

    records = store.page(page, size)
    if not records:
        click.echo("No history records")
        return
    for record in records:
        click.echo(f"{record.created_at:%Y-%m-%d %H:%M}  [{record.platform.value}] {record.title}")
        click.echo(f"    {record.url}  ({len(record.saved_paths)} files)")


@cli.command()
def init():
    """Initialize project directories and create example files."""
    ensure_directory(settings.output_dir)
    ensure_directory(settings.log_dir)
    ensure_directory(settings.log_dir / "json")
    ensure_directory(settings.log_dir / "text")

    urls_file = Path("urls.txt")
    if not urls_file.exists():
        urls_file.write_text(
            "# Add post URLs to download, one per line\n"
            "# Examples:\n"
            "# https://mp.weixin.qq.com/s/xxxxxxxx\n"
            "# https://www.xiaohongshu.com/explore/xxxxxxxxxxxxxxxxxxxxxxxx\n"
            "# https://v.douyin.com/xxxxxxx/\n",
            encoding="utf-8",
        )

    click.echo("Initialized Links2Media directories:")
    click.echo(f"  Output: {settings.output_dir}")
    click.echo(f"  Logs:   {settings.log_dir}")
    click.echo("")
    click.echo(f"Add URLs to {urls_file} and run: links2media download -f {urls_file}")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
