import logging
from pathlib import Path

import click

from crowdscan.base.exceptions import CrowdScanError
from crowdscan.base.progress import configure, progress_callback
from crowdscan.keyframes.extractor import KeyframeOptions, extract_keyframes_from_path
from crowdscan.utils.logger import setup_logger

logger = logging.getLogger(__name__)


@click.command(help="Extracts informative keyframes from a venue video.")
@click.argument(
    "video_path",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, readable=True),
)
@click.option(
    "-o",
    "--output-dir",
    default="keyframes",
    show_default=True,
    help="Directory to save extracted frames.",
    type=click.Path(file_okay=False, dir_okay=True, writable=True),
)
@click.option("-n", "--max-frames", default=None, type=int, help="Maximum number of keyframes.")
@click.option("-r", "--sample-rate", default=None, type=float, help="Samples per second scanned.")
@click.option("-s", "--size", "default_size", default=None, type=int, help="Maximum output edge in pixels.")
@click.option(
    "--rotation",
    default=None,
    type=click.Choice(["0", "90", "180", "270"]),
    help="Clockwise rotation of output frames.",
)
@click.option("--seek-timeout", default=None, type=float, help="Seconds to wait for each seek.")
@click.option("--data-urls", is_flag=True, help="Print base64 data URLs instead of writing files.")
@click.option("-v", "--verbose", is_flag=True, help="Print extraction details.")
def extract_keyframes(
    video_path: str,
    output_dir: str,
    max_frames: int | None,
    sample_rate: float | None,
    default_size: int | None,
    rotation: str | None,
    seek_timeout: float | None,
    data_urls: bool,
    verbose: bool,
):
    setup_logger()
    configure(verbose=verbose, progress=not data_urls)

    overrides = {
        "max_frames": max_frames,
        "sample_rate": sample_rate,
        "default_size": default_size,
        "rotation": int(rotation) if rotation is not None else None,
        "seek_timeout": seek_timeout,
    }
    on_progress, close_progress = progress_callback(desc="Extracting keyframes")
    try:
        options = KeyframeOptions.from_config(
            on_progress=on_progress,
            **{key: value for key, value in overrides.items() if value is not None},
        )
        frames = extract_keyframes_from_path(video_path, options)
    except (CrowdScanError, ValueError) as e:
        raise click.ClickException(str(e))
    finally:
        close_progress()

    logger.info("Extracted %d keyframes from %s", len(frames), video_path)
    if not frames:
        click.echo("No keyframes extracted.")
        return

    if data_urls:
        for frame in frames:
            click.echo(frame.to_data_url())
        return

    for i, frame in enumerate(frames):
        path = frame.save(Path(output_dir) / f"frame_{i:03d}.jpg")
        click.echo(f"{path} @ {frame.timestamp:.2f}s ({frame.width}x{frame.height})")


if __name__ == "__main__":
    extract_keyframes()
