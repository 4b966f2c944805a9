"""
Command-line interface.

Usage:
    smart-batch-crop export photos/*.jpg --width 1080 --height 1080 --out exports/
    smart-batch-crop analyze photos/*.jpg --width 1920 --height 1080
    smart-batch-crop gui
"""

import logging
from pathlib import Path

import typer

from smart_batch_crop.analyzer import SaliencyAnalyzer
from smart_batch_crop.collection import ImageCollection
from smart_batch_crop.config import (
    DEFAULT_CONCURRENCY, OUTPUT_FORMATS, QUALITY_DEFAULT, QUALITY_MAX, QUALITY_MIN,
    TARGET_WIDTH_DEFAULT, TARGET_HEIGHT_DEFAULT, TARGET_SIZE_MAX,
    EXPORT_PREFIX_DEFAULT, EXPORT_SUFFIX_DEFAULT, EXPORT_START_INDEX_DEFAULT,
)
from smart_batch_crop.errors import NoImagesToExport, RasterizationFailed
from smart_batch_crop.exporter import export_images, write_export
from smart_batch_crop.image_io import is_supported_file
from smart_batch_crop.models import AppSettings, ExportSettings, crop_rect
from smart_batch_crop.persistence import LocalPersistence

app = typer.Typer(add_completion=False, no_args_is_help=True, help="Batch crop images to one aspect ratio.")
LOGGER = logging.getLogger("smart_batch_crop")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _resolve_format(fmt: str) -> str:
    f = fmt.lower()
    if f == "jpg":
        f = "jpeg"
    if f not in OUTPUT_FORMATS:
        raise typer.BadParameter(f"format must be one of {', '.join(OUTPUT_FORMATS)}, got {fmt!r}")
    return f


def _collect_inputs(files: list[Path]) -> list[Path]:
    """Expand directories (non-recursive) and keep supported image files."""
    paths: list[Path] = []
    for item in files:
        if item.is_dir():
            paths.extend(sorted(p for p in item.iterdir() if p.is_file() and is_supported_file(p)))
        elif is_supported_file(item):
            paths.append(item)
        else:
            LOGGER.warning("Skipping unsupported file %s", item)
    return paths


def _report_failures(failures: list[tuple[str, str]], label: str) -> None:
    if not failures:
        return
    typer.secho(f"{label}:", fg=typer.colors.RED)
    for name, reason in failures:
        typer.secho(f"  {name}: {reason}", fg=typer.colors.RED)


@app.command()
def export(
    files: list[Path] = typer.Argument(..., exists=True, resolve_path=True, help="Image files or folders."),
    out: Path = typer.Option(Path("."), "--out", help="Output directory."),
    width: int = typer.Option(TARGET_WIDTH_DEFAULT, "--width", min=1, max=TARGET_SIZE_MAX),
    height: int = typer.Option(TARGET_HEIGHT_DEFAULT, "--height", min=1, max=TARGET_SIZE_MAX),
    output_format: str = typer.Option("jpeg", "--format", help="jpeg|png|webp"),
    quality: int = typer.Option(QUALITY_DEFAULT, "--quality", min=QUALITY_MIN, max=QUALITY_MAX),
    prefix: str = typer.Option(EXPORT_PREFIX_DEFAULT, "--prefix"),
    suffix: str = typer.Option(EXPORT_SUFFIX_DEFAULT, "--suffix"),
    start_index: int = typer.Option(EXPORT_START_INDEX_DEFAULT, "--start-index", min=0),
    smart: bool = typer.Option(True, "--smart/--no-smart", help="Detect framing automatically."),
    concurrency: int = typer.Option(DEFAULT_CONCURRENCY, "--concurrency", min=1, help="Parallel detector runs."),
    remember: bool = typer.Option(True, "--remember/--no-remember", help="Reuse and store framings per image content."),
    log_level: str = typer.Option("warning", "--log-level"),
) -> None:
    """Crop every image to WIDTHxHEIGHT and write one file, or a ZIP for several."""
    _setup_logging(log_level)
    fmt = _resolve_format(output_format)

    settings = AppSettings(
        enable_smart_crop=smart,
        export=ExportSettings(
            format=fmt, quality=quality, target_w=width, target_h=height,
            prefix=prefix, suffix=suffix, start_index=start_index,
        ),
    )
    collection = ImageCollection(
        analyzer=SaliencyAnalyzer(max_workers=concurrency),
        persistence=LocalPersistence() if remember else None,
        settings=settings,
        concurrency=concurrency,
    )
    try:
        report = collection.add_files(_collect_inputs(files))
        _report_failures(report.failed, "Could not load")
        collection.wait_for_analysis()

        def progress(done: int, total: int) -> None:
            typer.echo(f"Exported {done}/{total}")

        try:
            result = export_images(list(collection.images), settings.export, progress, collection=collection)
        except NoImagesToExport as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            raise typer.Exit(1)
        except RasterizationFailed as exc:
            typer.secho(f"Export failed: {exc}", err=True, fg=typer.colors.RED)
            raise typer.Exit(1)

        path = write_export(result, out)
        typer.echo(f"Done. exported={len(result.exported)} failed={len(result.failed)} -> {path}")
        _report_failures(result.failed, "Failures")
        if result.failed or report.failed:
            raise typer.Exit(1)
    finally:
        collection.shutdown()


@app.command()
def analyze(
    files: list[Path] = typer.Argument(..., exists=True, resolve_path=True),
    width: int = typer.Option(TARGET_WIDTH_DEFAULT, "--width", min=1, max=TARGET_SIZE_MAX),
    height: int = typer.Option(TARGET_HEIGHT_DEFAULT, "--height", min=1, max=TARGET_SIZE_MAX),
    concurrency: int = typer.Option(DEFAULT_CONCURRENCY, "--concurrency", min=1),
    log_level: str = typer.Option("warning", "--log-level"),
) -> None:
    """Print the suggested framing and crop rectangle for each image."""
    _setup_logging(log_level)
    collection = ImageCollection(
        analyzer=SaliencyAnalyzer(max_workers=concurrency),
        settings=AppSettings(enable_smart_crop=True, export=ExportSettings(target_w=width, target_h=height)),
        concurrency=concurrency,
    )
    try:
        report = collection.add_files(_collect_inputs(files))
        collection.wait_for_analysis()
        for image in collection.images:
            f = image.framing
            rect = crop_rect(image.img_w, image.img_h, f)
            status = "smart" if image.saliency is not None else "fit"
            typer.echo(
                f"{image.name}: {status} center=({f.center_x:.3f}, {f.center_y:.3f}) "
                f"zoom={f.zoom:.2f} crop={rect.x},{rect.y} {rect.w}x{rect.h}"
            )
        _report_failures(report.failed, "Could not load")
        if report.failed:
            raise typer.Exit(1)
    finally:
        collection.shutdown()


@app.command()
def gui() -> None:
    """Launch the desktop editor."""
    try:
        from smart_batch_crop.app import main as launch_gui
    except ImportError as exc:
        typer.secho(f"GUI is unavailable: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(1)
    launch_gui()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
