"""
Command-line interface for gyro/video synchronization.
"""

import sys
from pathlib import Path
from typing import Optional
import logging

import click
from tqdm import tqdm

from .config import ComputeParams, Config, SyncParams
from .dataset import load_gyro, load_optical_flow
from .frame_results import FrameResultStore
from .gyro_source import SharedGyroSource
from .lens_profile import LensProfile, load_lens_profile
from .rs_sync import find_offsets, guess_orientation, median_offset
from .sync_ranges import plan_sync_ranges, ranges_around


# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


_SYNC_OPTIONS = [
    click.argument("flow_path", type=click.Path(exists=True, path_type=Path)),
    click.argument("gyro_path", type=click.Path(exists=True, path_type=Path)),
    click.option("-c", "--config", type=click.Path(exists=True, path_type=Path), help="Configuration YAML file"),
    click.option("--lens", type=click.Path(exists=True, path_type=Path), help="Lens profile JSON"),
    click.option("--fps", type=float, help="Video frame rate"),
    click.option("--readout-ms", type=float, help="Frame readout time in ms (0 = derive from fps)"),
    click.option("--initial-offset", type=float, help="Initial offset in ms"),
    click.option("--search-size", type=float, help="Search half-width in ms"),
    click.option("--orientation", type=str, help="IMU orientation, e.g. XYZ or yXz"),
    click.option("--sync-points", type=str, help="Comma separated window centers in ms"),
    click.option("-v", "--verbose", is_flag=True, help="Enable verbose output"),
]


def sync_options(func):
    """Options shared by the commands that run a synchronization."""
    for decorator in reversed(_SYNC_OPTIONS):
        func = decorator(func)
    return func


def _load_config(
    config: Optional[Path],
    fps: Optional[float],
    readout_ms: Optional[float],
    initial_offset: Optional[float],
    search_size: Optional[float],
    orientation: Optional[str],
    verbose: bool,
) -> Config:
    cfg = Config.from_yaml(config) if config else Config()

    # Apply command-line overrides
    if fps is not None:
        cfg.video.fps = fps
    if readout_ms is not None:
        cfg.video.frame_readout_time_ms = readout_ms
    if initial_offset is not None or search_size is not None:
        cfg.sync = SyncParams(
            initial_offset=cfg.sync.initial_offset if initial_offset is None else initial_offset,
            search_size=cfg.sync.search_size if search_size is None else search_size,
            time_per_syncpoint=cfg.sync.time_per_syncpoint,
            max_sync_points=cfg.sync.max_sync_points,
            guess_orientation=cfg.sync.guess_orientation,
        )
    if orientation is not None:
        cfg.gyro.imu_orientation = orientation
    cfg.verbose = cfg.verbose or verbose

    if cfg.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    return cfg


def _build_lens(cfg: Config, lens_path: Optional[Path], store: FrameResultStore) -> LensProfile:
    path = lens_path or cfg.video.lens_profile
    if path:
        lens = load_lens_profile(Path(path))
    else:
        first = store.get(store.first_timestamp) if len(store) else None
        width, height = first.frame_size if first is not None else (1920, 1080)
        focal = cfg.video.focal_length_px or float(width)
        logger.info(f"No lens profile given, assuming pinhole with focal length {focal:.1f}px")
        lens = LensProfile.pinhole(width, height, focal)

    if cfg.video.global_shutter:
        lens.global_shutter = True
    return lens


def _prepare(cfg: Config, flow_path: Path, gyro_path: Path, lens_path: Optional[Path], sync_points: Optional[str]):
    store = load_optical_flow(flow_path)
    gyro = load_gyro(gyro_path, cfg.gyro)
    lens = _build_lens(cfg, lens_path, store)

    params = ComputeParams(
        gyro=SharedGyroSource(gyro),
        lens=lens,
        scaled_fps=cfg.video.fps,
        frame_readout_time=cfg.video.frame_readout_time_ms or lens.frame_readout_time,
    )

    if sync_points:
        centers = [float(v) for v in sync_points.split(",") if v.strip()]
        ranges = ranges_around(centers, cfg.sync.time_per_syncpoint)
    else:
        duration_ms = (store.last_timestamp or 0) / 1000.0
        ranges = plan_sync_ranges(duration_ms, cfg.sync)

    return store, params, ranges


def _progress_bar(desc: str, verbose: bool):
    bar = tqdm(total=100, desc=desc, unit="%", disable=not verbose)

    def progress_callback(progress: float):
        bar.n = round(progress * 100.0, 1)
        bar.refresh()

    return bar, progress_callback


@click.group()
@click.version_option(version="0.1.0")
def main():
    """gyrosync - Gyroscope to video time offset estimation."""
    pass


@main.command()
@sync_options
@click.option("--guess-orientation", is_flag=True, help="Find the IMU orientation before syncing")
def offsets(
    flow_path: Path,
    gyro_path: Path,
    config: Optional[Path],
    lens: Optional[Path],
    fps: Optional[float],
    readout_ms: Optional[float],
    initial_offset: Optional[float],
    search_size: Optional[float],
    orientation: Optional[str],
    sync_points: Optional[str],
    verbose: bool,
    guess_orientation: bool,
):
    """
    Estimate the gyro offset for each sync window.

    FLOW_PATH: Optical flow JSON, GYRO_PATH: gyro CSV
    """
    cfg = _load_config(config, fps, readout_ms, initial_offset, search_size, orientation, verbose)

    try:
        store, params, ranges = _prepare(cfg, flow_path, gyro_path, lens, sync_points)

        if guess_orientation or cfg.sync.guess_orientation:
            best = _run_guess(cfg, store, params, ranges)
            if best is not None:
                with params.gyro.write() as gyro:
                    gyro.set_orientation(best[0])
                    gyro.apply_transforms()

        bar, progress_callback = _progress_bar("Syncing", cfg.verbose)
        with bar:
            results = find_offsets(ranges, store, cfg.sync, params, progress_callback)

    except Exception as e:
        click.echo(click.style(f"✗ Error: {e}", fg="red"))
        if cfg.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    if not results:
        click.echo(click.style("✗ No sync point produced an offset.", fg="red"))
        sys.exit(1)

    click.echo(f"Offsets ({len(results)}/{len(ranges)} windows):")
    for center, offset, cost in results:
        click.echo(f"  {center:9.3f}s  offset={offset:9.3f} ms  cost={cost:.6f}")
    click.echo(click.style(f"✓ Median offset: {median_offset(results):.3f} ms", fg="green"))


@main.command("guess-orientation")
@sync_options
def guess_orientation_cmd(
    flow_path: Path,
    gyro_path: Path,
    config: Optional[Path],
    lens: Optional[Path],
    fps: Optional[float],
    readout_ms: Optional[float],
    initial_offset: Optional[float],
    search_size: Optional[float],
    orientation: Optional[str],
    sync_points: Optional[str],
    verbose: bool,
):
    """
    Find the IMU mounting orientation that best matches the video motion.

    FLOW_PATH: Optical flow JSON, GYRO_PATH: gyro CSV
    """
    cfg = _load_config(config, fps, readout_ms, initial_offset, search_size, orientation, verbose)

    try:
        store, params, ranges = _prepare(cfg, flow_path, gyro_path, lens, sync_points)
        best = _run_guess(cfg, store, params, ranges)
    except Exception as e:
        click.echo(click.style(f"✗ Error: {e}", fg="red"))
        if cfg.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    if best is None:
        click.echo(click.style("✗ Not enough data to guess the orientation.", fg="red"))
        sys.exit(1)

    click.echo(click.style(f"✓ Orientation: {best[0]}", fg="green"))
    click.echo(f"  Cost: {best[1]:.6f}")


def _run_guess(cfg: Config, store, params: ComputeParams, ranges):
    bar, progress_callback = _progress_bar("Orientation", cfg.verbose)
    with bar:
        return guess_orientation(ranges, store, cfg.sync, params, progress_callback)


@main.command()
@click.argument("output_path", type=click.Path(path_type=Path))
def init_config(output_path: Path):
    """
    Create a default configuration file.
    """
    cfg = Config()
    cfg.to_yaml(output_path)
    click.echo(f"Created configuration file: {output_path}")


if __name__ == "__main__":
    main()
