from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from tqdm import tqdm

from .background import BackgroundSnapshot, load_background
from .camera import OpenCVCamera
from .config import get_inference_timeout_s, get_tick_hz
from .contracts import EnhancementMode, EnhancementSetting, SessionConfig
from .display import OpenCVWindowSink, run_window
from .errors import BackgroundLoadError, MaskUnavailable, ModelInitError
from .pipeline import process_image
from .scheduler import IntervalTicker
from .service import create_service
from .session import LiveSession

logger = logging.getLogger("live_composite")


def _iter_images(input_dir: Path):
    exts = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}
    for p in sorted(input_dir.rglob("*")):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--model",
        default="ellipse",
        type=str,
        help="Segmentation model: 'ellipse' (synthetic), 'hf:<repo>' or a TorchScript file path.",
    )
    parser.add_argument("--background", default="green", type=str, help="Preset (green/office/beach), path or URL.")
    parser.add_argument(
        "--enhance",
        default=EnhancementMode.GAMMA.value,
        choices=[m.value for m in EnhancementMode],
        help="Foreground enhancement.",
    )
    parser.add_argument("--gamma", default=1.5, type=float, help="Gamma exponent for --enhance gamma.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Real-time camera background replacement.")
    parser.add_argument("--log-level", default="INFO", type=str, help="Logging level.")
    sub = parser.add_subparsers(dest="command", required=True)

    live = sub.add_parser("live", help="Composite the camera feed in a window.")
    _add_common(live)
    live.add_argument("--camera", default=0, type=int, help="Camera index.")
    live.add_argument("--width", default=1280, type=int)
    live.add_argument("--height", default=720, type=int)
    live.add_argument("--fps", default=None, type=float, help="Refresh rate (default 60).")
    live.add_argument("--timeout", default=None, type=float, help="Inference timeout in seconds.")
    live.add_argument("--paused", action="store_true", help="Start paused (space to run).")

    still = sub.add_parser("still", help="Composite every image in a directory.")
    _add_common(still)
    still.add_argument("--input", required=True, type=str, help="Input directory containing images.")
    still.add_argument("--output", required=True, type=str, help="Output directory for composited PNGs.")
    return parser


def _session_config(args) -> SessionConfig:
    return SessionConfig(
        model=args.model,
        camera_index=args.camera,
        width=args.width,
        height=args.height,
        background=args.background,
        enhancement=EnhancementSetting(mode=args.enhance, gamma=args.gamma),
        tick_hz=args.fps or get_tick_hz(),
        inference_timeout_s=args.timeout or get_inference_timeout_s(),
        start_running=not args.paused,
    )


async def run_live(config: SessionConfig) -> int:
    sink = OpenCVWindowSink()
    camera = OpenCVCamera(config.camera_index, config.width, config.height)
    session = LiveSession(
        service=create_service(config.model),
        camera=camera,
        sink=sink,
        enhancement=config.enhancement,
        ticker=IntervalTicker(config.tick_hz),
        inference_timeout_s=config.inference_timeout_s,
    )
    try:
        session.set_running(config.start_running)
        background = asyncio.create_task(session.select_background(config.background))
        if not await session.start():
            logger.error("Startup failed: %s", session.readiness.state.error)
            return 1
        await background
        await run_window(session, sink)
    finally:
        await session.close()
    stats = session.scheduler.stats
    logger.info("Drawn %d frames (%d skipped, %d dropped)", stats.frames_drawn, stats.cycles_skipped, stats.results_dropped)
    return 0


def run_still(args) -> int:
    input_dir = Path(args.input)
    output_dir = Path(args.output)
    if not input_dir.exists():
        raise FileNotFoundError(f"Input dir not found: {input_dir}")

    background: Optional[BackgroundSnapshot] = None
    try:
        background = load_background(args.background)
    except BackgroundLoadError as e:
        logger.warning("%s; using fallback fill", e)
    enhancement = EnhancementSetting(mode=args.enhance, gamma=args.gamma)

    service = create_service(args.model)
    try:
        asyncio.run(service.initialize())
    except ModelInitError as e:
        logger.error("%s", e)
        return 1

    images = list(_iter_images(input_dir))
    if not images:
        print(f"No images found under {input_dir}")
        return 0

    failed = 0
    total0 = time.perf_counter()
    try:
        for img_path in tqdm(images, desc="Compositing", unit="img"):
            rel = img_path.relative_to(input_dir)
            out_path = (output_dir / rel).with_suffix(".png")
            try:
                timings = process_image(str(img_path), str(out_path), service, background, enhancement)
            except MaskUnavailable as e:
                failed += 1
                logger.warning("%s: no mask (%s)", img_path.name, e)
                continue
            logger.debug(
                "%s: total=%.3fs (load=%.3fs inf=%.3fs rec=%.3fs comp=%.3fs)",
                img_path.name,
                timings.total_s,
                timings.load_s,
                timings.inference_s,
                timings.reconcile_s,
                timings.composite_s,
            )
    finally:
        service.dispose()

    total1 = time.perf_counter()
    print(f"Done. {len(images) - failed}/{len(images)} images in {total1 - total0:.2f}s")
    return 0


def main(argv=None) -> int:
    load_dotenv()
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    if args.command == "still":
        return run_still(args)
    return asyncio.run(run_live(_session_config(args)))


if __name__ == "__main__":
    raise SystemExit(main())
