#!/usr/bin/env python3
"""
Batch Streaming Client
======================

Standalone script that drives a running Avatar3D service end to end.

This script:
    1. Uploads a photo to /generate-batch
    2. Reads the event stream as frames finish
    3. Logs progress per frame
    4. Writes every frame to disk under its grid filename
    5. Reports a final summary

Prerequisites:
    - The service must be running (``python -m avatar3d.main``)
    - Use AVATAR3D_BACKEND=mock to try it without a Replicate token

Usage:
    python scripts/stream_batch.py photo.jpg
    python scripts/stream_batch.py photo.jpg --x-steps 3 --y-steps 3 --out frames/
"""

import argparse
import asyncio
import base64
import logging
import os
import sys
import time
from pathlib import Path

import httpx

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from avatar3d.models import ProgressEvent, parse_event
from avatar3d.stream import FrameAssembler, aiter_sse_payloads


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_batch(
    url: str,
    image_path: Path,
    x_steps: int,
    y_steps: int,
    prefix: str,
    out_dir: Path,
) -> dict:
    """
    Stream one batch and save its frames.

    Args:
        url: Base URL of the service
        image_path: Photo to upload
        x_steps: Grid columns
        y_steps: Grid rows
        prefix: Frame filename prefix
        out_dir: Directory for the generated frames

    Returns:
        Final summary dict
    """
    logger.info("=" * 60)
    logger.info("Avatar3D Batch Stream")
    logger.info("=" * 60)
    logger.info(f"Service URL: {url}")
    logger.info(f"Photo: {image_path}")
    logger.info(f"Grid: {x_steps}x{y_steps}")
    logger.info(f"Output: {out_dir}")
    logger.info("=" * 60)

    payload = {
        "imageBase64": base64.b64encode(image_path.read_bytes()).decode("ascii"),
        "xSteps": x_steps,
        "ySteps": y_steps,
        "prefix": prefix,
    }

    out_dir.mkdir(parents=True, exist_ok=True)
    assembler = FrameAssembler()
    start_time = time.time()

    # No read timeout: frames can take minutes under rate limiting
    timeout = httpx.Timeout(30.0, read=None)
    async with httpx.AsyncClient(base_url=url, timeout=timeout) as client:
        async with client.stream("POST", "/generate-batch", json=payload) as response:
            if response.status_code != 200:
                body = await response.aread()
                raise RuntimeError(f"Request failed ({response.status_code}): {body.decode(errors='replace')}")

            async for data in aiter_sse_payloads(response.aiter_lines()):
                event = parse_event(data)
                assembler.feed(event)

                if isinstance(event, ProgressEvent):
                    if event.ok:
                        (out_dir / event.step.filename).write_bytes(base64.b64decode(event.image_base64))
                        logger.info(
                            f"[{event.completed}/{event.total}] frame {event.index} "
                            f"-> {event.step.filename}"
                        )
                    else:
                        logger.warning(
                            f"[{event.completed}/{event.total}] frame {event.index} failed: {event.error}"
                        )
                elif event.type == "config":
                    logger.info(
                        f"Batch accepted: {event.config.total_images} frames, "
                        f"est. cost ${event.config.estimated_cost:.4f}"
                    )

                if assembler.finished:
                    break

    total_time = time.time() - start_time
    saved = len(assembler.frames) - len(assembler.dropped)

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Frames saved: {saved}/{assembler.total}")
    logger.info(f"Frames failed: {len(assembler.dropped)} {sorted(assembler.dropped)}")
    if assembler.error:
        logger.error(f"Batch error: {assembler.error}")
    logger.info("=" * 60)

    return {
        "duration": total_time,
        "total": assembler.total,
        "saved": saved,
        "failed": sorted(assembler.dropped),
        "error": assembler.error,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Generate an avatar frame grid through a running Avatar3D service"
    )
    parser.add_argument("image", type=Path, help="Photo to upload")
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("AVATAR3D_URL", "http://localhost:8001"),
        help="Base URL of the service (default: http://localhost:8001)",
    )
    parser.add_argument("--x-steps", type=int, default=5, help="Grid columns (default: 5)")
    parser.add_argument("--y-steps", type=int, default=5, help="Grid rows (default: 5)")
    parser.add_argument("--prefix", type=str, default="avatar", help="Frame filename prefix")
    parser.add_argument(
        "--out",
        type=Path,
        default=Path("frames"),
        help="Output directory (default: ./frames)",
    )

    args = parser.parse_args()

    try:
        summary = asyncio.run(run_batch(
            url=args.url,
            image_path=args.image,
            x_steps=args.x_steps,
            y_steps=args.y_steps,
            prefix=args.prefix,
            out_dir=args.out,
        ))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)

    sys.exit(0 if summary["error"] is None and summary["saved"] > 0 else 1)


if __name__ == "__main__":
    main()
