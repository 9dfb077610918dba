"""
Grid Step Generator
===================

Expands an x/y grid specification into per-frame generation parameters.

Each cell of an ``x_steps × y_steps`` grid becomes one FrameSpec carrying
the head rotation and pupil offset for that cell plus the rendering
parameters shared by the whole batch.

Layout:
    - Row-major: ``index = row * x_steps + col``
    - Column 0 / row 0 hit the negative bound, the last column / row the
      positive bound
    - A single-step axis sits at the midpoint (value 0)

Design Rules:
    - Pure and deterministic (identical inputs give identical output)
    - Values rounded to 2 decimals so filenames stay stable
    - No I/O, no remote calls
"""

from dataclasses import dataclass
from typing import Any, Dict, List


# Shared rendering defaults (mirrors GenerationConfig defaults)
DEFAULT_CROP_FACTOR = 1.7
DEFAULT_OUTPUT_QUALITY = 100
DEFAULT_OUTPUT_FORMAT = "png"


@dataclass(frozen=True, slots=True)
class FrameSpec:
    """
    Parameters for one frame of the generation grid.

    Immutable: generated once per batch and consumed by the orchestrator.

    Attributes:
        index: Row-major position in the grid (0-based)
        row: Grid row (pitch axis)
        col: Grid column (yaw axis)
        filename: Stable identifier derived from the angles
        rotate_yaw: Horizontal head rotation in degrees
        rotate_pitch: Vertical head rotation in degrees
        pupil_x: Horizontal pupil offset
        pupil_y: Vertical pupil offset
        crop_factor: Face crop factor
        output_quality: Output image quality (1-100)
        src_ratio: Source sampling ratio
        sample_ratio: Sample ratio
        output_format: Output image format
    """

    index: int
    row: int
    col: int
    filename: str
    rotate_yaw: float
    rotate_pitch: float
    pupil_x: float
    pupil_y: float
    crop_factor: float = DEFAULT_CROP_FACTOR
    output_quality: int = DEFAULT_OUTPUT_QUALITY
    src_ratio: float = 1.0
    sample_ratio: float = 1.0
    output_format: str = DEFAULT_OUTPUT_FORMAT

    def to_payload(self) -> Dict[str, Any]:
        """Wire representation used in ``progress`` events."""
        return {
            "filename": self.filename,
            "rotate_yaw": self.rotate_yaw,
            "rotate_pitch": self.rotate_pitch,
            "pupil_x": self.pupil_x,
            "pupil_y": self.pupil_y,
            "crop_factor": self.crop_factor,
            "output_quality": self.output_quality,
            "src_ratio": self.src_ratio,
            "sample_ratio": self.sample_ratio,
        }

    def model_input(self, image_uri: str) -> Dict[str, Any]:
        """
        Build the input payload for the expression-editing model.

        Args:
            image_uri: Source photo as a data URI (or URL)
        """
        return {
            "image": image_uri,
            "rotate_yaw": self.rotate_yaw,
            "rotate_pitch": self.rotate_pitch,
            "pupil_x": self.pupil_x,
            "pupil_y": self.pupil_y,
            "crop_factor": self.crop_factor,
            "output_quality": self.output_quality,
            "src_ratio": self.src_ratio,
            "sample_ratio": self.sample_ratio,
            "output_format": self.output_format,
        }


def _normalized(position: int, steps: int) -> float:
    """Position along an axis in [0, 1]; single-step axes sit at 0.5."""
    if steps > 1:
        return position / (steps - 1)
    return 0.5


def _scaled(norm: float, bound: float) -> float:
    value = round(-bound + norm * bound * 2, 2)
    # Avoid "-0.0" leaking into filenames
    return value + 0.0


def _fmt(value: float) -> str:
    """Format a value the way it appears in filenames (20.0 -> '20')."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def frame_filename(
    prefix: str,
    rotate_yaw: float,
    rotate_pitch: float,
    pupil_x: float,
    pupil_y: float,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
) -> str:
    """Stable filename for a frame, e.g. ``avatar_y-20_p0_px-15_py0.png``."""
    return (
        f"{prefix}_y{_fmt(rotate_yaw)}_p{_fmt(rotate_pitch)}"
        f"_px{_fmt(pupil_x)}_py{_fmt(pupil_y)}.{output_format}"
    )


def generate_steps(
    x_steps: int,
    y_steps: int,
    rotate_bound: float = 20.0,
    pupil_bound: float = 15.0,
    prefix: str = "avatar",
    crop_factor: float = DEFAULT_CROP_FACTOR,
    output_quality: int = DEFAULT_OUTPUT_QUALITY,
    src_ratio: float = 1.0,
    sample_ratio: float = 1.0,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
) -> List[FrameSpec]:
    """
    Generate the ordered frame specs for an ``x_steps × y_steps`` grid.

    Args:
        x_steps: Columns (yaw / pupil_x axis), >= 1
        y_steps: Rows (pitch / pupil_y axis), >= 1
        rotate_bound: Maximum absolute rotation in degrees, > 0
        pupil_bound: Maximum absolute pupil offset, > 0
        prefix: Filename prefix

    Returns:
        FrameSpecs in row-major order, ``len == x_steps * y_steps``

    Raises:
        ValueError: If steps < 1 or a bound is not positive
    """
    if x_steps < 1 or y_steps < 1:
        raise ValueError(f"Grid steps must be >= 1, got {x_steps}x{y_steps}")
    if rotate_bound <= 0 or pupil_bound <= 0:
        raise ValueError("rotate_bound and pupil_bound must be > 0")

    specs: List[FrameSpec] = []

    for y in range(y_steps):
        y_norm = _normalized(y, y_steps)
        rotate_pitch = _scaled(y_norm, rotate_bound)
        pupil_y = _scaled(y_norm, pupil_bound)

        for x in range(x_steps):
            x_norm = _normalized(x, x_steps)
            rotate_yaw = _scaled(x_norm, rotate_bound)
            pupil_x = _scaled(x_norm, pupil_bound)

            specs.append(
                FrameSpec(
                    index=y * x_steps + x,
                    row=y,
                    col=x,
                    filename=frame_filename(
                        prefix, rotate_yaw, rotate_pitch, pupil_x, pupil_y, output_format
                    ),
                    rotate_yaw=rotate_yaw,
                    rotate_pitch=rotate_pitch,
                    pupil_x=pupil_x,
                    pupil_y=pupil_y,
                    crop_factor=crop_factor,
                    output_quality=output_quality,
                    src_ratio=src_ratio,
                    sample_ratio=sample_ratio,
                    output_format=output_format,
                )
            )

    return specs


def calculate_cost(x_steps: int, y_steps: int, cost_per_image: float = 0.00098) -> float:
    """Estimated cost (USD) of generating an ``x_steps × y_steps`` grid."""
    return x_steps * y_steps * cost_per_image
