"""
Grid Module
===========

Deterministic expansion of a head-rotation grid into per-frame parameters.

Example:
    from avatar3d.grid import generate_steps

    specs = generate_steps(x_steps=5, y_steps=5, rotate_bound=20, pupil_bound=15)
    assert specs[12].rotate_yaw == 0
"""

from avatar3d.grid.steps import FrameSpec, calculate_cost, frame_filename, generate_steps


__all__ = [
    "FrameSpec",
    "calculate_cost",
    "frame_filename",
    "generate_steps",
]
