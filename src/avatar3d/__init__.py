"""
Avatar3D
========

Turns a single photo into a grid of head-rotation frames (for a
cursor-following avatar) or a textured 3D model, using hosted image models.

Components:
    - grid: Expands an x/y grid into per-frame rotation parameters
    - remote: Hosted model clients (Replicate) and a local mock
    - orchestrator: Bounded-concurrency batch execution with retries
    - stream: Server-sent event transport and client-side reader
    - storage: Preprocess cache and render history
    - images: Base64 / data URI handling and thumbnails

Example:
    from avatar3d.config import settings
    from avatar3d.grid import generate_steps

    specs = generate_steps(settings.generation.x_steps, settings.generation.y_steps)

    # The HTTP service is started via main.py
"""

__version__ = "0.1.0"
__author__ = "Avatar3D Project"

__all__ = [
    "__version__",
]
