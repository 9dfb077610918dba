"""
Restyle Prompts
===============

Prompt text for the photo restyling step that runs before frame generation.
"""

from typing import Optional


BASE_STYLE = (
    "3D animated Pixar-style character, Disney Pixar animation style, smooth skin, "
    "big expressive eyes, soft lighting, front facing, looking directly at camera, "
    "neutral expression, centered on pure black background"
)

LIKENESS = (
    "Keep the same facial features and likeness but as a 3D animated cartoon character."
)


def build_restyle_prompt(full_body: bool = False, style_prompt: Optional[str] = None) -> str:
    """
    Build the restyle prompt.

    Args:
        full_body: Render head to feet instead of a portrait
        style_prompt: Optional user addition appended to the base style
    """
    custom = f", {style_prompt.strip()}" if style_prompt and style_prompt.strip() else ""

    if full_body:
        return (
            f"Transform this person into a full body {BASE_STYLE}. "
            f"Show the complete body from head to feet, natural relaxed standing pose, "
            f"arms at sides. Full body visible{custom}. {LIKENESS}"
        )

    return f"Transform this person into a {BASE_STYLE}{custom}. {LIKENESS}"
