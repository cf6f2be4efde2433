"""Sketch-to-artwork prompt templates.

Builds the final text prompt sent alongside the sketch. The sketch must stay
the structural foundation of the generated image; the style only dresses it.

Examples:
    >>> from soulcanvas.prompts.sketch import build_final_prompt
    >>> prompt = build_final_prompt("watercolor, soft pastel palette", "a cat on a roof")
"""

from __future__ import annotations

USER_PROMPT_MAX_LENGTH = 500

SKETCH_PRESERVATION_INSTRUCTIONS = ". ".join(
    [
        "Transform this hand-drawn sketch into a complete artwork",
        "Preserve the original sketch structure, outlines, shapes, and composition",
        "Use the sketch lines as the foundation and main subject of the image",
        "Maintain the proportions and positioning from the original drawing",
        "Keep the core elements and silhouette of the sketch recognizable",
    ]
)

ENHANCEMENT_INSTRUCTIONS = ". ".join(
    [
        "Enhance and refine the sketch with professional quality details",
        "Add appropriate lighting, shadows, and depth while respecting the original forms",
        "Seamlessly blend the artistic style with the user creation",
        "Fill in details naturally based on the sketch context",
    ]
)

QUALITY_INSTRUCTIONS = "High quality, detailed, professional artwork"


def _sanitize(user_prompt: str | None) -> str:
    if not user_prompt:
        return ""
    return user_prompt.strip()[:USER_PROMPT_MAX_LENGTH]


def build_final_prompt(style_prompt: str, user_prompt: str | None = None) -> str:
    """Build the full prompt for a sketch transformation.

    Args:
        style_prompt: Style description from the selected preset.
        user_prompt: Optional free-text description from the user.

    Returns:
        The complete prompt string.
    """
    user_text = _sanitize(user_prompt)
    if user_text:
        content_and_style = f"User description: {user_text}. Apply style: {style_prompt}"
    else:
        content_and_style = f"Apply style: {style_prompt}"

    return ". ".join(
        [
            SKETCH_PRESERVATION_INSTRUCTIONS,
            ENHANCEMENT_INSTRUCTIONS,
            content_and_style,
            QUALITY_INSTRUCTIONS,
        ]
    )


def build_compact_prompt(style_prompt: str, user_prompt: str | None = None) -> str:
    """Build a shorter prompt for backends with tight prompt limits."""
    base = "Transform sketch into artwork, preserve original structure and shapes"
    user_text = _sanitize(user_prompt)
    if user_text:
        return f"{base}. {user_text}. Style: {style_prompt}. High quality, detailed."
    return f"{base}. Style: {style_prompt}. High quality, detailed."
