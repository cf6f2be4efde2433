"""Prompt templates for sketch transformation.

Examples:
    >>> from soulcanvas.prompts import build_final_prompt
    >>> prompt = build_final_prompt("oil painting, impressionist")
"""

from soulcanvas.prompts.sketch import (
    ENHANCEMENT_INSTRUCTIONS,
    QUALITY_INSTRUCTIONS,
    SKETCH_PRESERVATION_INSTRUCTIONS,
    USER_PROMPT_MAX_LENGTH,
    build_compact_prompt,
    build_final_prompt,
)

__all__ = [
    "ENHANCEMENT_INSTRUCTIONS",
    "QUALITY_INSTRUCTIONS",
    "SKETCH_PRESERVATION_INSTRUCTIONS",
    "USER_PROMPT_MAX_LENGTH",
    "build_compact_prompt",
    "build_final_prompt",
]
