import re
from typing import Optional

from services.errors import InputError

MAX_PROMPT_LENGTH = 4000

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def normalize_prompt(prompt: Optional[str]) -> str:
    text = " ".join((prompt or "").split())
    if not text:
        raise InputError("Missing prompt")
    if len(text) > MAX_PROMPT_LENGTH:
        raise InputError(f"Prompt too long (max {MAX_PROMPT_LENGTH} characters)")
    return text


def build_renovation_prompt(
    color: str, color_hex: Optional[str] = None, finish: Optional[str] = None
) -> str:
    """
    Instruction text for a window frame and door recolor.

    Only frames and doors change; the rest of the photo must stay as it is.
    """
    color = " ".join((color or "").split())
    if not color:
        raise InputError("Missing color choice")

    hex_part = ""
    if color_hex:
        color_hex = color_hex.strip()
        if not _HEX_COLOR.match(color_hex):
            raise InputError("color_hex must look like #RRGGBB")
        hex_part = f" ({color_hex.upper()})"

    finish_part = f", {finish.strip().lower()}" if finish and finish.strip() else ""

    return normalize_prompt(
        " ".join(
            [
                f"Replace ONLY the window frames and doors with: {color}{hex_part}{finish_part}, deep uPVC style.",
                "Match façade cladding if present.",
                "Do NOT alter walls/brickwork, roof, ground, people, vehicles, sky, or background.",
                "Keep lighting, geometry, reflections and perspective identical.",
            ]
        )
    )
