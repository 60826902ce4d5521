"""Art style registry for card image generation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

DEFAULT_STYLE = "classic"


@dataclass(frozen=True)
class ImageStyle:
    key: str
    name: str
    description: str
    prompt: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.key, "name": self.name, "description": self.description}


IMAGE_STYLES: Dict[str, ImageStyle] = {
    "classic": ImageStyle(
        key="classic",
        name="Classic",
        description="Pencil sketch with watercolour details on the focal elements",
        prompt=(
            "Pencil sketch with coloured details:\n"
            "- Similar to a partially completed, highly detailed masterful watercolor painting\n"
            "- Important elements include faces, hands, fabrics, metals and objects of special significance\n"
            "- Important elements are in full color and highly detailed, bold and colorful\n"
            "- Background and non-essential elements are grayscale pencil sketch, not coloured in yet\n"
            "- Use a mix of fine detail and sketchy lines"
        ),
    ),
    "modern": ImageStyle(
        key="modern",
        name="Modern",
        description="Clean contemporary portrait on a neutral background",
        prompt=(
            "Contemporary portrait or product image:\n"
            "- Neutral white background, keeping all focus on the subject\n"
            "- Crisply focused digital photography\n"
            "- Clean lines, vibrant colors, and smooth shading\n"
            "- Balanced composition with focus on main subject\n"
            "- Soft, almost imperceptible lighting with only the subtlest shadows"
        ),
    ),
    "inked": ImageStyle(
        key="inked",
        name="Inked",
        description="Bold high-contrast ink drawing",
        prompt=(
            "Bold ink drawing with high contrast:\n"
            "- Strong, confident black ink lines defining shapes and details\n"
            "- High contrast between light and dark areas\n"
            "- Cross-hatching and stippling for shading\n"
            "- Simple or neutral backgrounds, keeping focus on the main subject\n"
            "- Dramatic lighting and shadow play"
        ),
    ),
}


def is_known_style(style: Optional[str]) -> bool:
    return bool(style) and style in IMAGE_STYLES


def get_image_style(style: Optional[str]) -> Optional[ImageStyle]:
    return IMAGE_STYLES.get(style or "")


def list_image_styles() -> List[Dict[str, str]]:
    return [s.to_dict() for s in IMAGE_STYLES.values()]


def style_prompt(style: Optional[str]) -> str:
    """Prompt text for ``style``; unknown styles fall back to classic."""
    return (IMAGE_STYLES.get(style or "") or IMAGE_STYLES[DEFAULT_STYLE]).prompt
