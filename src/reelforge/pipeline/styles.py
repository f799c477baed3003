"""Ad style presets, output dimensions and caption defaults."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class StyleSettings:
    voice: str
    emotion: str
    image_style: str
    speed: float


STYLE_PRESETS: Dict[str, StyleSettings] = {
    "conversational": StyleSettings("female-1", "neutral", "photorealistic", 1.0),
    "energetic": StyleSettings("female-2", "happy", "cinematic", 1.1),
    "professional": StyleSettings("male-1", "neutral", "photorealistic", 1.0),
    "casual": StyleSettings("female-1", "happy", "artistic", 1.0),
    "sex_appeal": StyleSettings("female-1", "happy", "cinematic", 1.0),
}

DIMENSIONS: Dict[str, Tuple[int, int]] = {
    "portrait": (1080, 1920),
    "landscape": (1920, 1080),
    "square": (1080, 1080),
}

# Scenes run roughly seven seconds each, never fewer than three per ad.
SECONDS_PER_SCENE = 7
MIN_SCENES = 3


def style_settings(style: str | None) -> StyleSettings:
    return STYLE_PRESETS.get(str(style or "").lower(), STYLE_PRESETS["conversational"])


def dimensions_for(aspect_ratio: str | None) -> Tuple[int, int]:
    return DIMENSIONS.get(str(aspect_ratio or "").lower(), DIMENSIONS["portrait"])


def target_scene_count(duration_seconds: int) -> int:
    return max(MIN_SCENES, int(duration_seconds) // SECONDS_PER_SCENE)


def default_caption_config() -> Dict[str, Any]:
    return {
        "enabled": True,
        "fontFamily": "Inter",
        "fontSize": 48,
        "fontColor": "#FFFFFF",
        "position": 80,
        "wordsPerLine": 0,
        "style": {
            "bold": False,
            "italic": False,
            "underline": False,
            "strikethrough": False,
        },
        "effects": {
            "outlineColor": "#000000",
            "outlineWidth": 2,
            "shadowColor": "#000000",
            "shadowOffset": 4,
            "glowColor": "#FFFFFF",
            "glowSize": 0,
            "highlightColor": "#FFD700",
        },
    }


DEFAULT_MUSIC_VOLUME = 50
