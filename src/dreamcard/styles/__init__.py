"""Style profiles used to build image-generation prompts."""

from dreamcard.styles.profiles import (
    DEFAULT_STYLES_PATH,
    MOODS,
    PANEL_COUNT,
    SYMBOLS,
    StyleProfile,
    StyleProfileError,
    StyleRegistry,
)

__all__ = [
    "DEFAULT_STYLES_PATH",
    "MOODS",
    "PANEL_COUNT",
    "SYMBOLS",
    "StyleProfile",
    "StyleProfileError",
    "StyleRegistry",
]
