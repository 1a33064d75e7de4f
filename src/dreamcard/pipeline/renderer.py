"""Panel renderer: one planned scene to one image.

The prompt is assembled in a fixed order (artist prefix, the panel's
composition template, the planned scene, the style's positive suffix) so
the composition lands before the free-form scene text. Every request also
carries the style's negative prompt plus denylists shared by all styles.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from dreamcard.errors import RenderError
from dreamcard.observability.logging import get_logger
from dreamcard.providers.image import GenerationParams, ImageProviderError

if TYPE_CHECKING:
    from dreamcard.providers.image import ImageProvider, ImageResult
    from dreamcard.styles.profiles import StyleProfile, StyleRegistry

log = get_logger(__name__)

RenderVariant = Literal["final", "sketch"]

REPRESENTATIONAL_NEGATIVE = (
    "realistic",
    "photorealistic",
    "representational art",
    "figurative art",
    "recognizable objects",
    "identifiable subjects",
    "literal interpretation",
    "concrete forms",
    "physical objects",
    "real-world elements",
)

HUMAN_NEGATIVE = (
    "human face",
    "human faces",
    "direct eye contact",
    "full body shot",
    "portrait",
    "close-up face",
    "facial features",
    "literal subject",
    "main character visible",
    "person in focus",
    "clear human figure",
)

ARCHITECTURE_NEGATIVE = (
    "room",
    "corridor",
    "hallway",
    "building",
    "architecture",
    "parking lot",
    "garage",
    "street",
    "road",
    "wall",
    "floor",
    "ceiling",
    "door",
    "window",
    "interior",
    "exterior",
    "house",
    "office",
    "lobby",
    "tunnel",
    "bridge",
    "staircase visible",
    "recognizable space",
    "realistic environment",
    "constructed space",
    "man-made structure",
    "architectural elements",
)

TRADITIONAL_MEDIA_NEGATIVE = (
    "ink wash painting",
    "chinese brush painting",
    "sumi-e",
    "traditional chinese art",
    "calligraphy",
    "seal stamps",
    "ancient art",
    "historical painting",
    "classical landscape",
    "traditional portrait",
    "ink drawing",
    "traditional illustration",
    "vintage painting",
    "antique art",
)

SHARED_NEGATIVE = ", ".join(
    REPRESENTATIONAL_NEGATIVE + HUMAN_NEGATIVE + ARCHITECTURE_NEGATIVE + TRADITIONAL_MEDIA_NEGATIVE
)

_PREVIEW_CHARS = 200


def build_prompt(scene: str, style: StyleProfile, panel_index: int) -> str:
    """Positive prompt for a final render of panel *panel_index*."""
    prefix = style.artist_prefix_for(panel_index)
    composition = style.composition_for(panel_index)
    return f"{prefix} {composition}, {scene}. {style.prompt}"


def build_sketch_prompt(scene: str, style: StyleProfile, panel_index: int) -> str:
    """Positive prompt for a quick two-stage sketch."""
    composition = style.composition_for(panel_index)
    lead = style.sketch_prompt or style.artist_prefix_for(panel_index)
    return f"{lead} {composition}, {scene}"


def build_negative_prompt(style: StyleProfile) -> str:
    return f"{style.negative}, {SHARED_NEGATIVE}"


class PanelRenderer:
    """Render panels with an injected image provider.

    Args:
        provider: Image generation backend.
        styles: Registry panel styles are resolved against.
        params: Sampling parameters for final renders.
        sketch_params: Sampling parameters for sketches (defaults to *params*).
    """

    def __init__(
        self,
        provider: ImageProvider,
        styles: StyleRegistry,
        params: GenerationParams | None = None,
        sketch_params: GenerationParams | None = None,
    ) -> None:
        self._provider = provider
        self._styles = styles
        self.params = params or GenerationParams()
        self.sketch_params = sketch_params or self.params

    async def render(
        self,
        scene: str,
        style: str,
        panel_index: int,
        *,
        variant: RenderVariant = "final",
    ) -> ImageResult:
        """Generate the image for one panel.

        Returns:
            The first image the provider returned.

        Raises:
            RenderError: If the provider fails or returns no image.
            StyleProfileError: If *style* is not registered.
        """
        profile = self._styles.get(style)
        if variant == "sketch":
            prompt = build_sketch_prompt(scene, profile, panel_index)
            params = self.sketch_params
        else:
            prompt = build_prompt(scene, profile, panel_index)
            params = self.params
        negative = build_negative_prompt(profile)

        log.debug(
            "panel_render_started",
            panel=panel_index + 1,
            style=profile.id,
            variant=variant,
            prompt_preview=prompt[:_PREVIEW_CHARS],
        )

        try:
            results = await self._provider.generate(
                prompt, negative_prompt=negative, params=params
            )
        except ImageProviderError as e:
            raise RenderError(panel_index, str(e)) from e

        if not results:
            raise RenderError(panel_index, "No image generated")

        result = results[0]
        log.info(
            "panel_rendered",
            panel=panel_index + 1,
            variant=variant,
            remote=result.is_remote,
            size_bytes=result.size_bytes,
        )
        return result
