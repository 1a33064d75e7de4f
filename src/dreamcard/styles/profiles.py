"""Style profiles: read-only prompt configuration keyed by style id.

Profiles live in ``data/styles.yaml``. Their shape is a hard contract the
renderer depends on (three composition templates, one positive suffix, one
negative template), so it is checked when the file is loaded rather than
when a job first touches a broken profile.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ruamel.yaml import YAML

if TYPE_CHECKING:
    from collections.abc import Iterator

PANEL_COUNT = 3

DEFAULT_STYLES_PATH = Path(__file__).parent / "data" / "styles.yaml"

# Moods and symbol tags offered to clients. Free-form values are accepted too.
MOODS: tuple[str, ...] = ("calm", "lonely", "surreal", "mysterious", "hopeful")
SYMBOLS: tuple[str, ...] = (
    "stairs",
    "mirror",
    "door",
    "ocean",
    "cat",
    "clock",
    "window",
    "fog",
    "train",
    "maze",
    "key",
)


class StyleProfileError(Exception):
    """Raised when a style profile is missing or malformed."""

    def __init__(self, style_id: str, reason: str) -> None:
        self.style_id = style_id
        self.reason = reason
        super().__init__(f"Style profile '{style_id}': {reason}")


@dataclass(frozen=True)
class StyleProfile:
    """Prompt templates and descriptive metadata for one style."""

    id: str
    name: str
    composition: tuple[str, str, str]
    prompt: str
    negative: str
    artist_prefixes: tuple[str, ...] = ()
    sketch_prompt: str = ""
    dream_type: str = ""
    psychological_core: str = ""
    user_feeling: str = ""
    artist_reference: str = ""
    artist_philosophy: str = ""
    color_palette: str = ""
    aliases: tuple[str, ...] = field(default_factory=tuple)

    def composition_for(self, panel_index: int) -> str:
        """Composition template for a panel; templates are not interchangeable."""
        if not 0 <= panel_index < PANEL_COUNT:
            raise IndexError(f"panel_index must be 0..{PANEL_COUNT - 1}, got {panel_index}")
        return self.composition[panel_index]

    def artist_prefix_for(self, panel_index: int) -> str:
        """Artist prefix for a panel.

        Profiles carry either one shared prefix or one per panel. Without any,
        the first 200 characters of the positive suffix stand in.
        """
        if len(self.artist_prefixes) == PANEL_COUNT:
            return self.artist_prefixes[panel_index]
        if self.artist_prefixes:
            return self.artist_prefixes[0]
        return self.prompt[:200] + ","

    @property
    def artist_keywords(self) -> list[str]:
        """First word of each ``+``-separated artist in the reference, lowercased."""
        keywords: list[str] = []
        for part in self.artist_reference.lower().split("+"):
            words = part.split()
            if words:
                keywords.append(words[0])
        return keywords

    @classmethod
    def from_dict(cls, style_id: str, data: dict[str, Any]) -> StyleProfile:
        """Build a profile from its YAML mapping, enforcing the template shape.

        Raises:
            StyleProfileError: If a required template is missing or the
                composition list does not have exactly three entries.
        """
        for key in ("composition", "prompt", "negative"):
            if not data.get(key):
                raise StyleProfileError(style_id, f"missing required field '{key}'")

        composition = [str(c).strip() for c in data["composition"]]
        if len(composition) != PANEL_COUNT or not all(composition):
            raise StyleProfileError(
                style_id,
                f"expected {PANEL_COUNT} composition templates, got {len(composition)}",
            )

        raw_prefix = data.get("artist_prefix") or []
        prefixes = [raw_prefix] if isinstance(raw_prefix, str) else list(raw_prefix)
        if len(prefixes) not in (0, 1, PANEL_COUNT):
            raise StyleProfileError(
                style_id,
                f"artist_prefix must be one string or {PANEL_COUNT} strings, "
                f"got {len(prefixes)}",
            )

        return cls(
            id=style_id,
            name=str(data.get("name", style_id)),
            composition=(composition[0], composition[1], composition[2]),
            prompt=str(data["prompt"]).strip(),
            negative=str(data["negative"]).strip(),
            artist_prefixes=tuple(str(p).strip() for p in prefixes),
            sketch_prompt=str(data.get("sketch_prompt", "")).strip(),
            dream_type=str(data.get("dream_type", "")),
            psychological_core=str(data.get("psychological_core", "")),
            user_feeling=str(data.get("user_feeling", "")),
            artist_reference=str(data.get("artist_reference", "")),
            artist_philosophy=str(data.get("artist_philosophy", "")).strip(),
            color_palette=str(data.get("color_palette", "")).strip(),
            aliases=tuple(str(a).lower() for a in data.get("aliases", [])),
        )


class StyleRegistry:
    """Lookup of style profiles by id or alias."""

    def __init__(self, profiles: list[StyleProfile]) -> None:
        self._profiles: dict[str, StyleProfile] = {p.id: p for p in profiles}
        self._aliases: dict[str, str] = {}
        for profile in profiles:
            self._aliases[profile.id] = profile.id
            for alias in profile.aliases:
                self._aliases[alias] = profile.id

    @classmethod
    def load(cls, path: Path | None = None) -> StyleRegistry:
        """Load profiles from a YAML file (the packaged defaults when *path* is None).

        Raises:
            StyleProfileError: If the file is missing, empty or a profile is malformed.
        """
        path = path or DEFAULT_STYLES_PATH
        if not path.exists():
            raise StyleProfileError("*", f"styles file not found: {path}")

        yaml = YAML(typ="safe")
        with path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
        if not data:
            raise StyleProfileError("*", f"styles file is empty: {path}")

        return cls([StyleProfile.from_dict(str(sid), dict(body)) for sid, body in data.items()])

    def get(self, style_id: str) -> StyleProfile:
        """Return the profile for an id or alias.

        Raises:
            StyleProfileError: If the style is unknown.
        """
        canonical = self._aliases.get(style_id.strip().lower())
        if canonical is None:
            raise StyleProfileError(style_id, "unknown style")
        return self._profiles[canonical]

    def __contains__(self, style_id: object) -> bool:
        return isinstance(style_id, str) and style_id.strip().lower() in self._aliases

    def __iter__(self) -> Iterator[StyleProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)

    @property
    def ids(self) -> list[str]:
        """Canonical style ids in file order."""
        return list(self._profiles)

    def alias_map(self) -> dict[str, str]:
        """Mapping of every accepted id or alias to its canonical id."""
        return dict(self._aliases)
