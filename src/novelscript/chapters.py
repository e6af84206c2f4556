"""Multi-file projects split into ``config.yaml``, ``base.yaml`` layers and chapters.

A project root holds ``config.yaml`` (title, settings and endings) and numbered
chapter files starting at ``0.yaml`` or ``1.yaml``. Each chapter resolves into
a standalone :class:`~novelscript.schema.SceneGraph` by layering, in order, the
root ``base.yaml``, the ``base.yaml`` of every directory leading to the chapter
and the chapter file itself. Later layers override assets; a state variable
redeclared with a different type is an error.

Asset paths are rewritten relative to the project root while parsing, so a
resolved chapter plays with the project root as its base URL.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Sequence
from urllib.parse import urljoin, urlparse

from .errors import ScriptLoadError, ScriptSchemaError, ScriptSyntaxError
from .loader import ScriptFetcher, is_external_path
from .parser import build_scene_graph, load_document, validate_model
from .schema import (
    Assets,
    ChapterDocument,
    CharacterAsset,
    LayerDocument,
    ProjectConfig,
    Scene,
    SceneGraph,
    StateValue,
    chapter_path_key,
    collapse_path_dots,
)
from .validator import validate_scene_graph, value_type_name

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"
BASE_FILE = "base.yaml"
MAX_CHAPTERS = 101
LEGACY_KEYS = ("meta", "settings")
CONFIG_ONLY_KEYS = (
    "title",
    "author",
    "version",
    "textSpeed",
    "autoSave",
    "clickToInstant",
    "endings",
    "endingRules",
    "defaultEnding",
)

_NUMBERED_CHAPTER = re.compile(r"^(.*/)?(\d+)\.ya?ml$", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedConfig:
    source_path: str
    data: ProjectConfig


@dataclass(frozen=True)
class ParsedBase:
    source_path: str
    data: LayerDocument


@dataclass(frozen=True)
class ParsedChapter:
    source_path: str
    data: ChapterDocument


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def normalize_source_path(source_path: str) -> str:
    normalized = source_path.replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized or "unknown.yaml"


def source_dir(source_path: str) -> str:
    """Return the directory part of ``source_path`` with a trailing slash."""

    normalized = normalize_source_path(source_path)
    index = normalized.rfind("/")
    return normalized[: index + 1] if index >= 0 else ""


def canonical_asset_path(path: str, directory: str) -> str | None:
    """Rewrite ``path`` declared in ``directory`` as a root-relative path.

    Leading ``/`` anchors the path at the project root. External URLs are
    returned unchanged. Returns ``None`` for blank paths.
    """

    trimmed = path.strip()
    if not trimmed:
        return None
    if is_external_path(trimmed):
        return trimmed
    normalized = trimmed.replace("\\", "/")
    joined = normalized[1:] if normalized.startswith("/") else f"{directory}{normalized}"
    return collapse_path_dots(joined) or None


def base_layer_keys(chapter_key: str) -> List[str]:
    """Return the ``base.yaml`` path keys applied beneath ``chapter_key``."""

    file_path = chapter_path_key(chapter_key)[2:]
    directory = posixpath.dirname(file_path)
    keys = [chapter_path_key(BASE_FILE)]
    current = ""
    for segment in directory.split("/") if directory else ():
        current = f"{current}/{segment}" if current else segment
        keys.append(chapter_path_key(f"{current}/{BASE_FILE}"))
    return list(dict.fromkeys(keys))


def numbered_chapter(chapter_key: str) -> tuple[str, int] | None:
    """Split ``./dir/3.yaml`` into ``("dir/", 3)``; ``None`` for named chapters."""

    match = _NUMBERED_CHAPTER.match(chapter_path_key(chapter_key)[2:])
    if match is None:
        return None
    return match.group(1) or "", int(match.group(2))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _load_root(text: str, source_path: str) -> Dict[str, Any]:
    try:
        return load_document(text)
    except ScriptSyntaxError as exc:
        raise ScriptSyntaxError(
            f"{source_path}: {exc.message}",
            line=exc.line,
            column=exc.column,
            details=exc.details,
        ) from exc


def _first_key(document: Mapping[str, Any], keys: Sequence[str]) -> str | None:
    return next((key for key in keys if key in document), None)


def _canonical_assets(assets: Assets, directory: str, source_path: str) -> Assets:
    def canonical(label: str, value: str) -> str:
        resolved = canonical_asset_path(value, directory)
        if resolved is None:
            raise ScriptSchemaError(source_path, f"{label} has invalid path '{value}'")
        return resolved

    characters: Dict[str, CharacterAsset] = {}
    for char_id, character in assets.characters.items():
        label = f"assets.characters.{char_id}"
        characters[char_id] = CharacterAsset(
            base=canonical(f"{label}.base", character.base),
            emotions={
                emotion: canonical(f"{label}.emotions.{emotion}", path)
                for emotion, path in character.emotions.items()
            },
        )
    return Assets(
        backgrounds={
            key: canonical(f"assets.backgrounds.{key}", path)
            for key, path in assets.backgrounds.items()
        },
        characters=characters,
        music={key: canonical(f"assets.music.{key}", path) for key, path in assets.music.items()},
        sfx={key: canonical(f"assets.sfx.{key}", path) for key, path in assets.sfx.items()},
    )


def _canonical_scenes(
    scenes: Mapping[str, Scene], directory: str, source_path: str
) -> Dict[str, Scene]:
    result: Dict[str, Scene] = {}
    for scene_id, scene in scenes.items():
        actions = []
        for index, action in enumerate(scene.actions):
            if action.video is not None:
                src = canonical_asset_path(action.video.src, directory)
                if src is None:
                    raise ScriptSchemaError(
                        source_path,
                        f"scenes.{scene_id}.actions[{index}].video.src has invalid "
                        f"path '{action.video.src}'",
                    )
                video = action.video.model_copy(update={"src": src})
                action = action.model_copy(update={"video": video})
            actions.append(action)
        result[scene_id] = scene.model_copy(update={"actions": actions})
    return result


def parse_config(text: str, source_path: str = CONFIG_FILE) -> ParsedConfig:
    """Parse ``config.yaml``.

    Raises:
        ScriptSyntaxError: If the text is not a YAML mapping.
        ScriptSchemaError: For legacy ``meta``/``settings`` blocks or bad fields.
    """

    source = normalize_source_path(source_path)
    document = _load_root(text, source)
    legacy = _first_key(document, LEGACY_KEYS)
    if legacy:
        raise ScriptSchemaError(
            source,
            f"legacy top-level key '{legacy}' is not allowed (use flattened config keys)",
        )
    return ParsedConfig(source, validate_model(ProjectConfig, document, source=source))


def parse_base(text: str, source_path: str = BASE_FILE) -> ParsedBase:
    """Parse a ``base.yaml`` layer, which may only declare assets, state and inventory.

    Raises:
        ScriptSyntaxError: If the text is not a YAML mapping.
        ScriptSchemaError: For forbidden keys, bad fields or blank asset paths.
    """

    source = normalize_source_path(source_path)
    document = _load_root(text, source)
    if "script" in document or "scenes" in document:
        raise ScriptSchemaError(
            source,
            "base.yaml cannot declare script/scenes (only assets and state are allowed)",
        )
    legacy = _first_key(document, LEGACY_KEYS)
    if legacy:
        raise ScriptSchemaError(source, f"'{legacy}' is not allowed in base.yaml")
    config_only = _first_key(document, CONFIG_ONLY_KEYS)
    if config_only:
        raise ScriptSchemaError(
            source, f"'{config_only}' is config.yaml-only and cannot appear in base.yaml"
        )
    layer = validate_model(LayerDocument, document, source=source)
    assets = _canonical_assets(layer.assets, source_dir(source), source)
    return ParsedBase(source, layer.model_copy(update={"assets": assets}))


def parse_chapter(text: str, source_path: str) -> ParsedChapter:
    """Parse a chapter file: its own layer plus ``script`` and ``scenes``.

    Raises:
        ScriptSyntaxError: If the text is not a YAML mapping.
        ScriptSchemaError: For forbidden keys, bad fields or blank asset paths.
    """

    source = normalize_source_path(source_path)
    document = _load_root(text, source)
    legacy = _first_key(document, LEGACY_KEYS)
    if legacy:
        raise ScriptSchemaError(source, f"'{legacy}' is not allowed in chapter files")
    config_only = _first_key(document, CONFIG_ONLY_KEYS)
    if config_only:
        raise ScriptSchemaError(
            source,
            f"'{config_only}' is config.yaml-only and cannot appear in chapter files",
        )
    chapter = validate_model(ChapterDocument, document, source=source)
    directory = source_dir(source)
    return ParsedChapter(
        source,
        chapter.model_copy(
            update={
                "assets": _canonical_assets(chapter.assets, directory, source),
                "scenes": _canonical_scenes(chapter.scenes, directory, source),
            }
        ),
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _plain(model: Any) -> Any:
    return model.model_dump(by_alias=True, exclude_none=True, mode="json")


def _merge_state(
    merged: Dict[str, StateValue],
    owners: Dict[str, str],
    state: Mapping[str, StateValue],
    source_path: str,
) -> None:
    for name, value in state.items():
        if name in merged and value_type_name(value) != value_type_name(merged[name]):
            raise ScriptSchemaError(
                source_path,
                f"state.{name} type '{value_type_name(value)}' conflicts with "
                f"'{value_type_name(merged[name])}' from {owners[name]}",
            )
        merged[name] = value
        owners[name] = source_path


def resolve_chapter_game(
    config: ParsedConfig, bases: Sequence[ParsedBase], chapter: ParsedChapter
) -> SceneGraph:
    """Layer ``bases`` and ``chapter`` under ``config`` into one validated graph.

    Raises:
        ScriptSchemaError: If a state variable changes type between layers.
        ScriptReferenceError: If the resolved graph has a dangling reference.
    """

    assets: Dict[str, Dict[str, Any]] = {
        "backgrounds": {},
        "characters": {},
        "music": {},
        "sfx": {},
    }
    state: Dict[str, StateValue] = {}
    owners: Dict[str, str] = {}
    inventory: Dict[str, Any] = {}

    layers: List[tuple[str, LayerDocument]] = [
        (base.source_path, base.data) for base in bases
    ]
    layers.append((chapter.source_path, chapter.data))
    for source, layer in layers:
        for group, entries in _plain(layer.assets).items():
            assets[group].update(entries)
        _merge_state(state, owners, layer.state, source)
        inventory.update(
            (item_id, _plain(item)) for item_id, item in layer.inventory.items()
        )

    settings = config.data
    document: Dict[str, Any] = {
        "meta": {
            key: value
            for key, value in (
                ("title", settings.title),
                ("author", settings.author),
                ("version", settings.version),
            )
            if value is not None
        },
        "settings": {
            "textSpeed": settings.text_speed,
            "autoSave": settings.auto_save,
            "clickToInstant": settings.click_to_instant,
        },
        "assets": assets,
        "state": {"defaults": state},
        "inventory": {"defaults": inventory},
        "endings": {key: _plain(ending) for key, ending in settings.endings.items()},
        "endingRules": [_plain(rule) for rule in settings.ending_rules],
        "script": [_plain(entry) for entry in chapter.data.script],
        "scenes": {key: _plain(scene) for key, scene in chapter.data.scenes.items()},
    }
    if settings.default_ending:
        document["defaultEnding"] = settings.default_ending
    graph = validate_scene_graph(build_scene_graph(document))
    logger.debug(
        "Resolved chapter %s with %d base layers", chapter.source_path, len(bases)
    )
    return graph


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://", "file://"))


def is_project_source(source: str) -> bool:
    """Return ``True`` when ``source`` names a project root rather than one script."""

    trimmed = source.strip()
    if trimmed.endswith("/"):
        return True
    if _is_url(trimmed):
        return posixpath.basename(urlparse(trimmed).path) == CONFIG_FILE
    path = Path(trimmed).expanduser()
    return path.name == CONFIG_FILE or path.is_dir()


def project_root_url(source: str) -> str:
    """Return the directory URL of the project named by ``source``."""

    trimmed = source.strip()
    if _is_url(trimmed):
        if posixpath.basename(urlparse(trimmed).path) == CONFIG_FILE:
            return urljoin(trimmed, "./")
        return trimmed if trimmed.endswith("/") else f"{trimmed}/"
    path = Path(trimmed).expanduser()
    if path.name == CONFIG_FILE:
        path = path.parent
    return path.resolve().as_uri() + "/"


class ChapterProject:
    """Lazily fetch, parse and resolve the chapters of one project root.

    Parsed files and resolved chapters are cached, so jumping back to a chapter
    does not fetch it again.
    """

    def __init__(self, source: str, fetcher: ScriptFetcher | None = None) -> None:
        self.root_url = project_root_url(source)
        self.fetcher = fetcher or ScriptFetcher()
        self._texts: Dict[str, str | None] = {}
        self._config: ParsedConfig | None = None
        self._bases: Dict[str, ParsedBase | None] = {}
        self._games: Dict[str, SceneGraph] = {}

    def _read(self, key: str) -> str | None:
        key = chapter_path_key(key)
        if key not in self._texts:
            fetched = self.fetcher.fetch_optional(urljoin(self.root_url, key[2:]))
            self._texts[key] = fetched.text if fetched is not None else None
        return self._texts[key]

    def exists(self, key: str) -> bool:
        return self._read(key) is not None

    def config(self) -> ParsedConfig:
        """Return the parsed ``config.yaml``.

        Raises:
            ScriptLoadError: If the project root has no ``config.yaml``.
        """

        if self._config is None:
            text = self._read(CONFIG_FILE)
            if text is None:
                raise ScriptLoadError(
                    "config.yaml not found at game root.", details=self.root_url
                )
            self._config = parse_config(text, CONFIG_FILE)
        return self._config

    def _base(self, key: str) -> ParsedBase | None:
        if key not in self._bases:
            text = self._read(key)
            self._bases[key] = parse_base(text, key) if text is not None else None
        return self._bases[key]

    def load(self, chapter_key: str) -> SceneGraph:
        """Return the resolved scene graph of ``chapter_key``.

        Raises:
            NovelScriptError: If any file is missing, malformed or inconsistent.
        """

        key = chapter_path_key(chapter_key)
        cached = self._games.get(key)
        if cached is not None:
            return cached
        text = self._read(key)
        if text is None:
            raise ScriptLoadError(f"Failed to load yaml: {key[2:]}", details=self.root_url)
        chapter = parse_chapter(text, key)
        bases = [
            layer
            for layer in (self._base(base_key) for base_key in base_layer_keys(key))
            if layer is not None
        ]
        graph = resolve_chapter_game(self.config(), bases, chapter)
        self._games[key] = graph
        logger.info("Loaded chapter %s of '%s'", key, graph.meta.title)
        return graph

    def first_chapter(self) -> str:
        """Return ``./0.yaml`` or ``./1.yaml``, whichever exists first.

        Raises:
            ScriptLoadError: If the project has neither.
        """

        for number in (0, 1):
            key = self._numbered(number, "")
            if key is not None:
                return key
        raise ScriptLoadError(
            "Numbered chapter YAML not found. Add 0.yaml or 1.yaml.", details=self.root_url
        )

    def next_chapter(self, chapter_key: str) -> str | None:
        """Return the numbered chapter after ``chapter_key``, if it exists."""

        numbered = numbered_chapter(chapter_key)
        if numbered is None:
            return None
        directory, number = numbered
        if number + 1 >= MAX_CHAPTERS:
            return None
        return self._numbered(number + 1, directory)

    def chapters(self) -> Iterator[str]:
        """Yield the numbered chapter keys from the first chapter onward."""

        key: str | None = self.first_chapter()
        while key is not None:
            yield key
            key = self.next_chapter(key)

    def _numbered(self, number: int, directory: str) -> str | None:
        for extension in ("yaml", "yml"):
            key = chapter_path_key(f"{directory}{number}.{extension}")
            if self.exists(key):
                return key
        return None


__all__ = [
    "BASE_FILE",
    "CONFIG_FILE",
    "ChapterProject",
    "ParsedBase",
    "ParsedChapter",
    "ParsedConfig",
    "base_layer_keys",
    "canonical_asset_path",
    "is_project_source",
    "numbered_chapter",
    "parse_base",
    "parse_chapter",
    "parse_config",
    "project_root_url",
    "resolve_chapter_game",
]
