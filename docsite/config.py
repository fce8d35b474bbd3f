"""Configuration loading and resolution for docsite (.docsite.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

from .errors import ConfigError, PluginHookError
from .logging import get_logger
from .models import DEFAULT_LOCALE
from .plugins import ConfigEnv, Plugin, PluginContainer, resolve_plugins
from .utils import freeze, normalize_data, thaw

CONFIG_FILENAME = ".docsite.yml"

DEVELOPMENT = "development"
PRODUCTION = "production"
_MODES = (DEVELOPMENT, PRODUCTION)

_ENV_OVERRIDES = {
    "DOCSITE_SRC_DIR": "src_dir",
    "DOCSITE_OUT_DIR": "out_dir",
    "DOCSITE_BASE": "base",
    "DOCSITE_TITLE": "title",
    "DOCSITE_CACHE": "cache",
}

_DEFAULT_MARKDOWN: Dict[str, Any] = {
    "html": True,
    "typographer": False,
    "breaks": False,
    "retain_content": False,
    "enable": ["table", "strikethrough"],
}


@dataclass(frozen=True)
class MarkdownOptions:
    """Options handed to the Markdown engine."""

    html: bool = True
    typographer: bool = False
    breaks: bool = False
    retain_content: bool = False
    enable: Tuple[str, ...] = ("table", "strikethrough")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "html": self.html,
            "typographer": self.typographer,
            "breaks": self.breaks,
            "retain_content": self.retain_content,
            "enable": list(self.enable),
        }


@dataclass(frozen=True)
class LocaleConfig:
    """One locale: a sub-root of the source tree served under a URL prefix."""

    key: str
    dir: str
    prefix: str
    label: Optional[str] = None
    lang: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    theme_config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "lang": self.lang,
            "link": self.prefix,
            "title": self.title,
            "description": self.description,
            "themeConfig": thaw(self.theme_config),
        }


@dataclass(frozen=True)
class ExtraSource:
    """An additional content root mounted under a URL prefix."""

    dir: Path
    prefix: str
    pattern: str = "**/*.md"


@dataclass(frozen=True)
class SiteConfig:
    """Fully resolved, read-only configuration for one build invocation."""

    root: Path
    src_dir: Path
    out_dir: Path
    temp_dir: Path
    cache_dir: Path
    base: str = "/"
    title: str = "Docsite"
    description: str = ""
    lang: str = "en-US"
    include: Tuple[str, ...] = ("**/*.md",)
    exclude: Tuple[str, ...] = ()
    locales: Mapping[str, LocaleConfig] = field(default_factory=lambda: MappingProxyType({}))
    extra_sources: Tuple[ExtraSource, ...] = ()
    markdown: MarkdownOptions = field(default_factory=MarkdownOptions)
    theme_config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    plugins: Tuple[Plugin, ...] = ()
    mode: str = PRODUCTION
    command: str = "build"
    cache: bool = True
    workers: int = 1
    debounce_ms: int = 100
    config_file: Optional[Path] = None

    @property
    def is_production(self) -> bool:
        return self.mode == PRODUCTION

    @property
    def output_dir(self) -> Path:
        """Directory that receives generated artifacts for the current mode."""
        return self.out_dir if self.is_production else self.temp_dir

    def locale(self, key: str) -> Optional[LocaleConfig]:
        return self.locales.get(key)

    def locale_for(self, relative_path: str) -> str:
        """Return the key of the locale owning ``relative_path``."""
        best_key = DEFAULT_LOCALE
        best_length = -1
        for key, locale in self.locales.items():
            if not locale.dir:
                if best_length < 0:
                    best_key, best_length = key, 0
                continue
            if relative_path.startswith(locale.dir + "/") and len(locale.dir) > best_length:
                best_key, best_length = key, len(locale.dir)
        return best_key

    def site_data(self) -> Dict[str, Any]:
        """Return the site-wide payload shipped to the client."""
        return {
            "base": self.base,
            "title": self.title,
            "description": self.description,
            "lang": self.lang,
            "locales": {key: locale.to_dict() for key, locale in self.locales.items()},
            "themeConfig": thaw(self.theme_config),
        }


def load_user_config(config_path: Path) -> Dict[str, Any]:
    """Load the raw user mapping from disk; a missing file yields ``{}``."""
    config_file = _resolve_config_path(Path(config_path))
    if not config_file.exists():
        return {}
    text = config_file.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {config_file.name}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"{config_file.name} must contain a mapping at the root")
    return loaded


async def resolve_config(
    root: Path,
    user_config: Optional[Mapping[str, Any]] = None,
    *,
    mode: str = PRODUCTION,
    plugins: Optional[Sequence[Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    command: Optional[str] = None,
) -> SiteConfig:
    """Produce the final frozen configuration, running plugin ``config`` hooks."""
    logger = get_logger("config")
    root = Path(root).expanduser().resolve()
    if mode not in _MODES:
        raise ConfigError(f"Unknown mode '{mode}'; expected one of {', '.join(_MODES)}")
    command = command or ("build" if mode == PRODUCTION else "dev")

    config_file: Optional[Path] = None
    if user_config is None:
        config_file = _resolve_config_path(root)
        user_config = load_user_config(config_file)
        if not config_file.exists():
            config_file = None
    if not isinstance(user_config, Mapping):
        raise ConfigError("Site configuration must be a mapping")

    raw = dict(user_config)
    specs = list(_as_list(raw.pop("plugins", None)))
    specs.extend(plugins or ())
    try:
        resolved_plugins = resolve_plugins(specs)
        container = PluginContainer(resolved_plugins)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid plugin configuration: {exc}") from exc

    raw.update(_environment_overrides(os.environ if environ is None else environ))

    try:
        merged = await container.config(raw, ConfigEnv(mode=mode, command=command))
    except PluginHookError as exc:
        raise ConfigError(str(exc)) from exc
    if "plugins" in merged:
        raise ConfigError("Plugins cannot be added from a config hook")

    config = _build_site_config(
        root,
        merged,
        plugins=tuple(resolved_plugins),
        mode=mode,
        command=command,
        config_file=config_file,
    )
    logger.debug(
        "Resolved config for %s (%s, %d plugins)", config.src_dir, config.mode, len(config.plugins)
    )

    try:
        await container.config_resolved(config)
    except PluginHookError as exc:
        raise ConfigError(str(exc)) from exc
    return config


def _build_site_config(
    root: Path,
    data: Mapping[str, Any],
    *,
    plugins: Tuple[Plugin, ...],
    mode: str,
    command: str,
    config_file: Optional[Path],
) -> SiteConfig:
    src_dir = _as_path(root, data.get("src_dir"), root)
    if not src_dir.exists():
        raise ConfigError(f"Source directory {src_dir} does not exist")
    if not src_dir.is_dir():
        raise ConfigError(f"Source directory {src_dir} is not a directory")

    base = _as_str(data.get("base")) or "/"
    if not base.startswith("/"):
        base = "/" + base
    if not base.endswith("/"):
        base += "/"

    title = _as_str(data.get("title"))
    if title is None:
        title = "Docsite"
    if not title.strip():
        raise ConfigError("Site title must not be empty")

    workers = data.get("workers")
    if workers is None:
        workers = os.cpu_count() or 1
    if isinstance(workers, bool) or not isinstance(workers, int) or workers <= 0:
        raise ConfigError("workers must be a positive integer")

    dev_data = _as_dict(data.get("dev"))
    debounce_ms = dev_data.get("debounce_ms", 100)
    if isinstance(debounce_ms, bool) or not isinstance(debounce_ms, int) or debounce_ms < 0:
        raise ConfigError("dev.debounce_ms must be a non-negative integer")

    cache = _as_bool(data.get("cache"))

    return SiteConfig(
        root=root,
        src_dir=src_dir,
        out_dir=_as_path(root, data.get("out_dir"), root / ".docsite" / "dist"),
        temp_dir=_as_path(root, data.get("temp_dir"), root / ".docsite" / "temp"),
        cache_dir=_as_path(root, data.get("cache_dir"), root / ".docsite" / "cache"),
        base=base,
        title=title,
        description=_as_str(data.get("description")) or "",
        lang=_as_str(data.get("lang")) or "en-US",
        include=tuple(_as_str_list(data.get("include")) or ["**/*.md"]),
        exclude=tuple(_as_str_list(data.get("exclude"))),
        locales=MappingProxyType(_parse_locales(data.get("locales"))),
        extra_sources=_parse_extra_sources(root, data.get("extra_sources")),
        markdown=_parse_markdown(data.get("markdown")),
        theme_config=freeze(normalize_data(_as_dict(data.get("theme_config")))),
        plugins=plugins,
        mode=mode,
        command=command,
        cache=True if cache is None else cache,
        workers=workers,
        debounce_ms=debounce_ms,
        config_file=config_file,
    )


def _parse_locales(value: Any) -> Dict[str, LocaleConfig]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError("locales must be a mapping of locale key to settings")
    locales: Dict[str, LocaleConfig] = {}
    prefixes: Dict[str, str] = {}
    for key, settings in value.items():
        key = str(key)
        settings = settings or {}
        if not isinstance(settings, Mapping):
            raise ConfigError(f"Locale '{key}' must be a mapping")
        if key == DEFAULT_LOCALE:
            default_dir, default_prefix = "", "/"
        else:
            default_dir, default_prefix = key, f"/{key}/"
        locale_dir = _as_str(settings.get("dir"))
        locale_dir = default_dir if locale_dir is None else locale_dir.strip("/")
        prefix = _normalize_prefix(_as_str(settings.get("link")) or default_prefix)
        if prefix in prefixes:
            raise ConfigError(
                f"Locales '{prefixes[prefix]}' and '{key}' share the URL prefix {prefix}"
            )
        prefixes[prefix] = key
        locales[key] = LocaleConfig(
            key=key,
            dir=locale_dir,
            prefix=prefix,
            label=_as_str(settings.get("label")),
            lang=_as_str(settings.get("lang")),
            title=_as_str(settings.get("title")),
            description=_as_str(settings.get("description")),
            theme_config=freeze(normalize_data(_as_dict(settings.get("theme_config")))),
        )
    return locales


def _parse_extra_sources(root: Path, value: Any) -> Tuple[ExtraSource, ...]:
    sources: List[ExtraSource] = []
    for item in _as_list(value):
        if not isinstance(item, Mapping):
            raise ConfigError("extra_sources entries must be mappings with 'dir' and 'prefix'")
        directory = _as_str(item.get("dir"))
        if not directory:
            raise ConfigError("extra_sources entries require a 'dir'")
        path = _as_path(root, directory, root)
        if not path.is_dir():
            raise ConfigError(f"Extra source directory {path} does not exist")
        prefix = (_as_str(item.get("prefix")) or "").strip("/")
        pattern = _as_str(item.get("pattern")) or "**/*.md"
        sources.append(ExtraSource(dir=path, prefix=prefix, pattern=pattern))
    return tuple(sources)


def _parse_markdown(value: Any) -> MarkdownOptions:
    if value is not None and not isinstance(value, Mapping):
        raise ConfigError("markdown must be a mapping of engine options")
    data = dict(_DEFAULT_MARKDOWN)
    data.update({key: item for key, item in (value or {}).items() if item is not None})
    flags = {}
    for key in ("html", "typographer", "breaks", "retain_content"):
        flag = _as_bool(data.get(key))
        if flag is None:
            raise ConfigError(f"markdown.{key} must be a boolean")
        flags[key] = flag
    return MarkdownOptions(enable=tuple(_as_str_list(data.get("enable"))), **flags)


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for variable, key in _ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value is None or value == "":
            continue
        if key == "cache":
            flag = _as_bool(value)
            if flag is None:
                raise ConfigError(f"{variable} must be a boolean, got {value!r}")
            overrides[key] = flag
        else:
            overrides[key] = value
    return overrides


def _normalize_prefix(prefix: str) -> str:
    stripped = prefix.strip("/")
    return f"/{stripped}/" if stripped else "/"


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _as_path(root: Path, value: Any, default: Path) -> Path:
    text = _as_str(value)
    if not text:
        return default.resolve()
    path = Path(text).expanduser()
    if not path.is_absolute():
        path = root / path
    return path.resolve()


def _as_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1", "on"}:
            return True
        if lowered in {"false", "no", "0", "off"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []


__all__ = [
    "CONFIG_FILENAME",
    "DEVELOPMENT",
    "PRODUCTION",
    "ConfigError",
    "ExtraSource",
    "LocaleConfig",
    "MarkdownOptions",
    "SiteConfig",
    "load_user_config",
    "resolve_config",
]
