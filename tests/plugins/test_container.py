"""Tests for plugin hook orchestration."""

from __future__ import annotations

import asyncio

import pytest

import docsite.plugins as plugins_module
from docsite.errors import PluginHookError
from docsite.models import PageData, SourceFile
from docsite.plugins import (
    ConfigEnv,
    Hook,
    PageContext,
    Plugin,
    PluginContainer,
    available_plugins,
    define_plugin,
    resolve_plugins,
)


def _page(relative_path: str = "guide/start.md") -> PageData:
    return PageData(
        title="Start",
        description="",
        relative_path=relative_path,
        file_path=f"/site/{relative_path}",
    )


def _context(relative_path: str = "guide/start.md") -> PageContext:
    source = SourceFile(path=__file__, relative_path=relative_path)  # type: ignore[arg-type]
    return PageContext(config=None, source=source)  # type: ignore[arg-type]


def test_extend_page_data_runs_in_registration_order() -> None:
    order = []

    async def slow(page, ctx) -> None:
        await asyncio.sleep(0.01)
        order.append("slow")
        page.frontmatter["tag"] = "slow"

    def fast(page, ctx) -> None:
        order.append("fast")
        page.frontmatter["tag"] = page.frontmatter.get("tag", "") + "+fast"

    container = PluginContainer(
        [define_plugin("slow", extend_page_data=slow), define_plugin("fast", extend_page_data=fast)]
    )
    page = _page()

    asyncio.run(container.extend_page_data(page, _context()))

    assert order == ["slow", "fast"]
    assert page.frontmatter["tag"] == "slow+fast"


def test_hooks_are_only_called_for_declared_capabilities() -> None:
    calls = []
    container = PluginContainer(
        [
            define_plugin("starts", build_start=lambda config: calls.append("start")),
            define_plugin("ends", build_end=lambda config: calls.append("end")),
        ]
    )

    asyncio.run(container.build_start(None))
    asyncio.run(container.build_end(None))

    assert calls == ["start", "end"]
    assert [plugin.name for plugin in container.with_capability(Hook.BUILD_END)] == ["ends"]


def test_config_hooks_receive_merged_copies() -> None:
    snapshots = []

    def first(config, env):
        config["title"] = "mutated locally"
        return {"theme_config": {"nav": ["a"]}}

    def second(config, env):
        snapshots.append(config)
        return {"theme_config": {"nav": ["b"]}, "title": "Second"}

    container = PluginContainer(
        [define_plugin("first", config=first), define_plugin("second", config=second)]
    )
    raw = {"title": "Raw", "theme_config": {}}

    merged = asyncio.run(container.config(raw, ConfigEnv(mode="production", command="build")))

    assert snapshots[0]["title"] == "Raw"
    assert merged == {"title": "Second", "theme_config": {"nav": ["a", "b"]}}
    assert raw == {"title": "Raw", "theme_config": {}}


def test_config_override_must_be_a_mapping() -> None:
    container = PluginContainer([define_plugin("bad", config=lambda config, env: ["nope"])])

    with pytest.raises(PluginHookError) as excinfo:
        asyncio.run(container.config({}, ConfigEnv(mode="production", command="build")))

    assert excinfo.value.plugin == "bad"
    assert excinfo.value.hook == "config"


def test_hook_failure_names_plugin_and_file() -> None:
    def explode(page, ctx) -> None:
        raise KeyError("boom")

    container = PluginContainer([define_plugin("exploder", extend_page_data=explode)])

    with pytest.raises(PluginHookError) as excinfo:
        asyncio.run(container.extend_page_data(_page(), _context("guide/start.md")))

    error = excinfo.value
    assert error.plugin == "exploder"
    assert error.hook == "extend_page_data"
    assert error.file == "guide/start.md"
    assert isinstance(error.__cause__, KeyError)


def test_independent_hooks_cannot_accumulate() -> None:
    container = PluginContainer()

    with pytest.raises(ValueError):
        asyncio.run(container.run_independent(Hook.CONFIG, {}))
    with pytest.raises(ValueError):
        asyncio.run(container.run_accumulating(Hook.BUILD_END, {}))


def test_plugin_declaring_unimplemented_hook_is_rejected() -> None:
    class Liar(Plugin):
        name = "liar"
        hooks = frozenset({Hook.BUILD_END})

    with pytest.raises(TypeError, match="does not implement"):
        PluginContainer([Liar()])


def test_non_plugins_are_rejected() -> None:
    with pytest.raises(TypeError):
        PluginContainer([object()])  # type: ignore[list-item]


def test_client_manifest_lists_declarations_in_order() -> None:
    container = PluginContainer(
        [
            define_plugin(
                "badge",
                build_end=lambda config: None,
                slots={"doc-after": "Badge"},
                global_components={"Badge": "./Badge.vue"},
                client_module="./client.js",
            ),
            define_plugin("plain", build_start=lambda config: None),
        ]
    )

    manifest = container.client_manifest()

    assert manifest[0] == {
        "name": "badge",
        "slots": {"doc-after": "Badge"},
        "globalComponents": {"Badge": "./Badge.vue"},
        "clientModule": "./client.js",
    }
    assert manifest[1]["name"] == "plain"
    assert manifest[1]["clientModule"] is None


def test_resolve_plugins_accepts_instances_names_and_mappings() -> None:
    custom = define_plugin("custom", build_end=lambda config: None)

    plugins = resolve_plugins(
        [custom, "last-updated", {"name": "reading-time", "options": {"position": "doc-bottom"}}]
    )

    assert [plugin.name for plugin in plugins] == ["custom", "last-updated", "reading-time"]
    assert plugins[2].slots == {"doc-bottom": "DocsiteReadingTime"}


def test_resolve_plugins_rejects_bad_options() -> None:
    with pytest.raises(TypeError, match="Invalid options"):
        resolve_plugins([{"name": "reading-time", "options": {"speed": 3}}])
    with pytest.raises(TypeError):
        resolve_plugins([42])


def test_available_plugins_include_builtins() -> None:
    names = available_plugins()

    assert names[:2] == ["reading-time", "last-updated"]


def test_installed_plugins_are_discovered_by_entry_point_group(monkeypatch: pytest.MonkeyPatch) -> None:
    requested: list[dict] = []
    entry = plugins_module.metadata.EntryPoint(
        name="word-count",
        value="docsite.plugins.reading_time:ReadingTimePlugin",
        group="docsite.plugins",
    )

    def fake_entry_points(**kwargs):
        requested.append(kwargs)
        return [entry]

    monkeypatch.setattr(plugins_module.metadata, "entry_points", fake_entry_points)

    names = available_plugins()
    plugins = resolve_plugins([{"name": "word-count", "options": {"words_per_minute": 300}}])

    assert names[-1] == "word-count"
    assert requested and all(item == {"group": "docsite.plugins"} for item in requested)
    assert plugins[0].words_per_minute == 300


def test_default_declarations_are_read_only_and_not_shared() -> None:
    class First(Plugin):
        name = "first"

    class Second(Plugin):
        name = "second"

    with pytest.raises(TypeError):
        First().slots["doc-top"] = "Banner"  # type: ignore[index]
    with pytest.raises(TypeError):
        First().global_components["Banner"] = "banner.vue"  # type: ignore[index]
    assert Second().slots == {}
    assert Second().global_components == {}


class _Abbreviations(Plugin):
    name = "abbreviations"
    hooks = frozenset({Hook.EXTEND_MARKDOWN})

    def __init__(self, marker: str = "*") -> None:
        self.marker = marker

    def extend_markdown(self, md) -> None:
        md.disable("emphasis")


def test_cache_key_follows_plugin_options() -> None:
    first = _Abbreviations("*").cache_key()

    assert first == _Abbreviations("*").cache_key()
    assert first != _Abbreviations("+").cache_key()
    assert first["options"] == {"marker": "*"}
    assert first["plugin"].endswith("_Abbreviations")


def test_cache_key_follows_extend_markdown_code() -> None:
    def keep(md) -> None:
        return None

    def plain(md) -> None:
        md.disable("emphasis")

    original = define_plugin("syntax", extend_markdown=keep).cache_key()
    same = define_plugin("syntax", extend_markdown=keep).cache_key()
    changed = define_plugin("syntax", extend_markdown=plain).cache_key()

    assert original == same
    assert original["name"] == changed["name"]
    assert original["code"] != changed["code"]
