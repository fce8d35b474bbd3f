"""Tests for the incremental rebuild controller."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import pytest

from docsite import assembler as assembler_module
from docsite.config import DEVELOPMENT
from docsite.dev import ChangeKind, PathState, RebuildController, SiteSnapshot
from docsite.errors import ConfigError, RouteCollisionError
from docsite.plugins import define_plugin
from tests._fixtures.site_builder import SiteBuilder

Scenario = Callable[[RebuildController], Awaitable[Any]]


def _run(site_builder: SiteBuilder, scenario: Scenario, user_config=None, **kwargs) -> Any:
    async def main() -> Any:
        config = dict(user_config or {})
        config.setdefault("dev", {"debounce_ms": 10})
        resolved = await site_builder.resolve(config, mode=DEVELOPMENT)
        kwargs.setdefault("write", False)
        controller = RebuildController(resolved, **kwargs)
        try:
            await controller.start()
            return await scenario(controller)
        finally:
            await controller.stop()

    return asyncio.run(main())


def test_change_republishes_and_preserves_other_pages(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n", "a.md": "# A\n", "b.md": "# B\n"})
    published: list[SiteSnapshot] = []

    async def scenario(controller: RebuildController):
        before = controller.snapshot
        controller.subscribe(published.append)
        site_builder.write({"a.md": "# A changed\n"})
        controller.notify(site_builder.path("a.md"), ChangeKind.CHANGED)
        await controller.wait_idle()
        return before, controller.snapshot

    before, after = _run(site_builder, scenario)

    assert after.version == before.version + 1
    assert published == [after]
    assert after.pages["a.md"].headers[0].title == "A changed"
    assert after.pages["b.md"] is before.pages["b.md"]
    assert after.pages["index.md"] is before.pages["index.md"]
    assert after.routes.get("/b") is before.routes.get("/b")
    assert after.routes.get("/a") is not before.routes.get("/a")


def test_burst_of_events_coalesces_into_one_rebuild(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n"})
    compiled: list[str] = []
    spy = define_plugin("spy", extend_page_data=lambda page, ctx: compiled.append(page.relative_path))

    async def scenario(controller: RebuildController):
        compiled.clear()
        for index in range(5):
            site_builder.write({"index.md": f"# Home {index}\n"})
            controller.notify(site_builder.path("index.md"), "changed")
        assert controller.state_of(site_builder.path("index.md")) is PathState.PENDING
        await controller.wait_idle()
        return controller.snapshot

    snapshot = _run(site_builder, scenario, {"plugins": [spy]})

    assert compiled == ["index.md"]
    assert snapshot.pages["index.md"].headers[0].title == "Home 4"
    assert snapshot.version == 2


def test_added_file_creates_route(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n"})

    async def scenario(controller: RebuildController):
        site_builder.write({"guide/new.md": "# New\n"})
        controller.notify(site_builder.path("guide/new.md"), "added")
        await controller.wait_idle()
        return controller.snapshot

    snapshot = _run(site_builder, scenario)

    assert snapshot.routes.paths()[:2] == ["/", "/guide/new"]
    assert len(snapshot.routes) == 3


def test_removed_file_drops_page_and_route(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n", "old.md": "# Old\n"})

    async def scenario(controller: RebuildController):
        site_builder.remove("old.md")
        controller.notify(site_builder.path() / "old.md", ChangeKind.REMOVED)
        await controller.wait_idle()
        return controller.snapshot

    snapshot = _run(site_builder, scenario)

    assert "old.md" not in snapshot.pages
    assert snapshot.routes.get("/old") is None


def test_failed_recompile_keeps_snapshot_and_reports_error(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n"})
    failures: list[tuple[str, BaseException]] = []

    async def scenario(controller: RebuildController):
        before = controller.snapshot
        controller.subscribe_errors(lambda path, exc: failures.append((path, exc)))
        site_builder.write({"index.md": "---\ntitle: [oops\n---\n"})
        controller.notify(site_builder.path("index.md"), "changed")
        await controller.wait_idle()
        state = controller.state_of(site_builder.path("index.md"))
        errors = dict(controller.errors)

        site_builder.write({"index.md": "# Fixed\n"})
        controller.notify(site_builder.path("index.md"), "changed")
        await controller.wait_idle()
        return before, state, errors, controller

    before, state, errors, controller = _run(site_builder, scenario)

    assert state is PathState.ERROR
    assert "index.md" in errors
    assert [path for path, _ in failures] == ["index.md"]
    assert controller.snapshot.version == before.version + 1
    assert controller.snapshot.pages["index.md"].headers[0].title == "Fixed"
    assert dict(controller.errors) == {}


def test_extra_source_collision_is_rejected_incrementally(site_builder: SiteBuilder) -> None:
    site_builder.write({"docs/api/intro.md": "# Intro\n", "packages/api/.keep": ""})
    failures: list[BaseException] = []

    async def scenario(controller: RebuildController):
        before = controller.snapshot
        controller.subscribe_errors(lambda path, exc: failures.append(exc))
        site_builder.write({"packages/api/intro.md": "# Other\n"})
        controller.notify(site_builder.path("packages/api/intro.md"), "added")
        await controller.wait_idle()
        return before, controller.snapshot

    before, after = _run(
        site_builder,
        scenario,
        {"src_dir": "docs", "extra_sources": [{"dir": "packages/api", "prefix": "api"}]},
    )

    assert after is before
    assert len(failures) == 1 and isinstance(failures[0], RouteCollisionError)


def test_events_outside_sources_are_ignored(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n", "notes.txt": "hi\n"})

    async def scenario(controller: RebuildController):
        before = controller.snapshot
        controller.notify(site_builder.path("notes.txt"), "changed")
        await controller.wait_idle()
        return before, controller.snapshot

    before, after = _run(site_builder, scenario)

    assert after is before


def test_config_change_reloads_configuration(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n"})
    titles = iter(["Renamed"])

    async def loader():
        return await site_builder.resolve(
            {"title": next(titles), "dev": {"debounce_ms": 10}}, mode=DEVELOPMENT
        )

    async def scenario(controller: RebuildController):
        controller.notify(site_builder.path() / ".docsite.yml", "changed")
        await controller.wait_idle()
        return controller.snapshot

    snapshot = _run(site_builder, scenario, config_loader=loader)

    assert snapshot.config.title == "Renamed"
    assert snapshot.pages["index.md"].title == "Renamed"


def test_config_error_keeps_previous_configuration(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n"})
    failures: list[BaseException] = []

    async def loader():
        raise ConfigError("title must not be empty")

    async def scenario(controller: RebuildController):
        before = controller.snapshot
        controller.subscribe_errors(lambda path, exc: failures.append(exc))
        result = await controller.reload_config()
        return before, result, controller.snapshot

    before, result, after = _run(site_builder, scenario, config_loader=loader)

    assert result is None
    assert after is before
    assert isinstance(failures[0], ConfigError)


def test_unsubscribe_stops_notifications(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n"})
    seen: list[int] = []

    async def scenario(controller: RebuildController):
        unsubscribe = controller.subscribe(lambda snapshot: seen.append(snapshot.version))
        unsubscribe()
        controller.notify(site_builder.path("index.md"), "changed")
        await controller.wait_idle()

    _run(site_builder, scenario)

    assert seen == []


def _gated_plugin(calls: list[str], gates: dict[str, asyncio.Event]):
    """Plugin whose page hook blocks on ``gates['release']`` once gates are installed."""

    async def hold(page, ctx) -> None:
        if "release" not in gates:
            return
        calls.append(page.relative_path)
        gates["started"].set()
        await gates["release"].wait()

    return define_plugin("gate", extend_page_data=hold)


def test_removal_during_compilation_discards_result(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n", "doc.md": "# Doc\n"})
    calls: list[str] = []
    gates: dict[str, asyncio.Event] = {}
    published: list[SiteSnapshot] = []

    async def scenario(controller: RebuildController):
        gates.update(started=asyncio.Event(), release=asyncio.Event())
        controller.subscribe(published.append)
        site_builder.write({"doc.md": "# Doc edited\n"})
        controller.notify(site_builder.path("doc.md"), "changed")
        await gates["started"].wait()

        assert controller.state_of("doc.md") is PathState.COMPILING
        site_builder.remove("doc.md")
        controller.notify(site_builder.path() / "doc.md", ChangeKind.REMOVED)
        gates["release"].set()
        await controller.wait_idle()
        return controller.snapshot

    snapshot = _run(site_builder, scenario, {"plugins": [_gated_plugin(calls, gates)]})

    assert calls == ["doc.md"]
    assert sorted(snapshot.pages) == ["index.md"]
    assert len(published) == 1
    assert all("doc.md" not in item.pages for item in published)


def test_edits_during_compilation_coalesce_into_one_rerun(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home 1\n"})
    calls: list[str] = []
    gates: dict[str, asyncio.Event] = {}

    async def scenario(controller: RebuildController):
        gates.update(started=asyncio.Event(), release=asyncio.Event())
        controller.notify(site_builder.path("index.md"), "changed")
        await gates["started"].wait()

        for index in (2, 3):
            site_builder.write({"index.md": f"# Home {index}\n"})
            controller.notify(site_builder.path("index.md"), "changed")
        assert controller.state_of("index.md") is PathState.COMPILING
        gates["release"].set()
        await controller.wait_idle()
        return controller.snapshot

    snapshot = _run(site_builder, scenario, {"plugins": [_gated_plugin(calls, gates)]})

    assert calls == ["index.md", "index.md"]
    assert snapshot.pages["index.md"].headers[0].title == "Home 3"
    assert snapshot.version == 3


def test_unexpected_error_marks_path_failed_and_recovers(
    site_builder: SiteBuilder, monkeypatch: pytest.MonkeyPatch
) -> None:
    site_builder.write({"index.md": "# Home\n"})
    failures: list[tuple[str, BaseException]] = []
    real_read = assembler_module._read_source
    reads: list[object] = []

    def flaky_read(path):
        reads.append(path)
        if len(reads) == 1:
            raise PermissionError(f"Permission denied: '{path}'")
        return real_read(path)

    async def scenario(controller: RebuildController):
        before = controller.snapshot
        controller.subscribe_errors(lambda path, exc: failures.append((path, exc)))
        monkeypatch.setattr(assembler_module, "_read_source", flaky_read)
        controller.notify(site_builder.path("index.md"), "changed")
        await controller.wait_idle()
        state = controller.state_of("index.md")
        errors = dict(controller.errors)
        unchanged = controller.snapshot is before

        site_builder.write({"index.md": "# Fixed\n"})
        controller.notify(site_builder.path("index.md"), "changed")
        await controller.wait_idle()
        return state, errors, unchanged, controller

    state, errors, unchanged, controller = _run(site_builder, scenario)

    assert state is PathState.ERROR
    assert "Permission denied" in errors["index.md"]
    assert unchanged
    assert [path for path, _ in failures] == ["index.md"]
    assert isinstance(failures[0][1], PermissionError)
    assert controller.state_of("index.md") is PathState.CLEAN
    assert controller.snapshot.pages["index.md"].headers[0].title == "Fixed"
    assert dict(controller.errors) == {}


def test_failing_listener_does_not_block_publication(site_builder: SiteBuilder) -> None:
    site_builder.write({"index.md": "# Home\n"})
    seen: list[int] = []

    def broken(snapshot: SiteSnapshot) -> None:
        raise RuntimeError("listener exploded")

    async def scenario(controller: RebuildController):
        controller.subscribe(broken)
        controller.subscribe(lambda snapshot: seen.append(snapshot.version))
        site_builder.write({"index.md": "# Changed\n"})
        controller.notify(site_builder.path("index.md"), "changed")
        await controller.wait_idle()
        return controller.state_of("index.md"), controller.snapshot

    state, snapshot = _run(site_builder, scenario)

    assert state is PathState.CLEAN
    assert seen == [2]
    assert snapshot.pages["index.md"].headers[0].title == "Changed"


def test_failed_artifact_write_is_reported(
    site_builder: SiteBuilder, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    site_builder.write({"index.md": "# Home\n"})
    failures: list[tuple[str, BaseException]] = []

    def full_disk(*args, **kwargs):
        raise OSError(28, "No space left on device")

    async def scenario(controller: RebuildController):
        controller.subscribe_errors(lambda path, exc: failures.append((path, exc)))
        monkeypatch.setattr(controller.builder.writer, "write", full_disk)
        site_builder.write({"index.md": "# Changed\n"})
        controller.notify(site_builder.path("index.md"), "changed")
        await controller.wait_idle()
        return controller.builder.writer.target_dir, controller.snapshot

    with caplog.at_level("ERROR", logger="docsite.dev"):
        target_dir, snapshot = _run(site_builder, scenario, write=True)

    assert snapshot.pages["index.md"].headers[0].title == "Changed"
    assert [path for path, _ in failures] == [str(target_dir)]
    assert isinstance(failures[0][1], OSError)
    assert "Writing artifacts" in caplog.text
