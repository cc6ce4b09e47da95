"""Tests for runtime wiring."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from autorelay.config.schema import PhotosSection, RelayConfig, RelaySection
from autorelay.intelligence import SessionMode
from autorelay.models import SourceApp, Workflow
from autorelay.runtime import (
    RelayRuntime,
    build_face_analyzer,
    build_store,
    get_runtime,
    reset_runtime,
    set_runtime,
)


class IdleBackend:
    async def load(self, mode: SessionMode) -> None:
        pass

    async def generate(self, mode: SessionMode, prompt: str, image: bytes | None = None) -> str:
        return "BEGIN\nSubject: s\nBody: b\nEND"

    async def unload(self, mode: SessionMode) -> None:
        pass


@pytest.fixture()
def config(tmp_path: Path) -> RelayConfig:
    return RelayConfig(
        relay=RelaySection(
            data_dir=str(tmp_path / "data"),
            workflows_dir=str(tmp_path / "data" / "workflows"),
        ),
        photos=PhotosSection(enabled=False, watch_dir=str(tmp_path / "photos")),
    )


@pytest.fixture()
def mail() -> AsyncMock:
    client = AsyncMock()
    client.initialize.return_value = True
    client.send.return_value = True
    return client


async def _drain(runtime: RelayRuntime) -> None:
    for _ in range(100):
        if runtime.orchestrator.pending == 0:
            return
        await asyncio.sleep(0.01)


class TestBuilders:
    def test_store_without_remote(self, config: RelayConfig) -> None:
        store = build_store(config)
        assert store.remote is None
        assert store.workflows_dir == config.get_workflows_path()

    def test_store_with_remote(self, config: RelayConfig) -> None:
        config.remote.enabled = True
        config.remote.base_url = "https://relay.example"
        assert build_store(config).remote is not None

    def test_no_face_service(self, config: RelayConfig) -> None:
        assert build_face_analyzer(config) is None


class TestRelayRuntime:
    @pytest.mark.asyncio()
    async def test_start_and_stop(self, config: RelayConfig, mail: AsyncMock) -> None:
        runtime = RelayRuntime(config, mail=mail, backend=IdleBackend())
        await runtime.start()
        try:
            assert runtime.started
            assert runtime.telegram is None
            assert (config.get_data_path() / "executions.db").exists()
            assert runtime.photos.is_running is False
        finally:
            await runtime.stop()
        assert not runtime.started

    @pytest.mark.asyncio()
    async def test_location_update_runs_maps_workflow(
        self, config: RelayConfig, mail: AsyncMock
    ) -> None:
        runtime = RelayRuntime(config, mail=mail, backend=IdleBackend())
        await runtime.start()
        try:
            saved = await runtime.add_workflow(
                Workflow(
                    source=SourceApp.MAPS,
                    destination=SourceApp.GMAIL,
                    destination_account="me@x.com",
                    geo_latitude=40.0,
                    geo_longitude=-74.0,
                    geo_radius_meters=200.0,
                )
            )
            assert saved.geofence_id in runtime.monitor.regions

            events = await runtime.monitor.update_location(40.0, -74.0)
            assert [str(ev.transition) for ev in events] == ["ENTER"]
            await _drain(runtime)

            mail.send.assert_awaited_once_with(
                "me@x.com", "Arrival Update", "I'm coming home.", None
            )
            assert runtime.executions.history()[0]["workflowRef"] == saved.id
        finally:
            await runtime.stop()

    @pytest.mark.asyncio()
    async def test_existing_maps_workflows_registered_on_start(
        self, config: RelayConfig, mail: AsyncMock
    ) -> None:
        store = build_store(config)
        await store.save(
            Workflow(
                source=SourceApp.MAPS,
                destination=SourceApp.GMAIL,
                destination_account="me@x.com",
                geo_latitude=1.0,
                geo_longitude=1.0,
                geo_radius_meters=50.0,
            )
        )
        runtime = RelayRuntime(config, mail=mail, backend=IdleBackend())
        await runtime.start()
        try:
            assert len(runtime.monitor.regions) == 1
        finally:
            await runtime.stop()

    @pytest.mark.asyncio()
    async def test_add_workflow_requires_start(self, config: RelayConfig) -> None:
        runtime = RelayRuntime(config, backend=IdleBackend())
        with pytest.raises(RuntimeError):
            await runtime.add_workflow(
                Workflow(source=SourceApp.GMAIL, destination=SourceApp.TELEGRAM)
            )


class TestSingleton:
    def test_set_and_reset(self, config: RelayConfig) -> None:
        runtime = RelayRuntime(config)
        set_runtime(runtime)
        assert get_runtime() is runtime
        reset_runtime()
        set_runtime(RelayRuntime(config))
        assert get_runtime() is not runtime
        reset_runtime()
