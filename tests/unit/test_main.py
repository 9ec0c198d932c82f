"""Unit tests for application composition in main.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from setlist_import.config.settings import Settings
from setlist_import.main import build_components, create_app, shutdown_components
from setlist_import.pipeline.orchestrator import ArtistImportOrchestrator


def _settings(tmp_path: Path, **overrides) -> Settings:
    return Settings(
        _env_file=None,
        database_path=str(tmp_path / "app.db"),
        spotify_client_id=overrides.pop("spotify_client_id", "id"),
        spotify_client_secret=overrides.pop("spotify_client_secret", "secret"),
        ticketmaster_api_key=overrides.pop("ticketmaster_api_key", ""),
        **overrides,
    )


class TestBuildComponents:
    @pytest.mark.asyncio
    async def test_wires_every_component(self, tmp_path: Path) -> None:
        components = build_components(_settings(tmp_path), {})
        await components["store"].initialize()
        try:
            assert isinstance(components["orchestrator"], ArtistImportOrchestrator)
            assert components["provider_registry"] == {
                "ticketmaster": False,
                "spotify": True,
                "store": True,
            }
            stats = components["optimizer"].get_statistics()
            assert {"spotify", "ticketmaster", "setlistfm"} <= set(stats["providers"])
        finally:
            await shutdown_components(components)

        assert components["http_client"].is_closed

    @pytest.mark.asyncio
    async def test_yaml_provider_settings_reach_optimizer(self, tmp_path: Path) -> None:
        components = build_components(
            _settings(tmp_path), {"providers": {"spotify": {"max_batch_size": 7}}}
        )
        try:
            assert components["optimizer"].config_for("spotify").max_batch_size == 7
        finally:
            await shutdown_components(components)


class TestCreateApp:
    def test_routes_registered(self) -> None:
        paths = {route.path for route in create_app().routes}

        assert {
            "/api/v1/imports",
            "/api/v1/imports/batch",
            "/api/v1/imports/{job_id}",
            "/api/v1/optimizer/stats",
            "/api/v1/health",
            "/ws/imports/{job_id}",
        } <= paths
