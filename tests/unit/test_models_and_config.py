"""Unit tests for the data models, configuration layer and memory cache."""

from __future__ import annotations

from datetime import date, time
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from setlist_import.config.loader import build_provider_configs, load_config
from setlist_import.config.settings import Settings
from setlist_import.interfaces.cache_provider import artist_cache_key
from setlist_import.models import CanonicalShow, StoredShow
from setlist_import.models.external import ExternalEvent, ExternalTrack, ExternalVenue
from setlist_import.models.import_job import ImportJob, ImportStage
from setlist_import.providers.cache.memory_cache import MemoryCacheProvider
from setlist_import.utils.errors import ConfigurationError

_CREDENTIAL_VARS = ("SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET", "TICKETMASTER_API_KEY")


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in _CREDENTIAL_VARS:
        monkeypatch.delenv(var, raising=False)


# ======================================================================
# External models
# ======================================================================


class TestExternalModels:
    def test_event_without_usable_venue(self) -> None:
        event = ExternalEvent.from_api(
            {"id": "E1", "_embedded": {"venues": [{"id": "V1"}]}, "dates": {"start": {}}}
        )
        assert event.venue is None
        assert event.local_date is None
        assert event.currency == "USD"

    def test_event_dates_and_prices(self) -> None:
        event = ExternalEvent.from_api(
            {
                "id": "E1",
                "dates": {"start": {"localDate": "2030-06-01", "localTime": "20:00:00"}},
                "priceRanges": [{"min": 25, "max": 80, "currency": "CAD"}],
            }
        )
        assert event.local_date == date(2030, 6, 1)
        assert event.local_time == time(20, 0)
        assert (event.min_price, event.max_price, event.currency) == (25, 80, "CAD")

    def test_venue_defaults(self) -> None:
        venue = ExternalVenue.from_api({"id": 17, "name": "The Forum"})
        assert venue.venue_id == "17"
        assert venue.city == "Unknown"
        assert venue.timezone == "America/New_York"
        assert venue.latitude is None

    def test_simplified_track_takes_album_fields(self) -> None:
        from setlist_import.models.external import ExternalAlbum

        album = ExternalAlbum(
            album_id="al1", name="Parachutes", release_date="2000-07-10", image_url="https://img"
        )
        track = ExternalTrack.from_api({"id": "t1", "name": "Yellow"}, album=album)
        assert track.album_id == "al1"
        assert track.album_art_url == "https://img"
        assert track.isrc is None

    def test_track_requires_id(self) -> None:
        with pytest.raises(KeyError):
            ExternalTrack.from_api({"name": "Yellow"})


# ======================================================================
# Canonical models
# ======================================================================


class TestCanonicalModels:
    def test_show_date_and_time_parsed(self) -> None:
        show = CanonicalShow(
            tm_event_id="E1",
            headliner_artist_id=1,
            venue_id=2,
            date="2030-06-01",
            start_time="20:00:00",
        )
        assert show.date == date(2030, 6, 1)
        assert show.start_time == time(20, 0)

    def test_show_date_optional(self) -> None:
        show = CanonicalShow(tm_event_id="E1", headliner_artist_id=1, venue_id=2)
        assert show.date is None
        assert show.start_time is None

    def test_stored_show_date(self) -> None:
        stored = StoredShow(id=3, tm_event_id="E1", date=date(2030, 6, 1))
        assert stored.date == date(2030, 6, 1)
        assert stored.name is None


# ======================================================================
# ImportJob
# ======================================================================


class TestImportJob:
    def test_to_event_is_json_safe(self) -> None:
        job = ImportJob(job_id="9", stage=ImportStage.IMPORTING_SONGS, progress=50.0)
        event = job.to_event()

        assert event["stage"] == "importing-songs"
        assert event["completed_at"] is None
        assert isinstance(event["started_at"], str)

    def test_terminal_stages(self) -> None:
        assert ImportStage.COMPLETED.is_terminal
        assert ImportStage.FAILED.is_terminal
        assert not ImportStage.WRAP_UP.is_terminal

    def test_progress_bounds_enforced(self) -> None:
        with pytest.raises(PydanticValidationError):
            ImportJob(job_id="9", progress=101.0)

    def test_frozen(self) -> None:
        job = ImportJob(job_id="9")
        with pytest.raises(PydanticValidationError):
            job.progress = 10.0  # type: ignore[misc]


# ======================================================================
# Settings & loader
# ======================================================================


class TestSettings:
    def test_missing_credentials_listed(self, clean_env: None) -> None:
        settings = Settings(_env_file=None, spotify_client_id="abc")
        assert settings.get_missing_credentials() == [
            "SPOTIFY_CLIENT_SECRET",
            "TICKETMASTER_API_KEY",
        ]

    def test_require_credentials_raises(self, clean_env: None) -> None:
        with pytest.raises(ConfigurationError, match="TICKETMASTER_API_KEY"):
            Settings(_env_file=None).require_credentials()

    def test_env_vars_are_read(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SPOTIFY_CLIENT_ID", "id")
        monkeypatch.setenv("SPOTIFY_CLIENT_SECRET", "secret")
        monkeypatch.setenv("TICKETMASTER_API_KEY", "key")
        monkeypatch.setenv("LIVENESS_THRESHOLD", "0.7")

        settings = Settings(_env_file=None)

        settings.require_credentials()
        assert settings.liveness_threshold == 0.7


class TestLoader:
    def test_shipped_config_loads(self, project_root: Path, clean_env: None) -> None:
        config = load_config(
            str(project_root / "config" / "config.yaml"), settings=Settings(_env_file=None)
        )
        assert config["app"]["name"] == "setlist-import"
        assert config["preseed"]["setlist_name"] == "Predicted Setlist"
        assert config["import"]["concurrency"] == {"albums": 10, "venues": 5}

    def test_env_settings_override_yaml(self, tmp_path: Path, clean_env: None) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "import:\n  liveness_threshold: 0.9\n  extra: kept\npreseed:\n  pool_size: 10\n"
        )

        config = load_config(str(path), settings=Settings(_env_file=None, liveness_threshold=0.6))

        assert config["import"]["liveness_threshold"] == 0.6
        assert config["import"]["extra"] == "kept"
        assert config["preseed"] == {"pool_size": 10, "songs_per_setlist": 5}

    def test_missing_file_yields_settings_only(self, tmp_path: Path, clean_env: None) -> None:
        config = load_config(str(tmp_path / "absent.yaml"), settings=Settings(_env_file=None))
        assert config["progress"] == {"queue_size": 100}

    def test_provider_overlay(self) -> None:
        configs = build_provider_configs(
            {
                "providers": {
                    "spotify": {"max_batch_size": 20, "retry_policy": {"max_retries": 1}},
                    "lastfm": {"max_wait_ms": 5},
                }
            }
        )

        assert configs["spotify"].max_batch_size == 20
        assert configs["spotify"].retry_policy.max_retries == 1
        assert configs["spotify"].retry_policy.initial_delay_ms == 1000
        assert configs["ticketmaster"].circuit_breaker.failure_threshold == 3
        assert configs["lastfm"].max_wait_ms == 5

    def test_provider_overlay_validates(self) -> None:
        with pytest.raises(PydanticValidationError):
            build_provider_configs({"providers": {"spotify": {"max_batch_size": 0}}})


# ======================================================================
# MemoryCacheProvider
# ======================================================================


class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_set_get_delete(self) -> None:
        cache = MemoryCacheProvider(max_size=10, ttl=60)
        await cache.set("k", {"v": 1})

        assert await cache.get("k") == {"v": 1}
        assert await cache.exists("k")
        await cache.delete("k")
        assert await cache.get("k") is None
        assert cache.size() == 0

    @pytest.mark.asyncio
    async def test_invalidate_drops_artist_scoped_keys_only(self) -> None:
        cache = MemoryCacheProvider(max_size=10, ttl=60)
        await cache.set(artist_cache_key("4"), "page")
        await cache.set(artist_cache_key("4", "shows"), "shows")
        await cache.set(artist_cache_key("42"), "other artist")
        await cache.set("spotify:track:id:t1", "track")

        await cache.invalidate("4")

        assert not await cache.exists("artist:4")
        assert not await cache.exists("artist:4:shows")
        assert await cache.exists("artist:42")
        assert await cache.exists("spotify:track:id:t1")
