import pytest

import config
from engine import RollupEngine, build_storage
from errors import BackendUnavailable, CampaignReferenceError, ValidationError
from fallback_storage import FallbackStorage
from memory_storage import InMemoryStorage
from models import ContentRow


class DownStorage(InMemoryStorage):
    """Primary whose every operation fails as if the warehouse were unreachable."""

    name = "down"

    def __getattribute__(self, item):
        if item in (
            "create_campaign", "get_campaigns", "get_campaign", "delete_campaign", "create_upload",
            "get_campaign_uploads", "insert_content_rows", "get_content_rows", "upsert_content_alias",
            "upsert_genre_map", "upsert_bundle_map", "get_reference_tables", "get_row_counts",
        ):
            def unavailable(*args, **kwargs):
                raise BackendUnavailable("connection refused")
            return unavailable
        return super().__getattribute__(item)


RAW_ROWS = [
    {"content_network_name": "Pluto TV", "content_title": "The Matrix", "impression": "1500", "quartile100": "600"},
    {"content_network_name": "pluto tv ", "content_title": "the matrix", "impression": "500", "quartile100": "100"},
    {"content_network_name": "Tubi", "content_title": "Friends", "impression": "800", "quartile100": "400"},
    {"content_network_name": "Plex", "content_title": None, "impression": "200", "quartile100": "20"},
    {"content_network_name": "", "impression": "bad"},
]


def test_create_campaign_rejects_blank_name(engine):
    with pytest.raises(ValidationError):
        engine.create_campaign("   ")


def test_insert_batch_requires_campaign_id(engine):
    with pytest.raises(ValidationError):
        engine.insert_batch("", [{"impression": 1}])


def test_insert_batch_rejects_unknown_campaign(engine):
    with pytest.raises(CampaignReferenceError):
        engine.insert_batch("nope-abcdef", [{"impression": 1}])
    assert engine.get_content_rows() == []


def test_insert_batch_rejects_rows_for_other_campaigns(engine):
    campaign = engine.create_campaign("Flight")
    rows = [ContentRow(campaign.campaign_id, "Tubi"), ContentRow("other-abcdef", "Tubi")]
    with pytest.raises(ValidationError):
        engine.insert_batch(campaign.campaign_id, rows)
    assert engine.get_content_rows(campaign.campaign_id) == []


def test_insert_batch_applies_defaults(engine):
    campaign = engine.create_campaign("Flight")
    assert engine.insert_batch(campaign.campaign_id, [{}, {"impression": "-3", "quartile100": "7"}]) == 2

    rows = engine.get_content_rows(campaign.campaign_id)
    assert rows[0] == ContentRow(campaign.campaign_id)
    assert (rows[1].impression, rows[1].quartile100) == (0, 7)


def test_empty_batch_inserts_nothing(engine):
    campaign = engine.create_campaign("Flight")
    assert engine.insert_batch(campaign.campaign_id, []) == 0
    assert engine.get_app_rollup(campaign.campaign_id) == []


def test_app_rollup_through_engine(engine):
    campaign = engine.create_campaign("Flight")
    engine.insert_batch(campaign.campaign_id, RAW_ROWS)

    rollup = engine.get_app_rollup(campaign.campaign_id)
    assert [(r.app_name, r.impressions, r.completes, r.content_count) for r in rollup] == [
        ("Pluto TV", 2000, 700, 2),
        ("Other", 1000, 420, 3),
    ]
    assert rollup[0].avg_vcr == 35.0


def test_reference_changes_apply_to_existing_rows(engine):
    campaign = engine.create_campaign("Flight")
    engine.insert_batch(campaign.campaign_id, RAW_ROWS)
    keys_before = {r.content_key for r in engine.get_content_rollup(campaign.campaign_id)}
    assert "the matrix" in keys_before

    engine.upsert_content_alias("the matrix", "matrix_1999")
    engine.upsert_genre_map("Tubi", "Movies")

    content = engine.get_content_rollup(campaign.campaign_id)
    assert content[0].content_key == "matrix_1999"
    assert content[0].impressions == 2000
    assert "Movies" in {g.genre_canon for g in engine.get_genre_rollup(campaign.campaign_id)}


def test_seeded_aliases_collapse_titles(engine):
    engine.seed_reference_tables()
    campaign = engine.create_campaign("Flight")
    engine.insert_batch(campaign.campaign_id, [
        {"content_network_name": "Pluto TV", "content_title": "The Matrix", "impression": "10"},
        {"content_network_name": "Pluto TV", "content_title": "Matrix", "impression": "5"},
    ])
    content = engine.get_content_rollup(campaign.campaign_id)
    assert [(c.content_key, c.impressions, c.content_title) for c in content] == [("matrix_1999", 15, "The Matrix")]
    assert engine.get_row_counts().bundle_map == 6


def test_delete_campaign_removes_it_from_rollups(engine):
    keep = engine.create_campaign("Keep")
    gone = engine.create_campaign("Gone")
    engine.insert_batch(keep.campaign_id, [{"content_network_name": "Tubi", "impression": "1200"}])
    engine.insert_batch(gone.campaign_id, [{"content_network_name": "Plex", "impression": "5000"}])

    engine.delete_campaign(gone.campaign_id)

    assert engine.get_campaign(gone.campaign_id) is None
    assert [r.app_name for r in engine.get_app_rollup()] == ["Tubi"]
    assert engine.get_campaign_stats(gone.campaign_id) is None


def test_campaign_stats(engine):
    campaign = engine.create_campaign("Flight")
    engine.upsert_genre_map("Tubi", "Movies")
    engine.insert_batch(campaign.campaign_id, RAW_ROWS)

    stats = engine.get_campaign_stats(campaign.campaign_id)
    assert stats.total_impressions == 3000
    assert stats.total_completes == 1120
    assert stats.total_rows == 5
    assert stats.mapped_genres == 2
    assert stats.mapped_percentage == 40


def test_same_results_on_fallback_store(engine):
    degraded = RollupEngine(FallbackStorage(DownStorage(), InMemoryStorage()))
    for e in (engine, degraded):
        e.upsert_genre_map("Tubi", "Movies")
        campaign = e.create_campaign("Flight")
        e.insert_batch(campaign.campaign_id, RAW_ROWS)

    assert degraded.degraded is True
    assert engine.degraded is False

    def strip(rollup):
        return [{k: v for k, v in r.to_dict().items() if k != "campaign_id"} for r in rollup]

    assert strip(degraded.get_app_rollup()) == strip(engine.get_app_rollup())
    assert strip(degraded.get_genre_rollup()) == strip(engine.get_genre_rollup())
    assert strip(degraded.get_content_rollup()) == strip(engine.get_content_rollup())


def test_build_storage_selects_backend(monkeypatch):
    assert isinstance(build_storage("memory"), InMemoryStorage)

    durable = build_storage("snowflake")
    assert isinstance(durable, FallbackStorage)
    assert durable.primary.name == "snowflake"
    assert durable.fallback.name == "memory"

    monkeypatch.setattr(config, "STORAGE_BACKEND", "postgres")
    assert isinstance(build_storage(), InMemoryStorage)


class RacingStorage(InMemoryStorage):
    """Deletes the campaign right after reporting that it exists."""

    def get_campaign(self, campaign_id):
        campaign = super().get_campaign(campaign_id)
        if campaign is not None:
            self.delete_campaign(campaign_id)
        return campaign


def test_delete_between_check_and_insert_leaves_no_orphans():
    store = RacingStorage()
    engine = RollupEngine(store)
    campaign = store.create_campaign("Flight")

    with pytest.raises(CampaignReferenceError):
        engine.insert_batch(campaign.campaign_id, [{"content_network_name": "Tubi", "impression": "10"}])

    assert store.get_content_rows() == []
    assert store.get_row_counts().content_rows == 0
