import re
import threading

import pytest

import storage
from errors import CampaignReferenceError, ConflictError, ValidationError
from memory_storage import InMemoryStorage
from models import ContentRow

CAMPAIGN_ID = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*-[a-z0-9]{6}$")


def test_campaign_id_is_slug_plus_suffix(memory_storage):
    campaign = memory_storage.create_campaign("Spring CTV Flight!")
    assert campaign.campaign_id.startswith("spring-ctv-flight-")
    assert CAMPAIGN_ID.match(campaign.campaign_id)
    assert campaign.campaign_name == "Spring CTV Flight!"
    assert campaign.created_at


def test_campaign_name_without_slug_characters(memory_storage):
    campaign = memory_storage.create_campaign("***")
    assert campaign.campaign_id.startswith("campaign-")


def test_colliding_id_is_regenerated(memory_storage, monkeypatch):
    suffixes = iter(["aaaaaa", "aaaaaa", "bbbbbb"])
    monkeypatch.setattr(storage, "random_suffix", lambda length=6: next(suffixes))

    first = memory_storage.create_campaign("Flight")
    second = memory_storage.create_campaign("Flight")

    assert first.campaign_id == "flight-aaaaaa"
    assert second.campaign_id == "flight-bbbbbb"
    assert len(memory_storage.get_campaigns()) == 2


def test_conflict_after_max_attempts(monkeypatch):
    monkeypatch.setattr(storage, "random_suffix", lambda length=6: "zzzzzz")
    store = InMemoryStorage(max_id_attempts=3)
    store.create_campaign("Flight")
    with pytest.raises(ConflictError):
        store.create_campaign("Flight")
    assert len(store.get_campaigns()) == 1


def test_campaigns_listed_newest_first(memory_storage):
    a = memory_storage.create_campaign("A")
    b = memory_storage.create_campaign("B")
    c = memory_storage.create_campaign("C")
    assert [x.campaign_id for x in memory_storage.get_campaigns()] == [c.campaign_id, b.campaign_id, a.campaign_id]


def test_missing_campaign_reads_as_none(memory_storage):
    assert memory_storage.get_campaign("nope-abcdef") is None
    assert memory_storage.get_campaign_uploads("nope-abcdef") == []
    assert memory_storage.get_content_rows("nope-abcdef") == []


def test_upload_requires_existing_campaign(memory_storage):
    with pytest.raises(CampaignReferenceError) as exc:
        memory_storage.create_upload("nope-abcdef", "x.csv", "virtual://nope-abcdef/x.csv")
    assert exc.value.campaign_id == "nope-abcdef"
    assert memory_storage.get_row_counts().campaign_uploads == 0


def test_upload_is_recorded(memory_storage):
    campaign = memory_storage.create_campaign("Flight")
    upload = memory_storage.create_upload(campaign.campaign_id, "x.csv", "virtual://x.csv")
    assert re.match(r"^upload-\d+-[a-z0-9]{6}$", upload.upload_id)
    assert memory_storage.get_campaign_uploads(campaign.campaign_id) == [upload]


def test_invalid_row_rejects_whole_batch(memory_storage):
    rows = [ContentRow("c1", "Tubi", impression=5), ContentRow("", "Tubi", impression=5)]
    with pytest.raises(ValidationError):
        memory_storage.insert_content_rows(rows)
    assert memory_storage.get_content_rows() == []


def test_rows_keep_insertion_order(memory_storage):
    c1 = memory_storage.create_campaign("One").campaign_id
    c2 = memory_storage.create_campaign("Two").campaign_id
    first = [ContentRow(c1, "A", impression=1), ContentRow(c2, "B", impression=2)]
    second = [ContentRow(c1, "C", impression=3)]
    assert memory_storage.insert_content_rows(first) == 2
    assert memory_storage.insert_content_rows(second) == 1

    assert memory_storage.get_content_rows() == first + second
    assert [r.content_network_name for r in memory_storage.get_content_rows(c1)] == ["A", "C"]


def test_delete_cascades_and_is_idempotent(memory_storage):
    keep = memory_storage.create_campaign("Keep")
    gone = memory_storage.create_campaign("Gone")
    for campaign in (keep, gone):
        memory_storage.create_upload(campaign.campaign_id, "x.csv", "virtual://x.csv")
        memory_storage.insert_content_rows([ContentRow(campaign.campaign_id, "Tubi", impression=10)])

    memory_storage.delete_campaign(gone.campaign_id)
    memory_storage.delete_campaign(gone.campaign_id)

    assert memory_storage.get_campaign(gone.campaign_id) is None
    assert memory_storage.get_content_rows(gone.campaign_id) == []
    assert memory_storage.get_campaign_uploads(gone.campaign_id) == []
    counts = memory_storage.get_row_counts()
    assert (counts.campaigns, counts.campaign_uploads, counts.content_rows) == (1, 1, 1)


def test_reference_upserts_replace_by_key(memory_storage):
    memory_storage.upsert_content_alias("the matrix", "matrix_1999")
    memory_storage.upsert_content_alias("the matrix", "matrix_v2")
    memory_storage.upsert_genre_map("Pluto TV", "Entertainment")
    memory_storage.upsert_bundle_map("tv.pluto", "com.pluto.tv", "Pluto TV", "Pluto Inc", "Alternative bundle ID")

    tables = memory_storage.get_reference_tables()
    assert tables.content_aliases == {"the matrix": "matrix_v2"}
    assert tables.genre_map == {"Pluto TV": "Entertainment"}
    assert tables.bundle_map["tv.pluto"].canonical_bundle == "com.pluto.tv"

    # snapshot, not a live view
    tables.genre_map["Tubi"] = "Movies"
    assert "Tubi" not in memory_storage.get_reference_tables().genre_map


def test_close_resets_everything(memory_storage):
    campaign = memory_storage.create_campaign("Flight")
    memory_storage.insert_content_rows([ContentRow(campaign.campaign_id, "Tubi")])
    memory_storage.upsert_genre_map("Tubi", "Movies")

    memory_storage.close()

    assert memory_storage.get_row_counts().to_dict() == {
        "campaigns": 0,
        "campaign_uploads": 0,
        "content_rows": 0,
        "content_aliases": 0,
        "genre_map": 0,
        "bundle_map": 0,
    }


def test_concurrent_batches_are_not_interleaved(memory_storage):
    batch_size = 200
    campaign_id = memory_storage.create_campaign("Flight").campaign_id

    def insert(tag):
        memory_storage.insert_content_rows([ContentRow(campaign_id, tag, impression=i) for i in range(batch_size)])

    threads = [threading.Thread(target=insert, args=(f"net-{n}",)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    rows = memory_storage.get_content_rows()
    assert len(rows) == 8 * batch_size
    for start in range(0, len(rows), batch_size):
        chunk = rows[start:start + batch_size]
        assert len({r.content_network_name for r in chunk}) == 1
        assert [r.impression for r in chunk] == list(range(batch_size))


def test_rows_for_unknown_campaign_are_rejected(memory_storage):
    campaign = memory_storage.create_campaign("Flight")
    rows = [ContentRow(campaign.campaign_id, "Tubi"), ContentRow("gone-abcdef", "Tubi")]
    with pytest.raises(CampaignReferenceError):
        memory_storage.insert_content_rows(rows)
    assert memory_storage.get_content_rows() == []


def test_long_text_is_cut_to_column_widths(memory_storage):
    campaign = memory_storage.create_campaign("Flight")
    memory_storage.insert_content_rows([ContentRow(campaign.campaign_id, "N" * 600, "T" * 3000, "C" * 600)])

    row = memory_storage.get_content_rows()[0]
    assert len(row.content_title) == 2048
    assert len(row.content_network_name) == 512
    assert len(row.campaign_name_src) == 512
