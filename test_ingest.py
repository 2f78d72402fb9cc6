import pytest

from errors import ValidationError
from ingest import campaign_name_from_file, ingest_csv, read_content_csv, virtual_stored_path

CSV = (
    "Campaign Name , CONTENT TITLE,Content Network Name,Impression,Quartile100\n"
    "Q3 Launch,The Matrix,Pluto TV,1500,600\n"
    "\n"
    "Q3 Launch,,Tubi,800,400\n"
    "Q3 Launch,Friends,Plex,n/a,\n"
)


def test_headers_are_case_and_whitespace_insensitive():
    rows = read_content_csv(CSV.encode("utf-8"))
    assert len(rows) == 3
    assert rows[0] == {
        "campaign_name_src": "Q3 Launch",
        "content_title": "The Matrix",
        "content_network_name": "Pluto TV",
        "impression": "1500",
        "quartile100": "600",
    }
    assert rows[1]["content_title"] is None
    assert rows[2]["quartile100"] is None


def test_utf8_bom_and_str_input():
    rows = read_content_csv("\ufeffImpression,Content Network Name\n5,Tubi\n")
    assert rows == [{"impression": "5", "content_network_name": "Tubi"}]


def test_blank_file_has_no_rows():
    assert read_content_csv(b"") == []
    assert read_content_csv(b"  \n\n") == []


def test_unknown_columns_are_ignored():
    rows = read_content_csv(b"Device,Impression\nRoku,10\n")
    assert rows == [{"impression": "10"}]


def test_campaign_name_from_file():
    assert campaign_name_from_file("Q3_pluto-launch.csv") == "Q3 pluto launch"
    assert campaign_name_from_file("exports/spring.csv") == "spring"


def test_virtual_stored_path():
    assert virtual_stored_path("flight-abc123", "x.csv") == "virtual://flight-abc123/x.csv"


def test_non_csv_is_rejected_before_writing(engine):
    with pytest.raises(ValidationError):
        ingest_csv(engine, "report.xlsx", b"whatever")
    assert engine.list_campaigns() == []


def test_ingest_creates_campaign_and_inserts_rows(engine):
    result = ingest_csv(engine, "Q3_launch.csv", CSV.encode("utf-8"))

    campaign_id = result["campaign"]["id"]
    assert result["campaign"]["name"] == "Q3 launch"
    assert result["campaign"]["merged"] is False
    assert result["upload"]["filename"] == "Q3_launch.csv"
    assert result["upload"]["stored_path"] == f"virtual://{campaign_id}/Q3_launch.csv"
    assert result["content"] == {"rows_processed": 3, "rows_inserted": 3}

    rows = engine.get_content_rows(campaign_id)
    assert [r.impression for r in rows] == [1500, 800, 0]
    assert rows[0].campaign_name_src == "Q3 Launch"
    assert len(engine.get_campaign_uploads(campaign_id)) == 1


def test_named_ingest_merges_into_existing_campaign(engine):
    first = ingest_csv(engine, "a.csv", CSV, campaign_name="Q3 Launch")
    second = ingest_csv(engine, "b.csv", CSV, campaign_name="Q3 Launch")

    assert second["campaign"]["merged"] is True
    assert second["campaign"]["id"] == first["campaign"]["id"]
    assert len(engine.list_campaigns()) == 1
    assert len(engine.get_content_rows(first["campaign"]["id"])) == 6
    assert len(engine.get_campaign_uploads(first["campaign"]["id"])) == 2


def test_unnamed_ingest_of_same_file_creates_new_campaign(engine):
    ingest_csv(engine, "a.csv", CSV)
    ingest_csv(engine, "a.csv", CSV)
    assert len(engine.list_campaigns()) == 2


def test_blank_campaign_name_does_not_merge(engine):
    first = ingest_csv(engine, "a.csv", CSV)
    second = ingest_csv(engine, "a.csv", CSV, campaign_name="   ")

    assert second["campaign"]["merged"] is False
    assert second["campaign"]["id"] != first["campaign"]["id"]
    assert second["campaign"]["name"] == "a"
    assert len(engine.list_campaigns()) == 2
