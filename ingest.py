"""
CTV Rollup – CSV front door. Splits an export into header-normalized raw rows and hands them
to the engine; it never aggregates.

Expected columns (case and surrounding whitespace ignored):
  Campaign Name, Content Title, Content Network Name, Impression, Quartile100
"""

import io
import logging
import re
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from engine import RollupEngine
from errors import ValidationError

logger = logging.getLogger(__name__)

CSV_COLUMN_MAP: Dict[str, str] = {
    "campaign name": "campaign_name_src",
    "content title": "content_title",
    "content network name": "content_network_name",
    "impression": "impression",
    "quartile100": "quartile100",
}


def campaign_name_from_file(file_name: str) -> str:
    """'Q3_pluto-launch.csv' -> 'Q3 pluto launch'."""
    stem = PurePath(file_name or "").stem
    return re.sub(r"[_-]", " ", stem)


def virtual_stored_path(campaign_id: str, file_name: str) -> str:
    # files are parsed in memory, never written to disk
    return f"virtual://{campaign_id}/{file_name}"


def read_content_csv(data: Union[bytes, str]) -> List[Dict[str, Any]]:
    """Parse CSV text into raw row dicts keyed by the engine's field names."""
    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
    except UnicodeDecodeError as e:
        raise ValidationError(f"CSV is not valid UTF-8: {e}") from e
    text = text.lstrip("\ufeff")
    if not text.strip():
        return []
    try:
        df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, skip_blank_lines=True)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ValidationError(f"Could not parse CSV: {e}") from e
    df.columns = [str(c).strip().lower() for c in df.columns]
    present = {col: field for col, field in CSV_COLUMN_MAP.items() if col in df.columns}
    if not present:
        logger.warning("CSV has none of the expected columns: %s", list(df.columns))
    rows = []
    for record in df.to_dict("records"):
        row = {field: (record.get(col) or None) for col, field in present.items()}
        rows.append(row)
    return rows


def ingest_csv(
    engine: RollupEngine,
    file_name: str,
    data: Union[bytes, str],
    campaign_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Create (or merge into) a campaign for one CSV file, record the upload and insert its rows.

    A campaign_name that matches an existing campaign exactly merges the rows into it; otherwise a
    new campaign is created. The file is parsed before anything is written.
    """
    if not (file_name or "").lower().endswith(".csv"):
        raise ValidationError("Only CSV files are allowed")
    raw_rows = read_content_csv(data)

    name = (campaign_name or "").strip() or campaign_name_from_file(file_name)
    campaign = None
    if (campaign_name or "").strip():
        campaign = next((c for c in engine.list_campaigns() if c.campaign_name == name), None)
    merged = campaign is not None
    if campaign is None:
        campaign = engine.create_campaign(name)

    stored_path = virtual_stored_path(campaign.campaign_id, file_name)
    upload = engine.record_upload(campaign.campaign_id, file_name, stored_path)
    inserted = engine.insert_batch(campaign.campaign_id, raw_rows)
    logger.info(
        "Ingested %s: %s rows into campaign %s%s",
        file_name,
        inserted,
        campaign.campaign_id,
        " (merged)" if merged else "",
    )
    return {
        "campaign": {"id": campaign.campaign_id, "name": campaign.campaign_name, "merged": merged},
        "upload": {"upload_id": upload.upload_id, "filename": file_name, "stored_path": stored_path},
        "content": {"rows_processed": len(raw_rows), "rows_inserted": inserted},
    }
