"""
CTV Rollup – engine facade: storage selection, batch ingestion and rollup queries.

Read path: raw rows + one reference-table snapshot -> rollup builders. Nothing derived is
stored, so every query reflects the latest rows and alias/genre tables.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

import config
from campaigns import CampaignManager
from errors import CampaignReferenceError, ValidationError
from fallback_storage import FallbackStorage
from memory_storage import InMemoryStorage
from models import (
    AppRollup,
    Campaign,
    CampaignStats,
    CampaignUpload,
    ContentRollup,
    ContentRow,
    GenreRollup,
    RowCounts,
)
from reference import seed_reference_tables
from rollup import build_app_rollup, build_content_rollup, build_genre_rollup, campaign_stats
from storage import SnowflakeStorage, StorageBackend

logger = logging.getLogger(__name__)

RawRow = Union[ContentRow, Mapping[str, Any]]


def build_storage(backend: Optional[str] = None) -> StorageBackend:
    """Storage selected by STORAGE_BACKEND; the durable store is always wrapped with the in-process fallback."""
    name = config.resolve_storage_backend(backend or "")
    if name == "snowflake":
        logger.info("Storage backend: snowflake (fallback: memory)")
        return FallbackStorage(SnowflakeStorage(), InMemoryStorage())
    logger.info("Storage backend: memory")
    return InMemoryStorage()


class RollupEngine:
    def __init__(self, storage: Optional[StorageBackend] = None):
        self.storage = storage if storage is not None else build_storage()
        self.campaigns = CampaignManager(self.storage)

    # Campaigns

    def create_campaign(self, campaign_name: str) -> Campaign:
        return self.campaigns.create(campaign_name)

    def list_campaigns(self) -> List[Campaign]:
        return self.campaigns.list()

    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        return self.campaigns.get_by_id(campaign_id)

    def delete_campaign(self, campaign_id: str) -> None:
        self.campaigns.delete(campaign_id)

    def record_upload(self, campaign_id: str, file_name: str, stored_path: str) -> CampaignUpload:
        return self.campaigns.record_upload(campaign_id, file_name, stored_path)

    def get_campaign_uploads(self, campaign_id: str) -> List[CampaignUpload]:
        return self.campaigns.uploads(campaign_id)

    # Ingestion

    def insert_batch(self, campaign_id: str, rows: Iterable[RawRow]) -> int:
        """Normalize raw rows into ContentRows for one campaign and append them in order.

        Raises CampaignReferenceError for an unknown campaign and ValidationError when a typed
        row belongs to a different campaign; either way nothing is written.
        """
        if not campaign_id:
            raise ValidationError("campaign_id is required")
        if self.campaigns.get_by_id(campaign_id) is None:
            raise CampaignReferenceError(campaign_id)
        content_rows: List[ContentRow] = []
        for i, raw in enumerate(rows):
            if isinstance(raw, ContentRow):
                if raw.campaign_id != campaign_id:
                    raise ValidationError(f"Row {i} belongs to campaign {raw.campaign_id!r}, not {campaign_id!r}")
                content_rows.append(raw)
            else:
                content_rows.append(ContentRow.from_raw(campaign_id, raw))
        return self.storage.insert_content_rows(content_rows)

    def get_content_rows(self, campaign_id: Optional[str] = None) -> List[ContentRow]:
        return self.storage.get_content_rows(campaign_id)

    # Rollups

    def get_app_rollup(self, campaign_id: Optional[str] = None) -> List[AppRollup]:
        return build_app_rollup(self.storage.get_content_rows(campaign_id), campaign_id)

    def get_genre_rollup(self, campaign_id: Optional[str] = None) -> List[GenreRollup]:
        tables = self.storage.get_reference_tables()
        return build_genre_rollup(self.storage.get_content_rows(campaign_id), tables.genre_map, campaign_id)

    def get_content_rollup(self, campaign_id: Optional[str] = None) -> List[ContentRollup]:
        tables = self.storage.get_reference_tables()
        return build_content_rollup(self.storage.get_content_rows(campaign_id), tables.content_aliases, campaign_id)

    def get_campaign_stats(self, campaign_id: str) -> Optional[CampaignStats]:
        if self.campaigns.get_by_id(campaign_id) is None:
            return None
        tables = self.storage.get_reference_tables()
        return campaign_stats(self.storage.get_content_rows(campaign_id), tables.genre_map, campaign_id)

    # Reference tables / diagnostics

    def upsert_content_alias(self, content_title_canon: str, content_key: str) -> None:
        self.storage.upsert_content_alias(content_title_canon, content_key)

    def upsert_genre_map(self, raw_genre: str, genre_canon: str) -> None:
        self.storage.upsert_genre_map(raw_genre, genre_canon)

    def seed_reference_tables(self) -> dict:
        return seed_reference_tables(self.storage)

    def get_row_counts(self) -> RowCounts:
        return self.storage.get_row_counts()

    @property
    def degraded(self) -> bool:
        return bool(getattr(self.storage, "degraded", False))

    def close(self) -> None:
        self.storage.close()
