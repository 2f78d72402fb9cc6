"""
CTV Rollup – in-process storage backend.

An explicit store object (no module globals) that lives until close(). One lock guards every
container so concurrent ingestion calls cannot interleave partial appends, and readers always
get a snapshot copy.
"""

import logging
import threading
from typing import Dict, List, Optional, Sequence

import config
from errors import CampaignReferenceError, ConflictError
from models import (
    BundleMapping,
    Campaign,
    CampaignUpload,
    ContentRow,
    ReferenceTables,
    RowCounts,
    utc_now_iso,
)
from storage import StorageBackend, new_campaign_id, new_upload_id, validate_content_rows

logger = logging.getLogger(__name__)


class InMemoryStorage(StorageBackend):
    name = "memory"

    def __init__(self, max_id_attempts: Optional[int] = None):
        self._lock = threading.Lock()
        self._max_id_attempts = max_id_attempts or config.CAMPAIGN_ID_MAX_ATTEMPTS
        self._reset()

    def _reset(self) -> None:
        # dicts keep insertion order; campaigns are listed newest first from that order
        self._campaigns: Dict[str, Campaign] = {}
        self._uploads: List[CampaignUpload] = []
        self._rows: List[ContentRow] = []
        self._content_aliases: Dict[str, str] = {}
        self._genre_map: Dict[str, str] = {}
        self._bundle_map: Dict[str, BundleMapping] = {}

    def create_campaign(self, campaign_name: str) -> Campaign:
        with self._lock:
            for attempt in range(1, self._max_id_attempts + 1):
                campaign_id = new_campaign_id(campaign_name)
                if campaign_id in self._campaigns:
                    logger.info("ctv_rollup: campaign id %s collided (attempt %s)", campaign_id, attempt)
                    continue
                campaign = Campaign(campaign_id=campaign_id, campaign_name=campaign_name, created_at=utc_now_iso())
                self._campaigns[campaign_id] = campaign
                logger.info("ctv_rollup: created campaign %s (%s)", campaign_id, campaign_name)
                return campaign
        raise ConflictError(f"Could not allocate a unique campaign id for {campaign_name!r}")

    def get_campaigns(self) -> List[Campaign]:
        with self._lock:
            newest_inserted_first = list(reversed(list(self._campaigns.values())))
        return sorted(newest_inserted_first, key=lambda c: c.created_at, reverse=True)

    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        with self._lock:
            return self._campaigns.get(campaign_id)

    def delete_campaign(self, campaign_id: str) -> None:
        with self._lock:
            rows_before, uploads_before = len(self._rows), len(self._uploads)
            self._rows = [r for r in self._rows if r.campaign_id != campaign_id]
            self._uploads = [u for u in self._uploads if u.campaign_id != campaign_id]
            self._campaigns.pop(campaign_id, None)
            logger.info(
                "ctv_rollup: deleted campaign %s (%s rows, %s uploads)",
                campaign_id,
                rows_before - len(self._rows),
                uploads_before - len(self._uploads),
            )

    def create_upload(self, campaign_id: str, file_name: str, stored_path: str) -> CampaignUpload:
        with self._lock:
            if campaign_id not in self._campaigns:
                raise CampaignReferenceError(campaign_id)
            upload = CampaignUpload(
                upload_id=new_upload_id(),
                campaign_id=campaign_id,
                file_name=file_name,
                stored_path=stored_path,
                uploaded_at=utc_now_iso(),
            )
            self._uploads.append(upload)
        logger.info("ctv_rollup: recorded upload %s for campaign %s", file_name, campaign_id)
        return upload

    def get_campaign_uploads(self, campaign_id: str) -> List[CampaignUpload]:
        with self._lock:
            return [u for u in self._uploads if u.campaign_id == campaign_id]

    def insert_content_rows(self, rows: Sequence[ContentRow]) -> int:
        checked = validate_content_rows(rows)
        with self._lock:
            for campaign_id in {r.campaign_id for r in checked}:
                if campaign_id not in self._campaigns:
                    raise CampaignReferenceError(campaign_id)
            self._rows.extend(checked)
        logger.info("ctv_rollup: inserted %s content rows", len(checked))
        return len(checked)

    def get_content_rows(self, campaign_id: Optional[str] = None) -> List[ContentRow]:
        with self._lock:
            if campaign_id:
                return [r for r in self._rows if r.campaign_id == campaign_id]
            return list(self._rows)

    def upsert_content_alias(self, content_title_canon: str, content_key: str) -> None:
        with self._lock:
            self._content_aliases[content_title_canon] = content_key

    def upsert_genre_map(self, raw_genre: str, genre_canon: str) -> None:
        with self._lock:
            self._genre_map[raw_genre] = genre_canon

    def upsert_bundle_map(
        self,
        raw_bundle: str,
        canonical_bundle: str,
        app_name: str,
        publisher: str,
        mask_reason: Optional[str] = None,
    ) -> None:
        mapping = BundleMapping(
            raw_bundle=raw_bundle,
            canonical_bundle=canonical_bundle,
            app_name=app_name,
            publisher=publisher,
            mask_reason=mask_reason,
        )
        with self._lock:
            self._bundle_map[raw_bundle] = mapping

    def get_reference_tables(self) -> ReferenceTables:
        with self._lock:
            return ReferenceTables(
                content_aliases=dict(self._content_aliases),
                genre_map=dict(self._genre_map),
                bundle_map=dict(self._bundle_map),
            )

    def get_row_counts(self) -> RowCounts:
        with self._lock:
            return RowCounts(
                campaigns=len(self._campaigns),
                campaign_uploads=len(self._uploads),
                content_rows=len(self._rows),
                content_aliases=len(self._content_aliases),
                genre_map=len(self._genre_map),
                bundle_map=len(self._bundle_map),
            )

    def close(self) -> None:
        with self._lock:
            self._reset()
        logger.info("ctv_rollup: in-process store reset")
