"""
CTV Rollup – one-shot fallback from the durable backend to the in-process store.

When the primary raises BackendUnavailable the same operation is attempted exactly once on the
fallback store. Writes that land there survive only for the life of the process; `degraded`
stays set once any operation has fallen back so health checks can report it.
"""

import logging
import threading
from typing import Any, List, Optional, Sequence

from errors import BackendUnavailable, RollupError
from models import Campaign, CampaignUpload, ContentRow, ReferenceTables, RowCounts
from storage import StorageBackend

logger = logging.getLogger(__name__)


class FallbackStorage(StorageBackend):
    name = "fallback"

    def __init__(self, primary: StorageBackend, fallback: StorageBackend):
        self.primary = primary
        self.fallback = fallback
        self.degraded = False
        self.fallback_count = 0
        self._state_lock = threading.Lock()

    def _call(self, op: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return getattr(self.primary, op)(*args, **kwargs)
        except BackendUnavailable as e:
            with self._state_lock:
                self.degraded = True
                self.fallback_count += 1
            logger.warning(
                "Storage degraded: %s on %s failed (%s); using %s for this operation (not durable across restarts)",
                op,
                self.primary.name,
                e,
                self.fallback.name,
            )
        try:
            return getattr(self.fallback, op)(*args, **kwargs)
        except RollupError:
            raise
        except Exception as e:
            logger.exception("Fallback storage %s failed for %s", self.fallback.name, op)
            raise BackendUnavailable(f"{op} failed on {self.primary.name} and {self.fallback.name}: {e}") from e

    def create_campaign(self, campaign_name: str) -> Campaign:
        return self._call("create_campaign", campaign_name)

    def get_campaigns(self) -> List[Campaign]:
        return self._call("get_campaigns")

    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        return self._call("get_campaign", campaign_id)

    def delete_campaign(self, campaign_id: str) -> None:
        return self._call("delete_campaign", campaign_id)

    def create_upload(self, campaign_id: str, file_name: str, stored_path: str) -> CampaignUpload:
        return self._call("create_upload", campaign_id, file_name, stored_path)

    def get_campaign_uploads(self, campaign_id: str) -> List[CampaignUpload]:
        return self._call("get_campaign_uploads", campaign_id)

    def insert_content_rows(self, rows: Sequence[ContentRow]) -> int:
        return self._call("insert_content_rows", rows)

    def get_content_rows(self, campaign_id: Optional[str] = None) -> List[ContentRow]:
        return self._call("get_content_rows", campaign_id)

    def upsert_content_alias(self, content_title_canon: str, content_key: str) -> None:
        return self._call("upsert_content_alias", content_title_canon, content_key)

    def upsert_genre_map(self, raw_genre: str, genre_canon: str) -> None:
        return self._call("upsert_genre_map", raw_genre, genre_canon)

    def upsert_bundle_map(
        self,
        raw_bundle: str,
        canonical_bundle: str,
        app_name: str,
        publisher: str,
        mask_reason: Optional[str] = None,
    ) -> None:
        return self._call("upsert_bundle_map", raw_bundle, canonical_bundle, app_name, publisher, mask_reason)

    def get_reference_tables(self) -> ReferenceTables:
        return self._call("get_reference_tables")

    def get_row_counts(self) -> RowCounts:
        return self._call("get_row_counts")

    def close(self) -> None:
        self.primary.close()
        self.fallback.close()
