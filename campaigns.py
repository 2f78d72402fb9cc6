"""
CTV Rollup – campaign lifecycle: create, read, list, delete (with cascade) and upload records.
"""

import logging
from typing import List, Optional

from errors import ValidationError
from models import Campaign, CampaignUpload
from storage import StorageBackend

logger = logging.getLogger(__name__)


class CampaignManager:
    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def create(self, campaign_name: str) -> Campaign:
        """Allocate an id and persist the campaign. No upload or content rows are created."""
        name = (campaign_name or "").strip()
        if not name:
            raise ValidationError("Campaign name is required")
        return self.storage.create_campaign(name)

    def get_by_id(self, campaign_id: str) -> Optional[Campaign]:
        if not campaign_id:
            return None
        return self.storage.get_campaign(campaign_id)

    def list(self) -> List[Campaign]:
        return self.storage.get_campaigns()

    def delete(self, campaign_id: str) -> None:
        """Removes content rows and uploads before the campaign row. Safe to retry; unknown ids are a no-op."""
        self.storage.delete_campaign(campaign_id)

    def record_upload(self, campaign_id: str, file_name: str, stored_path: str) -> CampaignUpload:
        return self.storage.create_upload(campaign_id, file_name, stored_path)

    def uploads(self, campaign_id: str) -> List[CampaignUpload]:
        return self.storage.get_campaign_uploads(campaign_id)
