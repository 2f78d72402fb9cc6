"""
CTV Rollup – error taxonomy shared by storage backends, the engine and the HTTP layer.

Not-found reads are not errors: lookups return None.
"""


class RollupError(Exception):
    """Base class for all engine errors."""


class ValidationError(RollupError):
    """Malformed input to a write operation; rejected before anything is written."""


class CampaignReferenceError(RollupError):
    """A write references a campaign that does not exist."""

    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign not found: {campaign_id}")
        self.campaign_id = campaign_id


class ConflictError(RollupError):
    """A generated identifier kept colliding with existing rows."""


class BackendUnavailable(RollupError):
    """Transient failure of a storage backend (network, auth, warehouse suspended)."""
