"""
CTV Rollup – typed records for campaigns, raw content rows, reference tables and rollups.

Raw rows arrive from CSV exports with loose shapes; ContentRow.from_raw is the single place
where defaults are applied (missing title -> None, bad counts -> 0); text is cut to the
stored column widths there and again by ContentRow.clipped before any store writes it.
"""

import math
import re
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

_LEADING_INT = re.compile(r"^[+-]?\d[\d,]*")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def to_iso(value: Any) -> str:
    """Normalize a timestamp from either backend to an ISO-8601 UTC string."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    return str(value)


def parse_count(value: Any) -> int:
    """Lenient non-negative integer parse for impression/quartile columns.

    Leading digits win ("12abc" -> 12, "3.7" -> 3), thousands separators are dropped
    ("1,234" -> 1234); anything unparsable or negative becomes 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return 0
        return max(int(value), 0)
    match = _LEADING_INT.match(str(value).strip())
    if not match:
        return 0
    return max(int(match.group(0).replace(",", "")), 0)


def _optional_str(value: Any, max_len: Optional[int] = None) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    s = str(value)
    if max_len is not None and len(s) > max_len:
        s = s[:max_len]
    return s if s else None


# Column widths of campaign_content_raw; both stores hold values cut to these lengths.
CAMPAIGN_NAME_SRC_MAX = 512
CONTENT_TITLE_MAX = 2048
CONTENT_NETWORK_NAME_MAX = 512


@dataclass(frozen=True)
class Campaign:
    campaign_id: str
    campaign_name: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CampaignUpload:
    upload_id: str
    campaign_id: str
    file_name: str
    stored_path: str
    uploaded_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ContentRow:
    """One source record. impression and quartile100 are always non-negative ints."""

    campaign_id: str
    content_network_name: str = ""
    content_title: Optional[str] = None
    campaign_name_src: Optional[str] = None
    impression: int = 0
    quartile100: int = 0

    @classmethod
    def from_raw(cls, campaign_id: str, raw: Mapping[str, Any]) -> "ContentRow":
        network = raw.get("content_network_name")
        return cls(
            campaign_id=campaign_id,
            content_network_name=_optional_str(network, CONTENT_NETWORK_NAME_MAX) or "",
            content_title=_optional_str(raw.get("content_title"), CONTENT_TITLE_MAX),
            campaign_name_src=_optional_str(raw.get("campaign_name_src"), CAMPAIGN_NAME_SRC_MAX),
            impression=parse_count(raw.get("impression")),
            quartile100=parse_count(raw.get("quartile100")),
        )

    def clipped(self) -> "ContentRow":
        """This row with text fields cut to the stored column widths."""
        network = self.content_network_name or ""
        title = self.content_title
        name_src = self.campaign_name_src
        if (
            len(network) <= CONTENT_NETWORK_NAME_MAX
            and (title is None or len(title) <= CONTENT_TITLE_MAX)
            and (name_src is None or len(name_src) <= CAMPAIGN_NAME_SRC_MAX)
        ):
            return self
        return replace(
            self,
            content_network_name=network[:CONTENT_NETWORK_NAME_MAX],
            content_title=_optional_str(title, CONTENT_TITLE_MAX),
            campaign_name_src=_optional_str(name_src, CAMPAIGN_NAME_SRC_MAX),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BundleMapping:
    raw_bundle: str
    canonical_bundle: str
    app_name: str
    publisher: str
    mask_reason: Optional[str] = None


@dataclass
class AppRollup:
    campaign_id: str
    app_name: str
    impressions: int = 0
    completes: int = 0
    avg_vcr: float = 0.0
    content_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GenreRollup:
    campaign_id: str
    genre_canon: str
    impressions: int = 0
    completes: int = 0
    avg_vcr: float = 0.0
    content_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ContentRollup:
    campaign_id: str
    content_key: str
    content_title: str
    content_network_name: str
    impressions: int = 0
    completes: int = 0
    avg_vcr: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CampaignStats:
    campaign_id: str
    total_impressions: int
    total_completes: int
    overall_vcr: float
    mapped_genres: int
    total_rows: int
    mapped_percentage: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RowCounts:
    campaigns: int = 0
    campaign_uploads: int = 0
    content_rows: int = 0
    content_aliases: int = 0
    genre_map: int = 0
    bundle_map: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReferenceTables:
    """Snapshot of the campaign-agnostic lookup tables used for one rollup computation."""

    content_aliases: Dict[str, str] = field(default_factory=dict)
    genre_map: Dict[str, str] = field(default_factory=dict)
    bundle_map: Dict[str, BundleMapping] = field(default_factory=dict)
