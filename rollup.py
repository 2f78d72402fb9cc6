"""
CTV Rollup – aggregation of raw content rows into App, Genre and Content rollups.

Rollups are never stored; they are recomputed from the full row set and the current
reference tables on every call. Each builder keeps groups in first-seen order and the
final descending sort by impressions is stable, so ties keep that order.
"""

import math
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from models import AppRollup, CampaignStats, ContentRollup, ContentRow, GenreRollup
from normalize import (
    canonical_genre,
    canonical_network_name,
    content_key,
    content_title_or_placeholder,
    display_network_name,
)

# Networks below this many impressions are folded into one "Other" row (App rollup only).
OTHER_THRESHOLD = 1000
OTHER_APP_NAME = "Other"
UNSCOPED_CAMPAIGN_ID = "unknown"


def round_half_up(value: float, places: int = 2) -> float:
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def vcr(completes: int, impressions: int) -> float:
    """Completion rate as a percentage (2 dp). Not clamped: completes > impressions shows > 100."""
    if impressions <= 0:
        return 0.0
    return round_half_up((completes / impressions) * 100, 2)


def _by_impressions(rollups):
    return sorted(rollups, key=lambda r: r.impressions, reverse=True)


def _scoped(rows: Iterable[ContentRow], campaign_id: Optional[str]) -> Iterable[ContentRow]:
    if not campaign_id:
        return rows
    return (r for r in rows if r.campaign_id == campaign_id)


def build_app_rollup(rows: Iterable[ContentRow], campaign_id: Optional[str] = None) -> List[AppRollup]:
    groups: Dict[Tuple[str, str], AppRollup] = {}
    for row in _scoped(rows, campaign_id):
        key = (row.campaign_id, canonical_network_name(row.content_network_name))
        rollup = groups.get(key)
        if rollup is None:
            rollup = AppRollup(campaign_id=row.campaign_id, app_name=display_network_name(row.content_network_name))
            groups[key] = rollup
        rollup.impressions += row.impression
        rollup.completes += row.quartile100
        rollup.content_count += 1

    significant: List[AppRollup] = []
    other: List[AppRollup] = []
    for rollup in groups.values():
        rollup.avg_vcr = vcr(rollup.completes, rollup.impressions)
        if rollup.impressions >= OTHER_THRESHOLD:
            significant.append(rollup)
        else:
            other.append(rollup)

    if other:
        bucket = AppRollup(
            campaign_id=campaign_id or UNSCOPED_CAMPAIGN_ID,
            app_name=OTHER_APP_NAME,
            impressions=sum(r.impressions for r in other),
            completes=sum(r.completes for r in other),
            content_count=sum(r.content_count for r in other),
        )
        bucket.avg_vcr = vcr(bucket.completes, bucket.impressions)
        significant.append(bucket)

    return _by_impressions(significant)


def build_genre_rollup(
    rows: Iterable[ContentRow],
    genre_map: Mapping[str, str],
    campaign_id: Optional[str] = None,
) -> List[GenreRollup]:
    groups: Dict[Tuple[str, str], GenreRollup] = {}
    for row in _scoped(rows, campaign_id):
        genre = canonical_genre(row.content_network_name, genre_map)
        key = (row.campaign_id, genre)
        rollup = groups.get(key)
        if rollup is None:
            rollup = GenreRollup(campaign_id=row.campaign_id, genre_canon=genre)
            groups[key] = rollup
        rollup.impressions += row.impression
        rollup.completes += row.quartile100
        rollup.content_count += 1

    for rollup in groups.values():
        rollup.avg_vcr = vcr(rollup.completes, rollup.impressions)
    return _by_impressions(groups.values())


def build_content_rollup(
    rows: Iterable[ContentRow],
    content_aliases: Mapping[str, str],
    campaign_id: Optional[str] = None,
) -> List[ContentRollup]:
    groups: Dict[Tuple[str, str, str], ContentRollup] = {}
    for row in _scoped(rows, campaign_id):
        title = content_title_or_placeholder(row.content_title, row.content_network_name)
        ckey = content_key(title, content_aliases)
        key = (row.campaign_id, ckey, canonical_network_name(row.content_network_name))
        rollup = groups.get(key)
        if rollup is None:
            rollup = ContentRollup(
                campaign_id=row.campaign_id,
                content_key=ckey,
                content_title=title,
                content_network_name=display_network_name(row.content_network_name),
            )
            groups[key] = rollup
        rollup.impressions += row.impression
        rollup.completes += row.quartile100

    for rollup in groups.values():
        rollup.avg_vcr = vcr(rollup.completes, rollup.impressions)
    return _by_impressions(groups.values())


def campaign_stats(rows: Iterable[ContentRow], genre_map: Mapping[str, str], campaign_id: str) -> CampaignStats:
    """Totals for one campaign plus how many distinct canonical genres its rows resolve to."""
    scoped = list(_scoped(rows, campaign_id))
    total_impressions = sum(r.impression for r in scoped)
    total_completes = sum(r.quartile100 for r in scoped)
    mapped_genres = len({canonical_genre(r.content_network_name, genre_map) for r in scoped})
    total_rows = len(scoped)
    mapped_percentage = int(math.floor(mapped_genres / total_rows * 100 + 0.5)) if total_rows else 0
    return CampaignStats(
        campaign_id=campaign_id,
        total_impressions=total_impressions,
        total_completes=total_completes,
        overall_vcr=vcr(total_completes, total_impressions),
        mapped_genres=mapped_genres,
        total_rows=total_rows,
        mapped_percentage=mapped_percentage,
    )
