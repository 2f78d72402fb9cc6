"""
CTV Rollup – seed rows for the campaign-agnostic reference tables (bundle map, genre map, content aliases).

Bundle rows demonstrate supply-path fragmentation: the same app reached through two bundle ids.
"""

import logging
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# (raw_bundle, canonical_bundle, app_name, publisher, mask_reason)
SEED_BUNDLE_MAP: List[Tuple[str, str, str, str, Optional[str]]] = [
    ("com.pluto.tv", "com.pluto.tv", "Pluto TV", "Pluto Inc", None),
    ("tv.pluto", "com.pluto.tv", "Pluto TV", "Pluto Inc", "Alternative bundle ID"),
    ("com.tubitv.app", "com.tubitv.app", "Tubi TV", "Tubi Inc", None),
    ("tv.tubi", "com.tubitv.app", "Tubi TV", "Tubi Inc", "Alternative bundle ID"),
    ("com.plexapp.android", "com.plexapp.android", "Plex", "Plex Inc", None),
    ("tv.plex.app", "com.plexapp.android", "Plex", "Plex Inc", "Alternative bundle ID"),
]

# (raw_genre, genre_canon)
SEED_GENRE_MAP: List[Tuple[str, str]] = [
    ("action", "Action"),
    ("comedy", "Comedy"),
    ("drama", "Drama"),
    ("sci-fi", "Science Fiction"),
    ("thriller", "Thriller"),
    ("documentary", "Documentary"),
    ("reality", "Reality TV"),
    ("news", "News"),
    ("sports", "Sports"),
    ("kids", "Children"),
]

# (content_title_canon, content_key)
SEED_CONTENT_ALIASES: List[Tuple[str, str]] = [
    ("the matrix", "matrix_1999"),
    ("matrix", "matrix_1999"),
    ("breaking bad", "breaking_bad_2008"),
    ("game of thrones", "game_of_thrones_2011"),
    ("friends", "friends_1994"),
    ("the office", "the_office_2005"),
]


def seed_reference_tables(storage) -> Dict[str, int]:
    """Upsert the seed rows into storage. Safe to run repeatedly (upserts by key)."""
    for raw_bundle, canonical, app_name, publisher, mask_reason in SEED_BUNDLE_MAP:
        storage.upsert_bundle_map(raw_bundle, canonical, app_name, publisher, mask_reason)
    for raw_genre, genre_canon in SEED_GENRE_MAP:
        storage.upsert_genre_map(raw_genre, genre_canon)
    for title_canon, key in SEED_CONTENT_ALIASES:
        storage.upsert_content_alias(title_canon, key)
    counts = {
        "bundle_map": len(SEED_BUNDLE_MAP),
        "genre_map": len(SEED_GENRE_MAP),
        "content_aliases": len(SEED_CONTENT_ALIASES),
    }
    logger.info("ctv_rollup: seeded reference tables %s", counts)
    return counts
