"""
CTV Rollup – canonicalization of network names, genres, content titles and bundle ids.

Pure functions: output depends only on the input and the lookup table passed in.
"""

import re
from typing import Mapping, Optional

from models import BundleMapping

UNKNOWN = "Unknown"
UNKNOWN_CONTENT_SUFFIX = " - Unknown Content"

_NON_TITLE_CHARS = re.compile(r"[^a-z0-9 ]")
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def canonical_network_name(raw: Optional[str]) -> str:
    """Grouping key for a network/app name: trimmed and case-folded, empty -> 'Unknown'."""
    return (raw or "").strip().casefold() or UNKNOWN


def display_network_name(raw: Optional[str]) -> str:
    """Name shown on a rollup row: the spelling as received, blank -> 'Unknown'."""
    if not raw or not raw.strip():
        return UNKNOWN
    return raw


def canonical_genre(network_name_raw: Optional[str], genre_map: Mapping[str, str]) -> str:
    # Genre is looked up by the raw network name; rows carry no separate genre column.
    return genre_map.get(network_name_raw or "") or UNKNOWN


def content_title_canon(title: str) -> str:
    """'The Matrix!' -> 'the matrix'."""
    return _NON_TITLE_CHARS.sub("", (title or "").lower().strip())


def content_title_or_placeholder(title: Optional[str], network_name_raw: Optional[str]) -> str:
    """The title, or '<network> - Unknown Content' when nothing alphanumeric is left of it."""
    if title and content_title_canon(title).strip():
        return title
    return f"{display_network_name(network_name_raw)}{UNKNOWN_CONTENT_SUFFIX}"


def content_key(title: str, content_aliases: Mapping[str, str]) -> str:
    """Alias key for a title, or the canonical title itself when no alias exists."""
    canon = content_title_canon(title)
    return content_aliases.get(canon) or canon


def canonical_bundle(raw_bundle: Optional[str], bundle_map: Mapping[str, BundleMapping]) -> str:
    """Resolve an app bundle id seen on one supply path to its canonical bundle."""
    raw = (raw_bundle or "").strip()
    mapping = bundle_map.get(raw)
    if mapping is not None:
        return mapping.canonical_bundle
    return raw


def slugify(name: str) -> str:
    """'Q3 Pluto_TV Launch' -> 'q3-pluto-tv-launch'."""
    return _NON_SLUG_CHARS.sub("-", (name or "").lower()).strip("-")
