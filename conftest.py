from typing import List

import pytest

from engine import RollupEngine
from memory_storage import InMemoryStorage
from models import ContentRow


@pytest.fixture
def memory_storage():
    store = InMemoryStorage()
    yield store
    store.close()


@pytest.fixture
def engine(memory_storage):
    return RollupEngine(memory_storage)


@pytest.fixture
def make_rows():
    """make_rows("c1", [("Pluto TV", 1500, 600), ...]) -> ContentRows titled by network."""

    def _make(campaign_id: str, specs, title: str = "Some Show") -> List[ContentRow]:
        return [
            ContentRow(
                campaign_id=campaign_id,
                content_network_name=network,
                content_title=title,
                impression=impressions,
                quartile100=completes,
            )
            for network, impressions, completes in specs
        ]

    return _make
