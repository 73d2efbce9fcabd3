import pytest

from bmn_indexer.indexer import EscrowIndexer
from bmn_indexer.state_machine import CompletionPolicy

from .fixtures import BASE, ETHERLINK


@pytest.fixture
def indexer():
    """Fresh indexer (own tables, own registry) for each test."""
    return EscrowIndexer(chain_ids=(BASE, ETHERLINK))


@pytest.fixture
def indexer_any():
    return EscrowIndexer(completion_policy=CompletionPolicy.ANY, chain_ids=(BASE, ETHERLINK))
