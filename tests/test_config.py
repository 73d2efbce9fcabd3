import pytest

from bmn_indexer.config import (
    BASE_CHAIN_ID,
    DEFAULT_FACTORY_ADDRESS,
    ETHERLINK_CHAIN_ID,
    Settings,
)
from bmn_indexer.errors import ConfigError
from bmn_indexer.state_machine import CompletionPolicy

ENV_VARS = [
    "BASE_RPC",
    "ETHERLINK_RPC",
    "BASE_START_BLOCK",
    "ETHERLINK_START_BLOCK",
    "BASE_MAX_BLOCK_RANGE",
    "ETHERLINK_MAX_BLOCK_RANGE",
    "ETHERLINK_FINALITY_BLOCKS",
    "FACTORY_ADDRESS",
    "SRC_IMPLEMENTATION",
    "SWAP_COMPLETION_POLICY",
    "POLL_INTERVAL",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings.from_env(load_dotenv=False)
    assert settings.chain_ids == [BASE_CHAIN_ID, ETHERLINK_CHAIN_ID]
    assert settings.factory_address == DEFAULT_FACTORY_ADDRESS
    assert settings.completion_policy is CompletionPolicy.BOTH
    assert settings.log_level == "INFO"
    etherlink = settings.chain(ETHERLINK_CHAIN_ID)
    assert etherlink.max_block_range < 100
    assert etherlink.rpc_url == ""
    assert settings.chain(1) is None


def test_overrides(monkeypatch):
    monkeypatch.setenv("BASE_RPC", "https://base.example")
    monkeypatch.setenv("BASE_START_BLOCK", "42")
    monkeypatch.setenv("FACTORY_ADDRESS", "0x" + "AB" * 20)
    monkeypatch.setenv("SWAP_COMPLETION_POLICY", "ANY")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env(load_dotenv=False)
    base = settings.chain(BASE_CHAIN_ID)
    assert base.rpc_url == "https://base.example"
    assert base.start_block == 42
    assert settings.factory_address == "0x" + "ab" * 20
    assert settings.completion_policy is CompletionPolicy.ANY
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "name, value",
    [
        ("SWAP_COMPLETION_POLICY", "first"),
        ("FACTORY_ADDRESS", "0x1234"),
        ("SRC_IMPLEMENTATION", "0x" + "zz" * 20),
        ("BASE_START_BLOCK", "genesis"),
        ("LOG_LEVEL", "LOUD"),
    ],
)
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        Settings.from_env(load_dotenv=False)
