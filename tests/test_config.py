import pytest
from dynaconf.validator import ValidationError

from evm_indexer.config import SyncConfig
from evm_indexer.utils import load_config

MINIMAL_CONFIG = """
chain:
  name: "ethereum"
  rpc_urls:
    - "http://localhost:8545"
storage:
  database_url: "sqlite:///indexer.db"
"""


def write_config(tmp_path, text):
    path = tmp_path / "config.yml"
    path.write_text(text)
    return path


def test_defaults_are_filled_in(tmp_path):
    settings = load_config(write_config(tmp_path, MINIMAL_CONFIG))
    config = SyncConfig.from_settings(settings)

    assert config.chain_name == "ethereum"
    assert config.rpc_urls == ["http://localhost:8545"]
    assert config.start_block == 0
    assert config.batch_size == 10
    assert config.poll_interval == 10.0
    assert config.max_reorg_depth == 64
    assert settings.api.port == 3000
    assert settings.metrics.port == 8000

    policy = config.retry_policy()
    assert policy.attempts == 5
    assert policy.base_delay == 2.0
    assert policy.max_delay == 60.0
    assert policy.jitter is True


def test_environment_overrides_file(tmp_path, monkeypatch):
    monkeypatch.setenv("INDEXER_SYNC__BATCH_SIZE", "50")
    monkeypatch.setenv("INDEXER_RETRY__JITTER", "false")

    config = SyncConfig.from_settings(load_config(write_config(tmp_path, MINIMAL_CONFIG)))

    assert config.batch_size == 50
    assert config.retry_jitter is False


def test_config_path_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("INDEXER_CONFIG", str(write_config(tmp_path, MINIMAL_CONFIG)))
    assert load_config().chain.name == "ethereum"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yml")


def test_chain_name_must_be_lowercase(tmp_path):
    with pytest.raises(ValidationError):
        load_config(write_config(tmp_path, MINIMAL_CONFIG.replace('"ethereum"', '"Ethereum"')))


def test_rpc_urls_required(tmp_path):
    text = """
chain:
  name: "ethereum"
  rpc_urls: []
storage:
  database_url: "sqlite:///indexer.db"
"""
    with pytest.raises(ValidationError):
        load_config(write_config(tmp_path, text))


def test_batch_size_must_be_positive(tmp_path):
    text = MINIMAL_CONFIG + "sync:\n  batch_size: 0\n"
    with pytest.raises(ValidationError):
        load_config(write_config(tmp_path, text))
