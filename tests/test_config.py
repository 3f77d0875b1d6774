"""Tests for configuration loading and credential handling."""

import stat

import pytest
import yaml

from aikb.config import load_config, redact, save_credentials, validate_config
from aikb.errors import ConfigurationError


def test_load_config_merges_file_and_env(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump({
        "store_path": str(tmp_path / "kb.json"),
        "pinecone": {"custom_host": "my-index.svc.pinecone.io"},
    }))
    monkeypatch.setenv("HF_API_KEY", "hf_from_environment")
    monkeypatch.delenv("PINECONE_API_KEY", raising=False)
    monkeypatch.delenv("AIKB_STORE_PATH", raising=False)

    cfg = load_config(config_file)

    assert cfg["store_path"] == str((tmp_path / "kb.json").resolve())
    assert cfg["pinecone"]["custom_host"] == "my-index.svc.pinecone.io"
    # untouched nested defaults survive the merge
    assert cfg["pinecone"]["dimension"] == 1024
    assert cfg["hf_api_key"] == "hf_from_environment"
    assert cfg["config_path"] == str(config_file)


def test_load_config_rejects_bad_yaml(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("pinecone: [unclosed")
    with pytest.raises(ConfigurationError):
        load_config(config_file)


def test_validate_config_lists_every_problem(config):
    validate_config(config)

    config["hf_api_key"] = "hf_short"
    config["pinecone_api_key"] = ""
    config["pinecone"]["custom_host"] = ""
    with pytest.raises(ConfigurationError) as excinfo:
        validate_config(config)
    message = str(excinfo.value)
    assert "Hugging Face" in message
    assert "Pinecone API key" in message
    assert "Pinecone host" in message


def test_local_backends_need_no_keys(config):
    config["hf_api_key"] = ""
    config["pinecone_api_key"] = ""
    config["embedding_backend"] = "local"
    config["vector_backend"] = "chromadb"
    validate_config(config)


def test_save_credentials(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"search_top_k": 5}))

    save_credentials(" hf_abcdefghij ", "pcsk_abcdefghij", path)

    saved = yaml.safe_load(path.read_text())
    assert saved == {"search_top_k": 5, "hf_api_key": "hf_abcdefghij", "pinecone_api_key": "pcsk_abcdefghij"}
    assert stat.S_IMODE(path.stat().st_mode) & 0o077 == 0


def test_save_credentials_checks_prefixes(tmp_path):
    with pytest.raises(ConfigurationError):
        save_credentials("sk-wrong", "pcsk_abcdefghij", tmp_path / "c.yaml")
    with pytest.raises(ConfigurationError):
        save_credentials("hf_abcdefghij", "wrong", tmp_path / "c.yaml")
    assert not (tmp_path / "c.yaml").exists()


def test_redact(config):
    out = redact(config)
    assert out["hf_api_key"] == "hf_t…"
    assert config["hf_api_key"] == "hf_testkey_0123456789"
