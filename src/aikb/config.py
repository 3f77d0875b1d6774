"""Configuration management for aikb."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError


DEFAULT_CONFIG = {
    "store_path": "~/.aikb/store.json",
    "chroma_path": "~/.aikb/chroma",
    "embedding_backend": "remote",
    "vector_backend": "pinecone",
    "hf_api_key": "",
    "pinecone_api_key": "",
    "http_timeout": 30.0,
    "search_top_k": 20,
    "huggingface": {
        "model": "BAAI/bge-large-en-v1.5",
        "base_url": "https://api-inference.huggingface.co",
        "local_model": "BAAI/bge-large-en-v1.5",
    },
    "pinecone": {
        "index_name": "llama-text-embed-v2-index",
        "project_id": "",
        "environment": "us-east-1-aws",
        "custom_host": "",
        "dimension": 1024,
        "api_version": "2025-04",
    },
}

MIN_KEY_LENGTH = 10
HF_KEY_PREFIX = "hf_"
PINECONE_KEY_PREFIX = "pcsk_"


def _find_config_file() -> Path | None:
    """Look for config.yaml in standard locations."""
    candidates = [
        Path.cwd() / "config" / "config.yaml",
        Path.cwd() / "config.yaml",
        Path.home() / ".aikb" / "config.yaml",
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with file and env vars."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _find_config_file()
    if path and path.exists():
        with open(path) as f:
            try:
                file_cfg = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Could not parse {path}: {e}") from e
        _deep_merge(cfg, file_cfg)
        cfg["config_path"] = str(path)

    # Env overrides
    if hf_key := os.environ.get("HF_API_KEY"):
        cfg["hf_api_key"] = hf_key
    if pc_key := os.environ.get("PINECONE_API_KEY"):
        cfg["pinecone_api_key"] = pc_key
    if store_path := os.environ.get("AIKB_STORE_PATH"):
        cfg["store_path"] = store_path

    # Expand paths
    for key in ("store_path", "chroma_path"):
        cfg[key] = str(Path(cfg[key]).expanduser().resolve())

    return cfg


def validate_config(cfg: dict[str, Any]) -> None:
    """Raise ConfigurationError listing every problem with the credentials."""
    errors = []
    if cfg.get("embedding_backend", "remote") == "remote":
        key = cfg.get("hf_api_key") or ""
        if len(key) < MIN_KEY_LENGTH:
            errors.append("Hugging Face API key not configured (set hf_api_key or HF_API_KEY)")
    if cfg.get("vector_backend", "pinecone") == "pinecone":
        key = cfg.get("pinecone_api_key") or ""
        if len(key) < MIN_KEY_LENGTH:
            errors.append("Pinecone API key not configured (set pinecone_api_key or PINECONE_API_KEY)")
        pc = cfg.get("pinecone", {})
        if not pc.get("custom_host") and not pc.get("project_id"):
            errors.append("Pinecone host not configured (set pinecone.custom_host or pinecone.project_id)")
    if errors:
        raise ConfigurationError("; ".join(errors))


def save_credentials(hf_api_key: str, pinecone_api_key: str, config_path: str | Path) -> Path:
    """Validate and write both API keys into the YAML config file.

    Other settings already in the file are preserved.
    """
    hf_api_key = hf_api_key.strip()
    pinecone_api_key = pinecone_api_key.strip()
    if not hf_api_key.startswith(HF_KEY_PREFIX):
        raise ConfigurationError(f"Hugging Face API key must start with '{HF_KEY_PREFIX}'")
    if not pinecone_api_key.startswith(PINECONE_KEY_PREFIX):
        raise ConfigurationError(f"Pinecone API key must start with '{PINECONE_KEY_PREFIX}'")

    path = Path(config_path).expanduser()
    file_cfg: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            file_cfg = yaml.safe_load(f) or {}
    file_cfg["hf_api_key"] = hf_api_key
    file_cfg["pinecone_api_key"] = pinecone_api_key

    path.parent.mkdir(parents=True, exist_ok=True)
    # Credentials live here, keep the file private
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        yaml.safe_dump(file_cfg, f, default_flow_style=False)
    os.chmod(path, 0o600)
    return path


def redact(cfg: dict[str, Any]) -> dict[str, Any]:
    """Copy of the config safe to print."""
    out = copy.deepcopy(cfg)
    for key in ("hf_api_key", "pinecone_api_key"):
        if out.get(key):
            out[key] = out[key][:4] + "…"
    return out


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
