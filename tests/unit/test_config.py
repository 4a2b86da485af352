"""Tests for the repochat config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from repochat.config import (
    DEFAULT_CORE_PATTERNS,
    DEFAULT_EXTENSIONS,
    ConfigError,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for var in ("REPOCHAT_GENERATION_MODEL", "REPOCHAT_EMBEDDING_MODEL", "REPOCHAT_DB"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def no_global(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path, no_global: Path) -> None:
    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)

    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.dimensions == 1536
    assert cfg.generation.model == "openai/gpt-4o"
    assert cfg.retrieval.similarity_threshold == 0.1
    assert cfg.retrieval.top_k == 5
    assert cfg.retrieval.core_file_limit == 3
    assert cfg.retrieval.core_patterns == list(DEFAULT_CORE_PATTERNS)
    assert cfg.chunking.chunk_size == 1000
    assert cfg.chunking.overlap == 200
    assert cfg.ingest.batch_size == 10
    assert cfg.ingest.extensions == list(DEFAULT_EXTENSIONS)
    assert "node_modules" in cfg.ingest.exclude_dirs
    assert cfg.limits.chats_per_day == 15
    assert cfg.limits.max_active_projects == 3
    assert cfg.limits.admin_user_ids == []
    assert cfg.storage.db == ".repochat.db"


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_project_config_overrides_global(tmp_path: Path) -> None:
    global_path = tmp_path / "home" / "config.yaml"
    _write_yaml(global_path, {"generation": {"model": "anthropic/claude", "temperature": 0.5}})
    _write_yaml(tmp_path / "repochat.yaml", {"generation": {"model": "openai/gpt-4o-mini"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_path)

    assert cfg.generation.model == "openai/gpt-4o-mini"
    assert cfg.generation.temperature == 0.5


def test_env_overrides_files(tmp_path: Path, no_global: Path, monkeypatch) -> None:
    _write_yaml(tmp_path / "repochat.yaml", {"embedding": {"model": "openai/a"}})
    monkeypatch.setenv("REPOCHAT_EMBEDDING_MODEL", "openai/b")
    monkeypatch.setenv("REPOCHAT_GENERATION_MODEL", "openai/c")
    monkeypatch.setenv("REPOCHAT_DB", "/tmp/x.db")

    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)

    assert cfg.embedding.model == "openai/b"
    assert cfg.generation.model == "openai/c"
    assert cfg.storage.db == "/tmp/x.db"


def test_extensions_strip_leading_dot(tmp_path: Path, no_global: Path) -> None:
    _write_yaml(tmp_path / "repochat.yaml", {"ingest": {"extensions": [".py", "ts"]}})
    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)
    assert cfg.ingest.extensions == ["py", "ts"]


def test_admin_user_ids_from_config(tmp_path: Path, no_global: Path) -> None:
    _write_yaml(tmp_path / "repochat.yaml", {"limits": {"admin_user_ids": ["root"]}})
    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)
    assert cfg.limits.admin_user_ids == ["root"]
    assert cfg.limits.chats_per_day == 15


def test_empty_yaml_file_uses_defaults(tmp_path: Path, no_global: Path) -> None:
    (tmp_path / "repochat.yaml").write_text("", encoding="utf-8")
    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)
    assert cfg.chunking.chunk_size == 1000


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_global_config_with_api_key_rejected(tmp_path: Path) -> None:
    global_path = tmp_path / "home" / "config.yaml"
    _write_yaml(global_path, {"generation": {"api_key": "sk-123"}})
    with pytest.raises(ConfigError, match="forbidden key 'generation.api_key'"):
        load_config(project_dir=tmp_path, global_config_path=global_path)


def test_global_config_github_token_rejected(tmp_path: Path) -> None:
    global_path = tmp_path / "home" / "config.yaml"
    _write_yaml(global_path, {"github_token": "ghp_x"})
    with pytest.raises(ConfigError):
        load_config(project_dir=tmp_path, global_config_path=global_path)


def test_max_tokens_is_not_a_secret(tmp_path: Path) -> None:
    global_path = tmp_path / "home" / "config.yaml"
    _write_yaml(global_path, {"generation": {"max_tokens": 100}})
    cfg = load_config(project_dir=tmp_path, global_config_path=global_path)
    assert cfg.generation.max_tokens == 100


def test_overlap_must_be_below_chunk_size(tmp_path: Path, no_global: Path) -> None:
    _write_yaml(tmp_path / "repochat.yaml", {"chunking": {"chunk_size": 100, "overlap": 100}})
    with pytest.raises(ConfigError, match="overlap"):
        load_config(project_dir=tmp_path, global_config_path=no_global)


def test_batch_size_must_be_positive(tmp_path: Path, no_global: Path) -> None:
    _write_yaml(tmp_path / "repochat.yaml", {"ingest": {"batch_size": 0}})
    with pytest.raises(ConfigError, match="batch_size"):
        load_config(project_dir=tmp_path, global_config_path=no_global)


def test_unknown_section_warns(tmp_path: Path, no_global: Path) -> None:
    _write_yaml(tmp_path / "repochat.yaml", {"bogus": {"x": 1}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        load_config(project_dir=tmp_path, global_config_path=no_global)
    assert any("bogus" in str(w.message) for w in caught)
