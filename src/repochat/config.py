"""repochat configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (REPOCHAT_GENERATION_MODEL, REPOCHAT_EMBEDDING_MODEL, REPOCHAT_DB)
  3. Per-directory repochat.yaml
  4. Global ~/.repochat/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys or access tokens; use environment
variables instead (OPENAI_API_KEY, GITHUB_TOKEN, ...).
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".repochat"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "repochat.yaml"

# Matches: api_key, apikey, api-key, api_secret, _token (suffix), standalone token,
# standalone secret, _secret (suffix), password, passwd, credential(s).
# Does NOT match legitimate config keys like max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "generation", "retrieval", "chunking", "ingest", "limits", "storage"]
)

DEFAULT_EXTENSIONS: tuple[str, ...] = (
    "ts", "tsx", "js", "jsx", "py", "java", "go", "rs", "md", "json",
)
DEFAULT_EXCLUDE_DIRS: tuple[str, ...] = ("node_modules", ".git", "dist", "build")
DEFAULT_CORE_PATTERNS: tuple[str, ...] = (
    "package.json",
    "README.md",
    "pyproject.toml",
    "requirements.txt",
    "go.mod",
    "Cargo.toml",
    "pom.xml",
    "main.py",
    "app.py",
    "index.ts",
    "index.js",
    "main.ts",
    "main.go",
    "main.rs",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (repochat.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Vector length produced by *model*; every row of every
            project must match it for similarity search to be meaningful.
        request_timeout: Seconds before a single embedding call is abandoned.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    request_timeout: float = 60.0


@dataclass
class GenerationCfg:
    """Chat completion configuration (repochat.yaml: generation:)."""

    model: str = "openai/gpt-4o"
    temperature: float = 0.2
    max_tokens: int = 2048
    request_timeout: float = 120.0


@dataclass
class RetrievalCfg:
    """Context resolution configuration (repochat.yaml: retrieval:).

    The low similarity threshold favours over-inclusion: fragments are
    deduplicated afterwards and the model is told to admit gaps.
    """

    similarity_threshold: float = 0.1
    top_k: int = 5
    max_tree_paths: int = 1000
    core_file_limit: int = 3
    core_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_CORE_PATTERNS))


@dataclass
class ChunkingCfg:
    """Fixed-window chunking in characters (repochat.yaml: chunking:)."""

    chunk_size: int = 1000
    overlap: int = 200


@dataclass
class IngestCfg:
    """Ingestion pipeline configuration (repochat.yaml: ingest:)."""

    batch_size: int = 10
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    exclude_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_DIRS))
    clone_timeout: float = 300.0
    max_workers: int = 2


@dataclass
class LimitsCfg:
    """Per-user daily usage limits (repochat.yaml: limits:).

    Attributes:
        admin_user_ids: Users that bypass every limit. Injected here rather
            than hard-coded so deployments control the list.
    """

    chats_per_day: int = 15
    prs_per_day: int = 3
    project_creates_per_day: int = 2
    max_active_projects: int = 3
    admin_user_ids: list[str] = field(default_factory=list)


@dataclass
class StorageCfg:
    """Database location (repochat.yaml: storage:)."""

    db: str = ".repochat.db"


@dataclass
class RepochatConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    limits: LimitsCfg = field(default_factory=LimitsCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: RepochatConfig) -> None:
    if cfg.chunking.chunk_size < 1:
        raise ConfigError("chunking.chunk_size must be >= 1")
    if not 0 <= cfg.chunking.overlap < cfg.chunking.chunk_size:
        raise ConfigError(
            f"chunking.overlap must be in [0, chunk_size), got {cfg.chunking.overlap}"
        )
    if cfg.ingest.batch_size < 1:
        raise ConfigError("ingest.batch_size must be >= 1")
    if cfg.embedding.dimensions < 1:
        raise ConfigError("embedding.dimensions must be >= 1")
    if cfg.retrieval.top_k < 1:
        raise ConfigError("retrieval.top_k must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _str_list(raw: Any, default: list[str]) -> list[str]:
    if raw is None:
        return list(default)
    if isinstance(raw, str):
        return [raw]
    return [str(v) for v in raw]


def _cfg_from_dict(data: dict[str, Any]) -> RepochatConfig:
    """Build a *RepochatConfig* from a merged raw YAML dict."""
    cfg = RepochatConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            request_timeout=float(e.get("request_timeout", cfg.embedding.request_timeout)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
            request_timeout=float(g.get("request_timeout", cfg.generation.request_timeout)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            similarity_threshold=float(
                r.get("similarity_threshold", cfg.retrieval.similarity_threshold)
            ),
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            max_tree_paths=int(r.get("max_tree_paths", cfg.retrieval.max_tree_paths)),
            core_file_limit=int(r.get("core_file_limit", cfg.retrieval.core_file_limit)),
            core_patterns=_str_list(r.get("core_patterns"), cfg.retrieval.core_patterns),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "ingest" in data:
        i = data["ingest"] or {}
        cfg.ingest = IngestCfg(
            batch_size=int(i.get("batch_size", cfg.ingest.batch_size)),
            extensions=[
                ext.lstrip(".") for ext in _str_list(i.get("extensions"), cfg.ingest.extensions)
            ],
            exclude_dirs=_str_list(i.get("exclude_dirs"), cfg.ingest.exclude_dirs),
            clone_timeout=float(i.get("clone_timeout", cfg.ingest.clone_timeout)),
            max_workers=int(i.get("max_workers", cfg.ingest.max_workers)),
        )

    if "limits" in data:
        lim = data["limits"] or {}
        cfg.limits = LimitsCfg(
            chats_per_day=int(lim.get("chats_per_day", cfg.limits.chats_per_day)),
            prs_per_day=int(lim.get("prs_per_day", cfg.limits.prs_per_day)),
            project_creates_per_day=int(
                lim.get("project_creates_per_day", cfg.limits.project_creates_per_day)
            ),
            max_active_projects=int(
                lim.get("max_active_projects", cfg.limits.max_active_projects)
            ),
            admin_user_ids=_str_list(lim.get("admin_user_ids"), cfg.limits.admin_user_ids),
        )

    if "storage" in data:
        s = data["storage"] or {}
        cfg.storage = StorageCfg(db=str(s.get("db", cfg.storage.db)))

    return cfg


def _apply_env_overrides(cfg: RepochatConfig) -> RepochatConfig:
    """Apply REPOCHAT_* environment variable overrides."""
    if model := os.environ.get("REPOCHAT_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("REPOCHAT_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db := os.environ.get("REPOCHAT_DB"):
        cfg.storage.db = db
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RepochatConfig:
    """Load and return a merged *RepochatConfig*.

    Applies layers in order: global → per-directory → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *repochat.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *RepochatConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg
