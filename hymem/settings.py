import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from hymem.config import (
    CacheConfig,
    EmbeddingConfig,
    FalkorConfig,
    FusionConfig,
    GraphConfig,
    HybridMemConfig,
    Neo4jConfig,
    RetrievalConfig,
    RetryConfig,
    ScoringConfig,
    VectorIndexConfig,
)

_SECTIONS: dict[str, type] = {
    "embedding": EmbeddingConfig,
    "neo4j": Neo4jConfig,
    "falkordb": FalkorConfig,
    "graph": GraphConfig,
    "vector_index": VectorIndexConfig,
    "scoring": ScoringConfig,
    "fusion": FusionConfig,
    "cache": CacheConfig,
    "retrieval": RetrievalConfig,
    "retry": RetryConfig,
}


def _load_yaml(path: str) -> dict[str, Any]:
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data


def _overlay(base, updates: dict[str, Any]):
    if not isinstance(updates, dict):
        raise ValueError(f"Config section for {type(base).__name__} must be a mapping")
    known = {f.name for f in fields(base)}
    values = {}
    for key, raw in updates.items():
        if key in known:
            values[key] = _resolve_value(raw)
    return replace(base, **values) if values else base


def _resolve_value(value: Any) -> Any:
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            env_key = value[2:-1]
            return os.getenv(env_key, "")
        if value.startswith("$"):
            env_key = value[1:]
            return os.getenv(env_key, "")
    return value


def build_config(config_path: str | None = None) -> HybridMemConfig:
    if not config_path:
        return HybridMemConfig.from_env()

    raw = _load_yaml(config_path)
    sections = {
        name: _overlay(config_cls(), raw.get(name) or {})
        for name, config_cls in _SECTIONS.items()
    }
    return HybridMemConfig(**sections)
