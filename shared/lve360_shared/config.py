"""
Configuration for the stack generation pipeline.

Policy (thresholds, model ladder, evidence padding) comes from
config/generation.yml; credentials and endpoints come from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from .utils import PROJECT_ROOT


DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "generation.yml"


class ConfigurationError(RuntimeError):
    """Operator misconfiguration; raised immediately, never salvaged."""


@dataclass(frozen=True)
class ValidatorThresholds:
    min_words: int = 1800
    min_table_rows: int = 10
    min_citations: int = 8
    min_sentences: int = 3
    min_intro_sentences: int = 2


@dataclass(frozen=True)
class ModelPolicy:
    ladder: List[str] = field(default_factory=lambda: ["gpt-4o-mini", "gpt-4o"])
    max_passes: int = 2
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_s: float = 120.0

    def attempts(self) -> List[str]:
        return list(self.ladder[: self.max_passes])


@dataclass(frozen=True)
class EvidencePolicy:
    index_path: Path = PROJECT_ROOT / "config" / "evidence_index.json"
    max_per_item: int = 3
    min_bullets: int = 8
    fallback_url: str = "https://lve360.com/evidence/pending"


@dataclass(frozen=True)
class LinkPolicy:
    catalog_path: Path = PROJECT_ROOT / "config" / "product_catalog.json"
    paid_tiers: List[str] = field(default_factory=lambda: ["premium", "pro"])
    amazon_tag: str = "lve360-20"


@dataclass(frozen=True)
class GenerationConfig:
    models: ModelPolicy = field(default_factory=ModelPolicy)
    validator: ValidatorThresholds = field(default_factory=ValidatorThresholds)
    evidence: EvidencePolicy = field(default_factory=EvidencePolicy)
    links: LinkPolicy = field(default_factory=LinkPolicy)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "GenerationConfig":
        """
        Load policy from YAML, then apply environment overrides.

        LVE360_CONFIG points at an alternate file; LVE360_MODEL_LADDER is a
        comma-separated model list; AMAZON_ASSOCIATES_TAG overrides the tag.
        """
        if path is None:
            path = Path(os.getenv("LVE360_CONFIG", DEFAULT_CONFIG_PATH))
        if not path.exists():
            raise ConfigurationError(f"Generation config not found: {path}")

        cfg = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        models = cfg.get("models", {})
        validator = cfg.get("validator", {})
        evidence = cfg.get("evidence", {})
        links = cfg.get("links", {})

        ladder = models.get("ladder", ["gpt-4o-mini", "gpt-4o"])
        env_ladder = os.getenv("LVE360_MODEL_LADDER")
        if env_ladder:
            ladder = [m.strip() for m in env_ladder.split(",") if m.strip()]

        return cls(
            models=ModelPolicy(
                ladder=list(ladder),
                max_passes=int(models.get("max_passes", 2)),
                temperature=float(models.get("temperature", 0.7)),
                max_tokens=int(models.get("max_tokens", 4096)),
                timeout_s=float(models.get("timeout_s", 120)),
            ),
            validator=ValidatorThresholds(
                min_words=int(validator.get("min_words", 1800)),
                min_table_rows=int(validator.get("min_table_rows", 10)),
                min_citations=int(validator.get("min_citations", 8)),
                min_sentences=int(validator.get("min_sentences", 3)),
                min_intro_sentences=int(validator.get("min_intro_sentences", 2)),
            ),
            evidence=EvidencePolicy(
                index_path=_resolve(evidence.get("index_path", "config/evidence_index.json")),
                max_per_item=int(evidence.get("max_per_item", 3)),
                min_bullets=int(evidence.get("min_bullets", 8)),
                fallback_url=str(evidence.get("fallback_url", "https://lve360.com/evidence/pending")),
            ),
            links=LinkPolicy(
                catalog_path=_resolve(links.get("catalog_path", "config/product_catalog.json")),
                paid_tiers=[t.lower() for t in links.get("paid_tiers", ["premium", "pro"])],
                amazon_tag=os.getenv("AMAZON_ASSOCIATES_TAG") or str(links.get("amazon_tag", "lve360-20")),
            ),
        )


def _resolve(p: str) -> Path:
    path = Path(p)
    return path if path.is_absolute() else PROJECT_ROOT / path


def require_env(name: str) -> str:
    """Return a required environment variable or fail fast."""
    value = os.getenv(name)
    if not value or not value.strip():
        raise ConfigurationError(f"{name} environment variable not set")
    return value.strip()
