"""
Evidence resolver.

Maps free-text supplement names onto a curated, versioned citation index
(config/evidence_index.json) and builds the deterministic
``## Evidence & References`` section.

Lookup order per item:
1. exact match on any candidate key (canonical, raw, slug variants)
2. substring match in either direction
3. citations the backend put in the report, if they are trusted sources
4. None
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .config import EvidencePolicy
from .markdown_parser import backfill
from .types import StackItem
from .utils import normalize_name
from .validation import is_trusted_url

LOG = logging.getLogger("lve360.evidence")

# canonical display name -> (curated index key, aliases)
CANONICAL = {
    "Omega-3": ("omega-3 (epa+dha)", ["omega", "omega 3", "omega3", "epa dha", "fish oil", "krill oil"]),
    "Vitamin D": ("vitamin d3 (cholecalciferol)", ["vitamin d", "vitamin d3", "d3", "cholecalciferol"]),
    "Magnesium": ("magnesium (glycinate)", [
        "magnesium", "magnesium glycinate", "magnesium bisglycinate", "magnesium citrate",
        "magnesium malate", "magnesium taurate", "magnesium threonate", "magtein",
        "magnesium oxide", "magnesium chloride",
    ]),
    "B12": ("b12 (methylcobalamin)", ["b12", "vitamin b12", "methylcobalamin", "cyanocobalamin"]),
    "B-Vitamins": ("b-complex", ["b complex", "b vitamins", "vitamin b complex"]),
    "CoQ10": ("coq10 (ubiquinone)", ["coq10", "coenzyme q10", "ubiquinone", "ubiquinol"]),
    "Zinc": ("zinc (picolinate)", ["zinc", "zinc picolinate", "zinc citrate", "zinc gluconate"]),
    "Ashwagandha": ("ashwagandha (ksm-66 or similar)", ["ashwagandha", "ksm 66", "withania somnifera"]),
    "Rhodiola Rosea": ("rhodiola rosea (3% rosavins)", ["rhodiola", "rhodiola rosea"]),
    "Bacopa Monnieri": ("bacopa monnieri (50% bacosides)", ["bacopa", "bacopa monnieri"]),
    "Ginkgo Biloba": ("ginkgo biloba (24/6)", ["ginkgo", "ginkgo biloba"]),
    "L-Theanine": ("l-theanine", ["l theanine", "theanine"]),
    "Acetyl-L-Carnitine": ("acetyl-l-carnitine", ["acetyl l carnitine", "alcar", "l carnitine"]),
    "Creatine": ("creatine (monohydrate)", ["creatine", "creatine monohydrate"]),
    "Curcumin": ("curcumin (95% curcuminoids + piperine)", ["curcumin", "turmeric", "curcumin with piperine"]),
    "Probiotic": ("probiotic (lacto/bifido blend)", ["probiotic", "probiotics"]),
    "Fiber": ("fiber (psyllium husk)", ["fiber", "psyllium", "psyllium husk"]),
    "NAC": ("nac (n-acetylcysteine)", ["nac", "n acetylcysteine", "n acetyl cysteine"]),
    "Electrolytes": ("electrolytes (balanced mix)", ["electrolytes", "oral rehydration"]),
    "Protein": ("protein (whey isolate)", ["whey", "whey isolate", "whey protein", "protein powder", "protein"]),
}

# Additional index keys worth trying for a canonical name
EXPANSIONS = {
    "Omega-3": ["fish oil", "epa", "dha"],
    "Vitamin D": ["vitamin d"],
    "Magnesium": ["magnesium"],
    "Fiber": ["glucomannan"],
    "Protein": ["protein (casein)"],
}

# Names that are never cited
IGNORE = {"see dosing notes", "see dosing", "see notes", "multivitamin", ""}

PENDING_LABEL = "Evidence pending"

_ALIASES: Dict[str, str] = {
    normalize_name(alias): display
    for display, (_, aliases) in CANONICAL.items()
    for alias in aliases + [display]
}


def canonical_name(name: str) -> Optional[str]:
    """Canonical display name for ``name``, or None when not aliased."""
    return _ALIASES.get(normalize_name(name))


def _lookup_alias(name: str) -> Optional[str]:
    """Like canonical_name, but also matches a leading alias ("Magnesium glycinate 200").

    Only used to pick index keys; items are never renamed by it, so
    combination products keep their own name.
    """
    display = canonical_name(name)
    if display:
        return display
    key = normalize_name(name)
    for alias in sorted(_ALIASES, key=len, reverse=True):
        if len(alias) >= 3 and key.startswith(alias + " "):
            return _ALIASES[alias]
    return None


def candidate_keys(name: str) -> List[str]:
    """Ordered, de-duplicated normalized keys to try against the index."""
    keys: List[str] = []
    display = _lookup_alias(name)
    raw = name or ""
    if display:
        keys.append(CANONICAL[display][0])
        keys.append(display)
    keys.extend([raw, raw.replace("-", " "), raw.replace(" ", "-")])
    if display:
        keys.extend(EXPANSIONS.get(display, []))

    out: List[str] = []
    for k in keys:
        nk = normalize_name(k)
        if nk and nk not in out:
            out.append(nk)
    return out


class EvidenceIndex:
    """Immutable mapping: normalized key -> ordered citation URLs."""

    def __init__(self, entries: Mapping[str, List[str]], version: str = "unversioned"):
        self.version = version
        self._entries: Dict[str, Tuple[str, ...]] = {
            normalize_name(k): tuple(urls) for k, urls in entries.items() if normalize_name(k)
        }

    @classmethod
    def from_json(cls, path: Path) -> "EvidenceIndex":
        """
        Load ``{"version": ..., "entries": {key: [{"url": ..., "title": ...}]}}``.
        Entry lists may also be plain URL strings.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        entries = {}
        for key, refs in data.get("entries", {}).items():
            entries[key] = [r["url"] if isinstance(r, dict) else str(r) for r in refs]
        index = cls(entries, version=str(data.get("version", "unversioned")))
        LOG.info(f"Loaded evidence index {index.version} ({len(index)} entries) from {path}")
        return index

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return normalize_name(key) in self._entries

    def get(self, key: str) -> Tuple[str, ...]:
        return self._entries.get(normalize_name(key), ())

    def fuzzy(self, key: str) -> Tuple[str, ...]:
        """First index entry whose key contains ``key`` or is contained in it."""
        k = normalize_name(key)
        if len(k) < 3:
            return ()
        for entry_key, urls in self._entries.items():
            if len(entry_key) >= 3 and (k in entry_key or entry_key in k):
                return urls
        return ()


def resolve_citations(item: StackItem, index: EvidenceIndex, max_per_item: int = 3) -> Optional[List[str]]:
    if normalize_name(item.name) in IGNORE:
        return None

    keys = candidate_keys(item.name)
    for k in keys:
        urls = index.get(k)
        if urls:
            return list(urls[:max_per_item])
    for k in keys:
        urls = index.fuzzy(k)
        if urls:
            return list(urls[:max_per_item])

    trusted = [u.strip() for u in (item.citations or []) if is_trusted_url(u)]
    if trusted:
        return trusted[:max_per_item]
    return None


def resolve_evidence(items: List[StackItem], index: EvidenceIndex, policy: EvidencePolicy) -> List[StackItem]:
    """
    Attach citations and canonical names; merge items that collapse onto the
    same canonical name (first occurrence wins, later ones back-fill).
    """
    merged: Dict[str, StackItem] = {}
    for item in items:
        item.citations = resolve_citations(item, index, policy.max_per_item)
        display = canonical_name(item.name)
        if display:
            item.name = display
        key = normalize_name(item.name)
        if key in merged:
            backfill(merged[key], item)
        else:
            merged[key] = item

    resolved = list(merged.values())
    cited = sum(1 for i in resolved if i.citations)
    LOG.info(f"Evidence resolved for {cited}/{len(resolved)} items (index {index.version})")
    return resolved


def build_evidence_section(items: List[StackItem], policy: EvidencePolicy) -> str:
    """Bullets ``- Name: url``, padded with pending bullets to ``min_bullets``."""
    bullets = []
    for item in items:
        for url in item.citations or []:
            bullets.append(f"- {item.name}: {url}")

    lines = []
    if not items:
        lines.append(
            "No supplement recommendations were finalized for this report, so no "
            "item-specific studies are listed yet. Curated references will appear "
            "here once your stack is confirmed."
        )
        lines.append("")

    while len(bullets) < policy.min_bullets:
        bullets.append(f"- {PENDING_LABEL}: {policy.fallback_url}")
    lines.extend(bullets)
    return "\n".join(lines)
