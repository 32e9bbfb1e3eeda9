"""
Shopping links: product catalog lookup and the link policy.

The catalog attaches link variants (budget / trusted / clean / default),
partner links and a monthly cost estimate to each item. ``choose_links``
then picks what the user actually sees from their brand preference and
account tier; it is pure and never touches the catalog.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence
from urllib.parse import quote_plus

from .db_writer import get_db_connection, resolve_dsn
from .types import ChosenLinks, LinkVariants, PartnerLinks, StackItem
from .utils import normalize_name

LOG = logging.getLogger("lve360.links")

AMAZON_SEARCH_URL = "https://www.amazon.com/s"

# Brand-preference substrings -> variant bucket
BRAND_BUCKETS = (
    ("budget", ("budget", "cheap", "afford", "value", "lowest")),
    ("trusted", ("trusted", "reputable", "top rated", "well known", "name brand")),
    ("clean", ("clean", "organic", "third party", "non gmo", "vegan", "natural")),
)


@dataclass
class CatalogEntry:
    variants: LinkVariants = field(default_factory=LinkVariants)
    partner: PartnerLinks = field(default_factory=PartnerLinks)
    monthly_cost: Optional[float] = None


class ProductCatalog(Protocol):
    def lookup(self, name: str) -> Optional[CatalogEntry]: ...


def _entry_from_row(row: Dict) -> CatalogEntry:
    cost = row.get("monthly_cost")
    return CatalogEntry(
        variants=LinkVariants(
            budget=row.get("link_budget") or None,
            trusted=row.get("link_trusted") or None,
            clean=row.get("link_clean") or None,
            default=row.get("link_default") or None,
        ),
        partner=PartnerLinks(
            specialty_pharmacy=row.get("link_specialty_pharmacy") or row.get("link_fullscript") or None,
            other=row.get("link_other") or None,
        ),
        monthly_cost=float(cost) if cost is not None else None,
    )


class StaticProductCatalog:
    """Catalog backed by a JSON file: ``{"products": {ingredient: {link_*..., monthly_cost}}}``."""

    def __init__(self, products: Dict[str, Dict]):
        self._products = {normalize_name(k): v for k, v in products.items() if normalize_name(k)}

    @classmethod
    def from_json(cls, path: Path) -> "StaticProductCatalog":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        catalog = cls(data.get("products", {}))
        LOG.info(f"Loaded product catalog ({len(catalog._products)} products) from {path}")
        return catalog

    def lookup(self, name: str) -> Optional[CatalogEntry]:
        key = normalize_name(name)
        if not key:
            return None
        row = self._products.get(key)
        if row is None:
            row = next((v for k, v in self._products.items() if key in k or k in key), None)
        return _entry_from_row(row) if row is not None else None


class PostgresProductCatalog:
    """Catalog backed by the ``supplements`` table (exact, then ILIKE)."""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn

    def ensure_configured(self) -> None:
        resolve_dsn(self.dsn)

    def lookup(self, name: str) -> Optional[CatalogEntry]:
        if not name:
            return None
        with get_db_connection(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM supplements WHERE lower(ingredient) = lower(%s) LIMIT 1", (name,))
                row = cur.fetchone()
                if not row:
                    cur.execute("SELECT * FROM supplements WHERE ingredient ILIKE %s LIMIT 1", (f"%{name}%",))
                    row = cur.fetchone()
                if not row:
                    cur.execute("SELECT * FROM supplements WHERE product_name ILIKE %s LIMIT 1", (f"%{name}%",))
                    row = cur.fetchone()
        return _entry_from_row(dict(row)) if row else None


def build_amazon_search_link(name: str, dose: Optional[str], tag: str) -> str:
    """Amazon Health & Household search with the associates tag."""
    parts = [name.strip()] if name and name.strip() else []
    if dose:
        m = re.search(r"\d+(?:\.\d+)?\s?(?:mg|mcg|iu|g)\b", dose.lower().replace(",", ""))
        if m:
            parts.append(m.group(0))
    parts.append("supplement")
    query = quote_plus(" ".join(parts))
    return f"{AMAZON_SEARCH_URL}?k={query}&i=hpc&tag={quote_plus(tag)}"


def attach_catalog(items: List[StackItem], catalog: ProductCatalog, amazon_tag: str) -> List[StackItem]:
    for item in items:
        try:
            entry = catalog.lookup(item.name)
        except Exception as e:
            LOG.warning(f"Catalog lookup failed for {item.name}: {e}")
            entry = None
        if entry:
            item.link_variants = entry.variants
            item.partner_links = entry.partner
            if item.cost_estimate is None:
                item.cost_estimate = entry.monthly_cost
        if not item.link_variants.any():
            item.link_variants.default = build_amazon_search_link(item.name, item.dose, amazon_tag)
    return items


def brand_bucket(brand_pref: Optional[str]) -> str:
    pref = normalize_name(brand_pref or "")
    for bucket, words in BRAND_BUCKETS:
        if any(w in pref for w in words):
            return bucket
    return "default"


def is_paid_tier(tier: Optional[str], paid_tiers: Sequence[str]) -> bool:
    return (tier or "").strip().lower() in {t.lower() for t in paid_tiers}


def choose_links(
    item: StackItem,
    brand_pref: Optional[str],
    tier: Optional[str],
    paid_tiers: Sequence[str] = ("premium", "pro"),
) -> ChosenLinks:
    """
    Pick the marketplace link for the brand bucket, falling back to
    default, trusted, budget, clean. Partner links only for paid tiers.
    """
    v = item.link_variants
    bucket = brand_bucket(brand_pref)
    marketplace = getattr(v, bucket) or v.default or v.trusted or v.budget or v.clean

    paid = is_paid_tier(tier, paid_tiers)
    return ChosenLinks(
        primary_marketplace=marketplace,
        specialty_pharmacy=item.partner_links.specialty_pharmacy if paid else None,
        other=item.partner_links.other if paid else None,
    )


def apply_link_policy(items: List[StackItem], brand_pref: Optional[str], tier: Optional[str], paid_tiers: Sequence[str]) -> List[StackItem]:
    for item in items:
        item.chosen_links = choose_links(item, brand_pref, tier, paid_tiers)
    return items
