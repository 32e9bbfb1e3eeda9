"""
Markdown-to-items parser.

The backend's report is only loosely structured, so items are pulled from
three independently formatted sections and merged by normalized name:

1. ``## Your Blueprint Recommendations`` table (name, rationale)
2. ``## Current Stack`` table (name, purpose, dose, timing; is_current)
3. ``## Dosing & Notes`` bullets (``- Name — dose, timing``)

Each extractor is a pure function over the full markdown; ``merge_candidates``
back-fills and filters. ``parse_markdown_to_items`` runs the whole pipeline.
"""
import re
from typing import Dict, List, Optional, Tuple

from .prompts import CURRENT_STACK, DOSING, RECOMMENDATIONS
from .types import DoseParsed, StackItem
from .utils import clean_name, normalize_name

MAX_NAME_LEN = 40

URL_RE = re.compile(r"https?://[^\s)\]|>]+")
SEPARATOR_ROW_RE = re.compile(r"^\|?\s*:?-{2,}:?\s*(\|\s*:?-{2,}:?\s*)*\|?\s*$")
PUNCT_RUN_RE = re.compile(r"[^\w\s]{3,}")
ALREADY_USING_RE = re.compile(r"\(\s*already using\s*\)", re.I)
ITEM_PLACEHOLDER_RE = re.compile(r"^(current )?item \d+$")

NOISE_NAMES = {
    "analysis", "summary", "total", "totals", "rank", "supplement", "supplements",
    "name", "item", "medication", "medication supplement", "none", "n a", "na",
    "see dosing notes", "see dosing", "see notes", "tbd",
}

TIMING_WORDS_RE = re.compile(
    r"\bAM\b|\bPM\b|morning|evening|night|bedtime|breakfast|with (?:meal|meals|food)|twice|\b2x\b|\bBID\b|split|AM/PM",
    re.I,
)

UNIT_ALIASES = {"mcg": "mcg", "µg": "mcg", "μg": "mcg", "ug": "mcg", "mg": "mg", "g": "mg", "iu": "IU"}


# ============================================================================
# Section helpers
# ============================================================================

def section_body(md: str, heading: str) -> Optional[str]:
    """Text under ``heading`` up to the next ``## `` heading (or end of text)."""
    if not md:
        return None
    title = heading.lstrip("#").strip()
    pattern = rf"^##\s*{re.escape(title)}[^\n]*\n?(.*?)(?=^##\s|\Z)"
    m = re.search(pattern, md, re.I | re.M | re.S)
    return m.group(1) if m else None


def split_cells(row: str) -> List[str]:
    return [c.strip() for c in row.strip().strip("|").split("|")]


def table_rows(body: Optional[str]) -> Tuple[List[str], List[List[str]]]:
    """Return (header cells, data rows) for the pipe table in ``body``."""
    if not body:
        return [], []
    rows = []
    for line in body.split("\n"):
        t = line.strip()
        if not t.startswith("|") or SEPARATOR_ROW_RE.match(t):
            continue
        rows.append(split_cells(t))
    if not rows:
        return [], []
    return [h.lower() for h in rows[0]], rows[1:]


def _column(header: List[str], keywords: Tuple[str, ...], default: int) -> int:
    for i, h in enumerate(header):
        if any(k in h for k in keywords):
            return i
    return default


def _cell(cols: List[str], idx: int) -> Optional[str]:
    if 0 <= idx < len(cols):
        value = cols[idx].strip()
        return value or None
    return None


# ============================================================================
# Dose & timing
# ============================================================================

def parse_dose(dose: Optional[str]) -> DoseParsed:
    """
    Take the last number that carries a unit; with no unit anywhere, the
    last number alone.

    "500 mg" -> 500 mg, "0.5 g" -> 500 mg, "50mcg" -> 50 mcg, "2,000 IU" -> 2000 IU,
    "500 mg twice daily with 2 meals" -> 500 mg
    """
    if not dose:
        return DoseParsed()
    text = re.sub(r"(?<=\d),(?=\d{3}\b)", "", dose)
    with_unit = list(re.finditer(r"(\d+(?:\.\d+)?)\s*(mcg|µg|μg|ug|mg|g|iu)\b", text, re.I))
    if not with_unit:
        numbers = re.findall(r"\d+(?:\.\d+)?", text)
        return DoseParsed(amount=float(numbers[-1])) if numbers else DoseParsed()

    m = with_unit[-1]
    amount = float(m.group(1))
    raw_unit = m.group(2).lower()
    if raw_unit == "g":
        return DoseParsed(amount=amount * 1000, unit="mg")
    return DoseParsed(amount=amount, unit=UNIT_ALIASES.get(raw_unit, raw_unit))


def normalize_timing(raw: Optional[str]) -> Optional[str]:
    """AM, PM or AM/PM when the text is recognizable, else None."""
    if not raw:
        return None
    s = raw.lower()
    am = re.search(r"\bam\b|morning|breakfast", s)
    pm = re.search(r"\bpm\b|evening|night|bedtime", s)
    if (am and pm) or re.search(r"am/pm|\bboth\b|split|\bbid\b|twice|\b2x\b", s):
        return "AM/PM"
    if am:
        return "AM"
    if pm:
        return "PM"
    return None


def classify_timing_bucket(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    return normalize_timing(text) or "Anytime"


def _timing_value(text: Optional[str]) -> Optional[str]:
    return normalize_timing(text) or (text.strip() if text and text.strip() else None)


def _item_name(raw: str) -> Tuple[str, bool]:
    """Cleaned display name plus whether the row was tagged (already using)."""
    tagged = bool(ALREADY_USING_RE.search(raw or ""))
    return clean_name(ALREADY_USING_RE.sub("", raw or "")), tagged


# ============================================================================
# Extraction passes
# ============================================================================

def extract_recommendations(md: str) -> List[StackItem]:
    header, rows = table_rows(section_body(md, RECOMMENDATIONS))
    name_idx = _column(header, ("supplement", "name", "item"), 1 if len(header) > 2 else 0)
    why_idx = _column(header, ("why", "rationale", "purpose", "benefit"), name_idx + 1)

    items = []
    for cols in rows:
        name, tagged = _item_name(_cell(cols, name_idx) or "")
        if not name:
            continue
        urls = URL_RE.findall(" | ".join(cols))
        rationale = _cell(cols, why_idx)
        if rationale:
            rationale = URL_RE.sub("", rationale).strip(" -()") or None
        items.append(StackItem(
            name=name,
            rationale=rationale,
            is_current=tagged,
            citations=urls or None,
        ))
    return items


def extract_current_stack(md: str) -> List[StackItem]:
    header, rows = table_rows(section_body(md, CURRENT_STACK))
    name_idx = _column(header, ("supplement", "medication", "name", "item"), 0)
    purpose_idx = _column(header, ("purpose", "why", "rationale", "reason"), name_idx + 1)
    dose_idx = _column(header, ("dose", "dosage", "amount"), name_idx + 2)
    timing_idx = _column(header, ("timing", "when", "time"), name_idx + 3)

    items = []
    for cols in rows:
        name, _ = _item_name(_cell(cols, name_idx) or "")
        if not name:
            continue
        dose = _cell(cols, dose_idx)
        timing_text = _cell(cols, timing_idx)
        items.append(StackItem(
            name=name,
            rationale=_cell(cols, purpose_idx),
            dose=dose,
            dose_parsed=parse_dose(dose),
            timing=_timing_value(timing_text),
            timing_text=timing_text,
            is_current=True,
        ))
    return items


DOSING_LINE_RE = re.compile(r"^\s*[-*]\s+(?P<name>.+?)\s*(?::|—|–|\s-\s)\s*(?P<rest>.*)$")
DOSE_TIMING_SPLIT_RE = re.compile(r"(?<!\d),|,(?!\d)")


def extract_dosing_notes(md: str) -> List[StackItem]:
    body = section_body(md, DOSING)
    if not body:
        return []

    items = []
    for line in body.split("\n"):
        m = DOSING_LINE_RE.match(line)
        if not m:
            continue
        name, _ = _item_name(m.group("name"))
        rest = m.group("rest").strip().lstrip("*_ ").strip()
        if not name or not rest:
            continue

        first_sentence = re.split(r"\.\s+(?=[A-Z])", rest, maxsplit=1)[0].rstrip(". ")
        parts = DOSE_TIMING_SPLIT_RE.split(first_sentence, maxsplit=1)
        dose = parts[0].strip() or None
        timing_text = parts[1].strip() if len(parts) > 1 and parts[1].strip() else None
        if timing_text is None and dose and TIMING_WORDS_RE.search(dose):
            timing_text = dose

        items.append(StackItem(
            name=name,
            dose=dose,
            dose_parsed=parse_dose(dose),
            timing=_timing_value(timing_text),
            timing_text=timing_text,
        ))
    return items


# ============================================================================
# Merge & filter
# ============================================================================

def backfill(target: StackItem, source: StackItem) -> None:
    """Fill gaps on ``target`` from ``source``; never overwrite."""
    for field in ("rationale", "dose", "timing", "timing_text", "caution", "cost_estimate"):
        if getattr(target, field) is None and getattr(source, field) is not None:
            setattr(target, field, getattr(source, field))
    if target.dose_parsed.amount is None and source.dose_parsed.amount is not None:
        target.dose_parsed = source.dose_parsed
    if not target.citations and source.citations:
        target.citations = source.citations
    target.is_current = target.is_current or source.is_current


def is_noise_name(name: str) -> bool:
    if not name or len(name) > MAX_NAME_LEN:
        return True
    if PUNCT_RUN_RE.search(name):
        return True
    key = normalize_name(name)
    if not key or key in NOISE_NAMES or key.startswith("analysis") or ITEM_PLACEHOLDER_RE.match(key):
        return True
    return False


def merge_candidates(*sources: List[StackItem]) -> List[StackItem]:
    """Merge extraction passes in order; earlier sources win, later ones back-fill."""
    merged: Dict[str, StackItem] = {}
    for source in sources:
        for item in source:
            key = normalize_name(item.name)
            if not key:
                continue
            if key in merged:
                backfill(merged[key], item)
            else:
                merged[key] = item.model_copy(deep=True)

    seen = set()
    items = []
    for item in merged.values():
        key = normalize_name(item.name)
        if is_noise_name(item.name) or key in seen:
            continue
        seen.add(key)
        item.timing_bucket = classify_timing_bucket(item.timing_text or item.timing)
        if item.timing_bucket is None and item.dose and re.search(r"see dosing", item.dose, re.I):
            item.timing_bucket = "Anytime"
        items.append(item)
    return items


def parse_markdown_to_items(md: str) -> List[StackItem]:
    if not md:
        return []
    return merge_candidates(
        extract_recommendations(md),
        extract_current_stack(md),
        extract_dosing_notes(md),
    )
