"""
Report assembler.

Turns the backend's raw draft into the final narrative: deterministic
Evidence and Shopping sections, no traces of screened-out items, and a
single terminal END marker. Runs whether or not the draft passed
validation.
"""
import logging
import re
from typing import List, Optional

from .config import EvidencePolicy
from .evidence import build_evidence_section
from .markdown_parser import DOSING_LINE_RE, SEPARATOR_ROW_RE, split_cells
from .prompts import (
    DOSING,
    END_MARKER,
    EVIDENCE,
    HEADINGS,
    INTRO,
    RECOMMENDATIONS,
    SHOPPING,
)
from .types import StackItem, Submission
from .utils import clean_name, normalize_name

LOG = logging.getLogger("lve360.report")

END_LINE_RE = re.compile(r"^##\s*END\s*$", re.I | re.M)


def _heading_re(heading: str) -> re.Pattern:
    title = heading.lstrip("#").strip()
    return re.compile(rf"^##\s*{re.escape(title)}[^\n]*\n?", re.I | re.M)


def _section_span(md: str, heading: str):
    """(start, end) of the section including its heading line, or None."""
    m = _heading_re(heading).search(md)
    if not m:
        return None
    nxt = re.compile(r"^##\s", re.M).search(md, m.end())
    return m.start(), nxt.start() if nxt else len(md)


def replace_section(md: str, heading: str, body: str) -> str:
    """
    Replace ``heading`` and everything up to the next heading with ``body``.
    A missing section is inserted before the next heading that follows it
    in the document contract, or before END, or at the end.
    """
    block = f"{heading}\n\n{body.strip()}\n\n"
    span = _section_span(md, heading)
    if span:
        start, end = span
        return md[:start] + block + md[end:]

    later = HEADINGS[HEADINGS.index(heading) + 1:] if heading in HEADINGS else [END_MARKER]
    for h in later:
        later_span = _section_span(md, h)
        if later_span:
            start = later_span[0]
            return md[:start] + block + md[start:]

    sep = "" if not md or md.endswith("\n\n") else ("\n" if md.endswith("\n") else "\n\n")
    return md + sep + block


def _is_removed(name: str, removed_keys: set) -> bool:
    key = normalize_name(clean_name(re.sub(r"\(\s*already using\s*\)", "", name, flags=re.I)))
    return bool(key) and key in removed_keys


def strip_removed_items(md: str, removed: List[str]) -> str:
    """Drop recommendation rows and dosing bullets for screened-out items."""
    removed_keys = {normalize_name(n) for n in removed if normalize_name(n)}
    if not removed_keys or not md:
        return md

    for heading in (RECOMMENDATIONS, DOSING):
        span = _section_span(md, heading)
        if not span:
            continue
        start, end = span
        kept = []
        header_seen = False
        for line in md[start:end].split("\n"):
            t = line.strip()
            if t.startswith("|") and not SEPARATOR_ROW_RE.match(t):
                if not header_seen:
                    header_seen = True
                    kept.append(line)
                    continue
                if any(_is_removed(cell, removed_keys) for cell in split_cells(t)):
                    continue
            elif heading == DOSING:
                m = DOSING_LINE_RE.match(line)
                if m and _is_removed(m.group("name"), removed_keys):
                    continue
            kept.append(line)
        md = md[:start] + "\n".join(kept) + md[end:]
    return md


def build_shopping_section(items: List[StackItem]) -> str:
    if not items:
        return (
            "No shopping links yet. Once your recommendations are finalized, "
            "links for each item will appear here. Always check labels for "
            "third-party testing before you buy."
        )
    lines = []
    for item in items:
        links = []
        if item.chosen_links.primary_marketplace:
            links.append(f"[Buy]({item.chosen_links.primary_marketplace})")
        if item.chosen_links.specialty_pharmacy:
            links.append(f"[Specialty pharmacy]({item.chosen_links.specialty_pharmacy})")
        if item.chosen_links.other:
            links.append(f"[Partner]({item.chosen_links.other})")
        label = f"**{item.name}**"
        if item.cost_estimate is not None:
            label += f" (~${item.cost_estimate:.0f}/mo)"
        lines.append(f"- {label}: {' | '.join(links) if links else 'Link coming soon'}")
    return "\n".join(lines)


def ensure_end(md: str) -> str:
    """Exactly one trailing END marker."""
    body = END_LINE_RE.sub("", md or "").rstrip()
    return f"{body}\n\n{END_MARKER}\n" if body else f"{END_MARKER}\n"


def build_fallback_document(submission: Optional[Submission] = None) -> str:
    """Skeleton report used when the backend produced no text at all."""
    name = submission.name if submission and submission.name else "there"
    placeholder = (
        "We could not finish this section right now. "
        "Your full report will be regenerated shortly. "
        "Nothing here changes what you are currently doing."
    )
    parts = []
    for heading in HEADINGS[:-1]:
        if heading == INTRO:
            body = (
                f"Hi {name}, thanks for completing your intake. "
                "We hit a temporary problem generating your personalized report."
            )
        elif heading == RECOMMENDATIONS:
            body = "| Rank | Supplement | Why it Matters |\n|---|---|---|\n\n" + placeholder
        else:
            body = placeholder
        parts.append(f"{heading}\n\n{body}\n")
    return "\n".join(parts)


def assemble_report(
    text: str,
    items: List[StackItem],
    removed: List[str],
    policy: EvidencePolicy,
    submission: Optional[Submission] = None,
) -> str:
    md = text if text and text.strip() else build_fallback_document(submission)
    md = strip_removed_items(md, removed)
    # END is re-added last so inserted sections land before it
    md = END_LINE_RE.sub("", md).rstrip() + "\n\n"
    md = replace_section(md, EVIDENCE, build_evidence_section(items, policy))
    md = replace_section(md, SHOPPING, build_shopping_section(items))
    LOG.debug(f"Assembled report: {len(md.split())} words, {len(items)} items, {len(removed)} removed")
    return ensure_end(md)
