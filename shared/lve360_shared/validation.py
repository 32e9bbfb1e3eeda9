"""
Structural validator for generated reports.

Pure predicate over the raw markdown; the per-check breakdown is logged by
the orchestrator so that thresholds can be tuned against real output.
"""
import logging
import re
from typing import List, Optional

from .config import ValidatorThresholds
from .markdown_parser import section_body, table_rows
from .prompts import END_MARKER, EVIDENCE, INTRO, RECOMMENDATIONS, REQUIRED_HEADINGS
from .types import ValidationReport

LOG = logging.getLogger("lve360.validation")

TRUSTED_JOURNAL_DOMAINS = (
    "nature.com",
    "sciencedirect.com",
    "jamanetwork.com",
    "nejm.org",
    "thelancet.com",
    "bmj.com",
    "academic.oup.com",
    "onlinelibrary.wiley.com",
    "link.springer.com",
    "mdpi.com",
    "frontiersin.org",
    "journals.plos.org",
    "cochranelibrary.com",
)

TRUSTED_SOURCE_RE = re.compile(
    r"https?://(?:"
    r"pubmed\.ncbi\.nlm\.nih\.gov/\d+"
    r"|pmc\.ncbi\.nlm\.nih\.gov/articles/PMC\d+"
    r"|(?:www\.)?ncbi\.nlm\.nih\.gov/pmc/articles/PMC\d+"
    r"|(?:dx\.)?doi\.org/\S+"
    r"|(?:[\w-]+\.)*(?:" + "|".join(re.escape(d) for d in TRUSTED_JOURNAL_DOMAINS) + r")/\S+"
    r")",
    re.I,
)

# Any http(s) link with a path, e.g. a journal article page
ARTICLE_LINK_RE = re.compile(r"https?://[\w.-]+\.[a-z]{2,}/[^\s)]+", re.I)

BULLET_RE = re.compile(r"^\s*[-*]\s+")
SENTENCE_SPLIT_RE = re.compile(r"[.!?]")


def is_trusted_url(url: str) -> bool:
    return bool(url and TRUSTED_SOURCE_RE.search(url.strip()))


def word_count(md: str) -> int:
    return len(md.split()) if md and md.strip() else 0


def missing_headings(md: str) -> List[str]:
    """Required headings missing from ``md`` (verbatim match)."""
    return [h for h in REQUIRED_HEADINGS if h not in (md or "")]


def recommendation_row_count(md: str) -> int:
    _, rows = table_rows(section_body(md, RECOMMENDATIONS))
    return len(rows)


def citation_bullets(md: str) -> List[str]:
    body = section_body(md, EVIDENCE) or ""
    return [line.strip() for line in body.split("\n") if BULLET_RE.match(line)]


def citations_ok(md: str, min_citations: int) -> bool:
    bullets = citation_bullets(md)
    if len(bullets) < min_citations:
        return False
    return all(TRUSTED_SOURCE_RE.search(b) or ARTICLE_LINK_RE.search(b) for b in bullets)


def sentence_count(text: str) -> int:
    return len([s for s in SENTENCE_SPLIT_RE.split(text) if s.strip()])


def thin_sections(md: str, min_sentences: int, min_intro_sentences: int) -> List[str]:
    """Section titles whose prose (tables and bullets excluded) is too short."""
    thin = []
    for sec in re.split(r"^##\s+", md or "", flags=re.M)[1:]:
        lines = sec.split("\n")
        title = lines[0].strip()
        if not title or title.upper() == END_MARKER.lstrip("# ").upper():
            continue
        prose = " ".join(
            l for l in lines[1:] if not l.strip().startswith("|") and not BULLET_RE.match(l)
        )
        # Links would otherwise count their dots as sentence breaks
        prose = re.sub(r"https?://\S+", "", prose)
        need = min_intro_sentences if title.lower().startswith(INTRO.lstrip("# ").lower()) else min_sentences
        if sentence_count(prose) < need:
            thin.append(title)
    return thin


def validate_report(md: str, thresholds: Optional[ValidatorThresholds] = None) -> ValidationReport:
    """
    Check the raw report against the output contract.

    All of the following must hold for ``passed``:
    - word count >= min_words
    - every required heading is present verbatim
    - recommendation table has >= min_table_rows data rows
    - evidence section has >= min_citations bullets, each with a trusted or article URL
    - every section has enough prose sentences (intro has a lower bar)
    """
    t = thresholds or ValidatorThresholds()
    md = md or ""

    words = word_count(md)
    missing = missing_headings(md)
    rows = recommendation_row_count(md)
    bullets = citation_bullets(md)
    thin = thin_sections(md, t.min_sentences, t.min_intro_sentences)

    checks = {
        "word_count": words >= t.min_words,
        "headings": not missing,
        "recommendation_rows": rows >= t.min_table_rows,
        "citations": citations_ok(md, t.min_citations),
        "narrative": not thin,
    }
    report = ValidationReport(
        checks=checks,
        word_count=words,
        table_rows=rows,
        citation_bullets=len(bullets),
        missing_headings=missing,
        thin_sections=thin,
        passed=all(checks.values()),
    )
    LOG.debug(f"Validation checks: {checks} (words={words}, rows={rows}, bullets={len(bullets)})")
    return report
