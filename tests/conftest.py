from typing import Dict, List, Optional

import pytest

from lve360_shared.config import GenerationConfig
from lve360_shared.db_writer import prepare_item_rows
from lve360_shared.evidence import EvidenceIndex
from lve360_shared.intake import SubmissionNotFound
from lve360_shared.links import StaticProductCatalog
from lve360_shared.llm_client import BackendError, ChatResult
from lve360_shared.prompts import (
    CONTRAINDICATIONS,
    CURRENT_STACK,
    DOSING,
    END_MARKER,
    EVIDENCE,
    FOLLOW_UP,
    GOALS,
    INTRO,
    LIFESTYLE,
    LONGEVITY,
    RECOMMENDATIONS,
    SHOPPING,
    THIS_WEEK,
)
from lve360_shared.types import SaveResult, Stack, StackItem, Submission, Usage


FILLER = "Research suggests that steady daily habits support energy, focus and restful sleep over time."

DEFAULT_RECS = [
    ("Magnesium Glycinate", "Supports relaxation and sleep quality"),
    ("Omega-3", "Supports heart and brain health"),
    ("Vitamin D3", "Supports immune function and mood"),
    ("Ashwagandha", "May help the body adapt to stress"),
    ("L-Theanine", "Promotes calm focus"),
    ("Creatine", "Supports strength and cognition"),
    ("CoQ10", "Supports cellular energy"),
    ("Zinc", "Supports immune health"),
    ("B12", "Supports energy metabolism"),
    ("Probiotic", "Supports gut health"),
]

DEFAULT_CURRENT = [("Vitamin D3", "Bone health", "2,000 IU", "AM")]

DEFAULT_DOSING = [
    ("Magnesium Glycinate", "200 mg, PM"),
    ("Omega-3", "1 g, with breakfast"),
    ("Vitamin D3", "2,000 IU, AM"),
    ("Ashwagandha", "600 mg, PM"),
    ("L-Theanine", "200 mg, AM/PM"),
    ("Creatine", "5 g, AM"),
    ("CoQ10", "100 mg, AM"),
    ("Zinc", "15 mg, PM"),
    ("B12", "500 mcg, AM"),
    ("Probiotic", "1 capsule, AM"),
]

PUBMED = "https://pubmed.ncbi.nlm.nih.gov/{}/"


def prose(sentences: int) -> str:
    return " ".join([FILLER] * sentences)


def build_report(
    recs=DEFAULT_RECS,
    current=DEFAULT_CURRENT,
    dosing=DEFAULT_DOSING,
    evidence_bullets: int = 8,
    sentences: int = 12,
    end: bool = True,
) -> str:
    """A draft that passes every structural check with the default arguments."""
    body = prose(sentences)
    rec_table = "| Rank | Supplement | Why it Matters |\n|---|---|---|\n" + "\n".join(
        f"| {i} | {name} | {why} |" for i, (name, why) in enumerate(recs, 1)
    )
    current_table = "| Supplement | Purpose | Dose | Timing |\n|---|---|---|---|\n" + "\n".join(
        f"| {n} | {p} | {d} | {t} |" for n, p, d, t in current
    )
    dosing_list = "\n".join(f"- {n} — {rest}" for n, rest in dosing)
    evidence_list = "\n".join(f"- Study {i}: {PUBMED.format(10000000 + i)}" for i in range(evidence_bullets))

    sections = [
        (INTRO, f"Hi Sam, welcome to your blueprint. {body}"),
        (GOALS, body),
        (CONTRAINDICATIONS, body),
        (CURRENT_STACK, f"{current_table}\n\n**Analysis** {body}"),
        (RECOMMENDATIONS, f"{rec_table}\n\n**Analysis** {body}"),
        (DOSING, f"{dosing_list}\n\n**Analysis** {body}"),
        (EVIDENCE, f"{evidence_list}\n\n**Analysis** {body}"),
        (SHOPPING, body),
        (FOLLOW_UP, body),
        (LIFESTYLE, body),
        (LONGEVITY, body),
        (THIS_WEEK, body),
    ]
    md = "\n\n".join(f"{h}\n\n{b}" for h, b in sections)
    return md + (f"\n\n{END_MARKER}\n" if end else "\n")


@pytest.fixture
def report_factory():
    return build_report


@pytest.fixture
def config() -> GenerationConfig:
    return GenerationConfig()


@pytest.fixture
def evidence_index() -> EvidenceIndex:
    return EvidenceIndex(
        {
            "magnesium (glycinate)": [PUBMED.format(23853635), PUBMED.format(28445426), PUBMED.format(27402922), PUBMED.format(1)],
            "omega-3 (epa+dha)": [PUBMED.format(30415637)],
            "vitamin d3 (cholecalciferol)": [PUBMED.format(30415629)],
            "creatine (monohydrate)": [PUBMED.format(28615996)],
            "l-theanine": [PUBMED.format(31623400)],
        },
        version="test-1",
    )


@pytest.fixture
def catalog() -> StaticProductCatalog:
    return StaticProductCatalog({
        "Magnesium": {
            "link_budget": "https://shop.example/mag-budget",
            "link_trusted": "https://shop.example/mag-trusted",
            "link_default": "https://shop.example/mag",
            "link_specialty_pharmacy": "https://pharmacy.example/mag",
            "link_other": "https://partner.example/mag",
            "monthly_cost": 12.0,
        },
        "Omega-3": {
            "link_default": "https://shop.example/omega",
            "monthly_cost": 18.5,
        },
    })


@pytest.fixture
def submission() -> Submission:
    return Submission(
        id="sub-1",
        email="sam@example.com",
        name="Sam",
        goals=["sleep", "energy"],
        dob="1990-06-15",
        tier="free",
    )


class FakeBackend:
    """Returns scripted responses in order; an Exception entry is raised."""

    def __init__(self, responses: List, configured: bool = True):
        self.responses = list(responses)
        self.configured = configured
        self.calls: List[str] = []

    def ensure_configured(self) -> None:
        from lve360_shared.config import ConfigurationError
        if not self.configured:
            raise ConfigurationError("OPENAI_API_KEY environment variable not set")

    def generate(self, messages, model) -> ChatResult:
        self.calls.append(model)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return ChatResult(text=response, model=model, usage=Usage(prompt_tokens=100, completion_tokens=200, total_tokens=300))


class FakeLoader:
    def __init__(self, submissions: Dict[str, Submission]):
        self.submissions = submissions

    def fetch(self, submission_id: str) -> Submission:
        if submission_id not in self.submissions:
            raise SubmissionNotFound(f"Submission {submission_id} not found")
        return self.submissions[submission_id]


class FakeWriter:
    """In-memory stand-in for the Postgres writer: one stack per submission."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.stacks: Dict[str, Stack] = {}
        self.items: Dict[str, List[StackItem]] = {}

    def save(self, stack: Stack, items: List[StackItem]) -> SaveResult:
        if self.fail:
            return SaveResult(saved=False, error="connection refused")
        rows, skipped = prepare_item_rows(items)
        self.stacks[stack.submission_id] = stack
        self.items[stack.submission_id] = [i.model_copy(deep=True) for i in rows]
        return SaveResult(saved=True, stack_id=f"stack-{stack.submission_id}", items_inserted=len(rows), items_skipped=skipped)


def backend_error(msg: str = "503 Service Unavailable") -> BackendError:
    return BackendError(msg)


# ---- psycopg stand-ins ----

class FakeTransaction:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        self.conn.events.append("begin")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.conn.events.append("rollback" if exc_type else "commit")
        return False


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self._rows: List[dict] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.conn.events.append(" ".join(sql.split())[:40])
        self.conn.executed.append((sql, params))
        self._rows = self.conn.responder(sql, params) if self.conn.responder else []

    def executemany(self, sql, seq):
        rows = list(seq)
        self.conn.events.append(" ".join(sql.split())[:40])
        if self.conn.fail_on_executemany:
            raise RuntimeError("insert failed")
        self.conn.executed_many.append((sql, rows))

    def fetchone(self) -> Optional[dict]:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> List[dict]:
        return list(self._rows)


class FakeConnection:
    def __init__(self, responder=None, fail_on_executemany: bool = False):
        self.responder = responder
        self.fail_on_executemany = fail_on_executemany
        self.events: List[str] = []
        self.executed: List[tuple] = []
        self.executed_many: List[tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def transaction(self):
        return FakeTransaction(self)

    def cursor(self):
        return FakeCursor(self)
