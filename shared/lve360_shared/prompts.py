"""
Report contract and prompt builders.

The heading list is the output document contract shared by the prompt,
the structural validator, the parser and the report assembler.
"""
import json
from datetime import date
from typing import Dict, List, Optional

from .config import ValidatorThresholds
from .types import Submission

INTRO = "## Intro Summary"
GOALS = "## Goals"
CONTRAINDICATIONS = "## Contraindications & Med Interactions"
CURRENT_STACK = "## Current Stack"
RECOMMENDATIONS = "## Your Blueprint Recommendations"
DOSING = "## Dosing & Notes"
EVIDENCE = "## Evidence & References"
SHOPPING = "## Shopping Links"
FOLLOW_UP = "## Follow-up Plan"
LIFESTYLE = "## Lifestyle Prescriptions"
LONGEVITY = "## Longevity Levers"
THIS_WEEK = "## This Week Try"
END_MARKER = "## END"

HEADINGS = [
    INTRO,
    GOALS,
    CONTRAINDICATIONS,
    CURRENT_STACK,
    RECOMMENDATIONS,
    DOSING,
    EVIDENCE,
    SHOPPING,
    FOLLOW_UP,
    LIFESTYLE,
    LONGEVITY,
    THIS_WEEK,
    END_MARKER,
]

# Headings that must appear before the terminal marker
REQUIRED_HEADINGS = HEADINGS[:-1]

SEE_DOSING_NOTES = "See Dosing & Notes"

SYSTEM_PERSONA = (
    "You are LVE360 Concierge AI, a friendly but professional wellness coach. "
    "You must be DSHEA/FTC compliant, avoid disease claims, avoid diagnosing, "
    "and use cautious language like 'research suggests' and 'many people find'."
)


def age_from_dob(dob: Optional[str], today: Optional[date] = None) -> Optional[int]:
    if not dob:
        return None
    try:
        birth = date.fromisoformat(str(dob)[:10])
    except ValueError:
        return None
    today = today or date.today()
    age = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        age -= 1
    return age


def system_prompt(thresholds: ValidatorThresholds) -> str:
    headings = "\n".join(REQUIRED_HEADINGS)
    return f"""{SYSTEM_PERSONA}
Tone: encouraging, plain-English, never clinical or robotic.
Always explain *why it matters* in a supportive, human way.
Always greet the client by name in the Intro Summary if provided.

Return **plain ASCII Markdown only** with headings EXACTLY:

{headings}

Tables must use `Column | Column` pipe format, no curly quotes or bullets.
Every table/list MUST be followed by **Analysis** of at least 3 sentences that:
- Summarize the section
- Explain why it matters
- Give a practical implication

### Special rules
- Section **Current Stack** -> table `| Supplement | Purpose | Dose | Timing |`.
- Section **Your Blueprint Recommendations** -> table `| Rank | Supplement | Why it Matters |` with at least {thresholds.min_table_rows} rows.
  Exclude items tagged *(already using)* unless it is Rank 1.
- Section **Dosing & Notes** -> one bullet per item: `- Name — dose, timing`.
- Section **Evidence & References** -> at least {thresholds.min_citations} bullets, every bullet ends with a PubMed/DOI URL.
- If Dose/Timing unknown -> use "{SEE_DOSING_NOTES}".
- The whole report must be at least {thresholds.min_words} words.
- Finish with the line `{END_MARKER}`.
If an internal check fails, regenerate before responding."""


def user_prompt(submission: Submission, today: Optional[date] = None) -> str:
    today = today or date.today()
    client = submission.model_dump()
    client["age"] = age_from_dob(submission.dob, today)
    client["today"] = today.isoformat()
    return f"""### CLIENT
```json
{json.dumps(client, indent=2, default=str)}
```

### TASK
Generate the full report per the rules above."""


def build_messages(
    submission: Submission,
    thresholds: ValidatorThresholds,
    today: Optional[date] = None,
) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt(thresholds)},
        {"role": "user", "content": user_prompt(submission, today)},
    ]
