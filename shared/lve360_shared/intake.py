"""
Intake loader: fetch a submission and its child rows as one aggregate.
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from .db_writer import get_db_connection, resolve_dsn
from .types import Submission

LOG = logging.getLogger("lve360.intake")


class SubmissionNotFound(LookupError):
    pass


def parse_list(value: Any) -> List[str]:
    """Accept a list or a delimited string (newline, comma, semicolon, pipe)."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        out = []
        for v in value:
            if isinstance(v, dict):
                v = v.get("name")
            if v is not None and str(v).strip():
                out.append(str(v).strip())
        return out
    return [s.strip() for s in re.split(r"\n|,|;|\|", str(value)) if s.strip()]


def rows_to_names(rows: Optional[Iterable[Any]], *name_keys: str) -> List[str]:
    """Child rows may be plain strings or dicts with the name in one of several columns."""
    names = []
    for row in rows or []:
        if isinstance(row, str):
            name = row
        elif isinstance(row, dict):
            name = next((row.get(k) for k in name_keys if row.get(k)), None)
        else:
            name = None
        if name and str(name).strip():
            names.append(str(name).strip())
    return names


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    s = str(value).strip().lower()
    return s in ("y", "true", "1", "pregnant", "breastfeeding") or s.startswith("yes")


def _num_or_none(value: Any) -> Optional[float]:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if n == n else None  # NaN


def normalize_submission(
    row: Dict[str, Any],
    medications: Optional[List[Any]] = None,
    supplements: Optional[List[Any]] = None,
    hormones: Optional[List[Any]] = None,
) -> Submission:
    """
    Map a raw submissions row plus its child rows onto a Submission.

    Child rows win over array columns on the parent row when present.
    """
    meds = rows_to_names(medications, "med_name", "name") or parse_list(row.get("medications"))
    supps = rows_to_names(supplements, "name", "supplement_name") or parse_list(row.get("supplements"))
    horms = rows_to_names(hormones, "hormone_name", "name") or parse_list(row.get("hormones"))

    return Submission(
        id=str(row["id"]),
        email=row.get("user_email") or row.get("email"),
        name=row.get("name"),
        goals=parse_list(row.get("goals")),
        conditions=parse_list(row.get("conditions") or row.get("health_conditions") or row.get("healthConditions")),
        medications=meds,
        supplements=supps,
        hormones=horms,
        allergies=parse_list(row.get("allergies") or row.get("allergy_details")),
        pregnant=_as_bool(row.get("pregnant")),
        dob=str(row["dob"]) if row.get("dob") else None,
        sex=row.get("sex") or row.get("sex_at_birth"),
        height=str(row["height"]) if row.get("height") else None,
        weight=_num_or_none(row.get("weight")),
        energy_rating=_num_or_none(row.get("energy_rating")),
        sleep_rating=_num_or_none(row.get("sleep_rating")),
        dosing_pref=row.get("dosing_pref"),
        brand_pref=row.get("brand_pref"),
        tier=(row.get("tier") or "free").lower(),
    )


class PostgresIntakeLoader:
    """Reads submissions and their child tables from Postgres."""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn

    def ensure_configured(self) -> None:
        resolve_dsn(self.dsn)

    def fetch(self, submission_id: str) -> Submission:
        if not submission_id:
            raise ValueError("submission_id is required")

        with get_db_connection(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM submissions WHERE id = %s", (submission_id,))
                row = cur.fetchone()
                if not row:
                    raise SubmissionNotFound(f"Submission {submission_id} not found")

                children = {}
                for table in ("submission_medications", "submission_supplements", "submission_hormones"):
                    cur.execute(f"SELECT * FROM {table} WHERE submission_id = %s", (submission_id,))
                    children[table] = [dict(r) for r in cur.fetchall()]

        LOG.debug(
            f"Loaded submission {submission_id}: "
            f"{len(children['submission_medications'])} meds, "
            f"{len(children['submission_supplements'])} supplements, "
            f"{len(children['submission_hormones'])} hormones"
        )
        return normalize_submission(
            dict(row),
            children["submission_medications"],
            children["submission_supplements"],
            children["submission_hormones"],
        )
