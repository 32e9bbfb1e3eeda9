"""
Database writer for generated stacks.

Upserts the parent ``stacks`` row by submission_id and replaces the child
``stacks_items`` rows inside one transaction, so readers never observe a
half-written item set.
"""
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from .config import ConfigurationError
from .markdown_parser import is_noise_name
from .types import SaveResult, Stack, StackItem
from .utils import normalize_name

LOG = logging.getLogger("lve360.db_writer")

DSN_ENV = "LVE360_DB_DSN"


def resolve_dsn(dsn: Optional[str] = None) -> str:
    dsn = dsn or os.environ.get(DSN_ENV)
    if not dsn:
        raise ConfigurationError(f"{DSN_ENV} environment variable not set")
    return dsn


def get_db_connection(dsn: Optional[str] = None) -> psycopg.Connection:
    """
    Get database connection using DSN from environment or provided parameter.
    """
    dsn = resolve_dsn(dsn)
    try:
        return psycopg.connect(dsn, row_factory=dict_row)
    except Exception as e:
        LOG.error(f"Failed to connect to database: {e}")
        raise


ITEM_COLUMNS = (
    "stack_id", "submission_id", "user_email", "name", "dose", "dose_amount", "dose_unit",
    "timing", "timing_text", "timing_bucket", "is_current", "rationale", "caution",
    "citations", "cost_estimate", "link_budget", "link_trusted", "link_clean",
    "link_default", "link_specialty_pharmacy", "link_other", "link_primary",
)


def prepare_item_rows(items: List[StackItem]) -> Tuple[List[StackItem], int]:
    """Drop items whose normalized name is empty or a placeholder."""
    keep = []
    skipped = 0
    for item in items:
        if not normalize_name(item.name) or is_noise_name(item.name):
            LOG.warning(f"Skipping item with placeholder name: {item.name!r}")
            skipped += 1
            continue
        keep.append(item)
    return keep, skipped


def item_row(stack_id: str, stack: Stack, item: StackItem) -> Tuple[Any, ...]:
    return (
        stack_id,
        stack.submission_id,
        stack.user_email,
        item.name,
        item.dose,
        item.dose_parsed.amount,
        item.dose_parsed.unit,
        item.timing,
        item.timing_text,
        item.timing_bucket,
        item.is_current,
        item.rationale,
        item.caution,
        Jsonb(item.citations) if item.citations else None,
        item.cost_estimate,
        item.link_variants.budget,
        item.link_variants.trusted,
        item.link_variants.clean,
        item.link_variants.default,
        item.chosen_links.specialty_pharmacy,
        item.chosen_links.other,
        item.chosen_links.primary_marketplace,
    )


class PostgresStackWriter:
    """Persists a stack and its items; ``save`` never raises."""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn

    def ensure_configured(self) -> None:
        resolve_dsn(self.dsn)

    def save(self, stack: Stack, items: List[StackItem]) -> SaveResult:
        rows, skipped = prepare_item_rows(items)
        placeholders = ", ".join(["%s"] * len(ITEM_COLUMNS))

        try:
            with get_db_connection(self.dsn) as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        cur.execute("""
                            INSERT INTO stacks (
                                submission_id, user_email, generation_id, model_used,
                                prompt_tokens, completion_tokens, total_tokens,
                                safety_status, validation_passed, total_monthly_cost,
                                summary
                            ) VALUES (
                                %s, %s, %s, %s,
                                %s, %s, %s,
                                %s, %s, %s,
                                %s
                            )
                            ON CONFLICT (submission_id) DO UPDATE SET
                                user_email = EXCLUDED.user_email,
                                generation_id = EXCLUDED.generation_id,
                                model_used = EXCLUDED.model_used,
                                prompt_tokens = EXCLUDED.prompt_tokens,
                                completion_tokens = EXCLUDED.completion_tokens,
                                total_tokens = EXCLUDED.total_tokens,
                                safety_status = EXCLUDED.safety_status,
                                validation_passed = EXCLUDED.validation_passed,
                                total_monthly_cost = EXCLUDED.total_monthly_cost,
                                summary = EXCLUDED.summary,
                                updated_at = NOW()
                            RETURNING id
                        """, (
                            stack.submission_id, stack.user_email, stack.generation_id, stack.model_used,
                            stack.prompt_tokens, stack.completion_tokens, stack.total_tokens,
                            stack.safety_status, stack.validation_passed, stack.total_monthly_cost,
                            stack.summary,
                        ))
                        stack_id = str(cur.fetchone()["id"])

                        cur.execute("DELETE FROM stacks_items WHERE stack_id = %s", (stack_id,))
                        if rows:
                            cur.executemany(
                                f"INSERT INTO stacks_items ({', '.join(ITEM_COLUMNS)}) VALUES ({placeholders})",
                                [item_row(stack_id, stack, item) for item in rows],
                            )

            LOG.info(f"Saved stack {stack_id} for submission {stack.submission_id}: {len(rows)} items ({skipped} skipped)")
            return SaveResult(saved=True, stack_id=stack_id, items_inserted=len(rows), items_skipped=skipped)

        except Exception as e:
            LOG.error(f"Failed to save stack for submission {stack.submission_id}: {e}")
            return SaveResult(saved=False, items_skipped=skipped, error=str(e))


def fetch_stack_items(submission_id: str, dsn: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Persisted items for a submission, in insertion order.

    Returns an empty list when no stack exists yet.
    """
    with get_db_connection(dsn) as conn:
        with conn.cursor() as cur:
            cur.execute("""
                SELECT i.*
                FROM stacks_items i
                JOIN stacks s ON s.id = i.stack_id
                WHERE s.submission_id = %s
                ORDER BY i.id
            """, (submission_id,))
            return [dict(row) for row in cur.fetchall()]
