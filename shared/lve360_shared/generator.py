"""
Stack generator: the end-to-end pipeline for one submission.

intake -> orchestrator (model ladder + validator) -> parser -> safety screen
-> evidence + links -> report assembly -> persistence

Every collaborator is injected so the pipeline can run against fakes.
"""
import logging
import uuid
from datetime import date
from typing import List, Optional, Protocol

from .config import GenerationConfig
from .evidence import EvidenceIndex, resolve_evidence
from .guardrails import GuardrailScreener, PostgresInteractionRules, screening_profile
from .links import ProductCatalog, StaticProductCatalog, apply_link_policy, attach_catalog
from .llm_client import ChatBackend
from .markdown_parser import parse_markdown_to_items
from .orchestrator import GenerativeBackend, PromptOrchestrator
from .report import assemble_report
from .types import GenerationResult, SafetyResult, SaveResult, Stack, StackItem, Submission

LOG = logging.getLogger("lve360.generator")


class IntakeLoader(Protocol):
    def fetch(self, submission_id: str) -> Submission: ...


class SafetyScreener(Protocol):
    def check(self, profile: dict, items: List[StackItem]) -> SafetyResult: ...


class StackWriter(Protocol):
    def save(self, stack: Stack, items: List[StackItem]) -> SaveResult: ...


def _ensure_configured(*collaborators) -> None:
    for c in collaborators:
        check = getattr(c, "ensure_configured", None)
        if check is not None:
            check()


class StackGenerator:
    def __init__(
        self,
        loader: IntakeLoader,
        backend: GenerativeBackend,
        screener: SafetyScreener,
        evidence_index: EvidenceIndex,
        catalog: ProductCatalog,
        writer: StackWriter,
        config: GenerationConfig,
    ):
        self.loader = loader
        self.backend = backend
        self.screener = screener
        self.evidence_index = evidence_index
        self.catalog = catalog
        self.writer = writer
        self.config = config
        self.orchestrator = PromptOrchestrator(backend, config)

    def _screen(self, submission: Submission, items: List[StackItem]) -> SafetyResult:
        try:
            return self.screener.check(screening_profile(submission), items)
        except Exception as e:
            LOG.error(f"Safety screen failed for submission {submission.id}: {e}")
            return SafetyResult(cleaned=items, status="error")

    def generate(self, submission_id: str, today: Optional[date] = None) -> GenerationResult:
        """
        Generate, screen, enrich and persist a stack for ``submission_id``.

        Raises:
            ValueError: empty submission_id
            ConfigurationError: backend or database not configured
            SubmissionNotFound: unknown submission
        """
        if not submission_id or not str(submission_id).strip():
            raise ValueError("submission_id is required")
        _ensure_configured(self.backend, self.loader, self.writer)

        submission = self.loader.fetch(submission_id)
        LOG.info(f"Generating stack for submission {submission_id} (tier={submission.tier})")

        outcome = self.orchestrator.run(submission, today)

        if outcome.backend_failed:
            LOG.error(f"Backend produced no text for submission {submission_id}; using fallback document")
            items: List[StackItem] = []
            removed: List[str] = []
            status = "warning"
        else:
            parsed = parse_markdown_to_items(outcome.text)
            LOG.info(f"Parsed {len(parsed)} items from draft")
            safety = self._screen(submission, parsed)
            items, removed, status = safety.cleaned, safety.removed, safety.status

        items = resolve_evidence(items, self.evidence_index, self.config.evidence)
        items = attach_catalog(items, self.catalog, self.config.links.amazon_tag)
        items = apply_link_policy(items, submission.brand_pref, submission.tier, self.config.links.paid_tiers)

        markdown = assemble_report(outcome.text, items, removed, self.config.evidence, submission)

        costs = [i.cost_estimate for i in items if i.cost_estimate is not None]
        stack = Stack(
            submission_id=submission.id,
            user_email=submission.email,
            generation_id=str(uuid.uuid4()),
            model_used=outcome.model_used,
            prompt_tokens=outcome.usage.prompt_tokens,
            completion_tokens=outcome.usage.completion_tokens,
            total_tokens=outcome.usage.total_tokens,
            safety_status=status,
            validation_passed=outcome.passed,
            total_monthly_cost=round(sum(costs), 2) if costs else None,
            summary=markdown,
        )

        saved = self.writer.save(stack, items)
        if saved.saved:
            stack.id = saved.stack_id
        else:
            LOG.warning(f"Stack for submission {submission_id} was not persisted: {saved.error}")

        return GenerationResult(
            markdown=markdown,
            stack=stack,
            items=items,
            removed=removed,
            validation=outcome.validation,
            model_used=outcome.model_used,
            usage=outcome.usage,
            safety_status=status,
            saved=saved.saved,
            stack_id=saved.stack_id,
            items_inserted=saved.items_inserted,
        )


def build_default_generator(config: Optional[GenerationConfig] = None) -> StackGenerator:
    """Production wiring: Postgres intake, interaction rules and writer, OpenAI-compatible backend."""
    from .db_writer import PostgresStackWriter
    from .intake import PostgresIntakeLoader

    config = config or GenerationConfig.load()
    backend = ChatBackend(
        timeout_s=config.models.timeout_s,
        temperature=config.models.temperature,
        max_tokens=config.models.max_tokens,
    )
    return StackGenerator(
        loader=PostgresIntakeLoader(),
        backend=backend,
        screener=GuardrailScreener(PostgresInteractionRules()),
        evidence_index=EvidenceIndex.from_json(config.evidence.index_path),
        catalog=StaticProductCatalog.from_json(config.links.catalog_path),
        writer=PostgresStackWriter(),
        config=config,
    )
