"""
Prompt orchestrator: cheap model first, stronger model if validation fails.

The attempt loop is bounded by the configured model ladder. A failed
validation or a backend error on one attempt moves on to the next model;
the final state is returned either way.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Protocol

from .config import ConfigurationError, GenerationConfig
from .llm_client import ChatResult
from .prompts import build_messages
from .types import Submission, Usage, ValidationReport
from .validation import validate_report

LOG = logging.getLogger("lve360.orchestrator")


class GenerativeBackend(Protocol):
    def ensure_configured(self) -> None: ...

    def generate(self, messages: List[dict], model: str) -> ChatResult: ...


@dataclass
class Attempt:
    model: str
    ok: bool
    usage: Usage = field(default_factory=Usage)
    validation: Optional[ValidationReport] = None
    error: Optional[str] = None


@dataclass
class OrchestrationOutcome:
    text: str = ""
    model_used: Optional[str] = None
    usage: Usage = field(default_factory=Usage)
    validation: Optional[ValidationReport] = None
    attempts: List[Attempt] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return bool(self.validation and self.validation.passed)

    @property
    def backend_failed(self) -> bool:
        """True when no attempt produced any text."""
        return not self.text.strip()


class PromptOrchestrator:
    def __init__(self, backend: GenerativeBackend, config: GenerationConfig):
        self.backend = backend
        self.config = config

    def run(self, submission: Submission, today: Optional[date] = None) -> OrchestrationOutcome:
        messages = build_messages(submission, self.config.validator, today)
        outcome = OrchestrationOutcome()

        for model in self.config.models.attempts():
            try:
                result = self.backend.generate(messages, model)
            except ConfigurationError:
                raise
            except Exception as e:
                LOG.warning(f"Model {model} failed for submission {submission.id}: {type(e).__name__}: {e}")
                outcome.attempts.append(Attempt(model=model, ok=False, error=str(e)))
                continue

            report = validate_report(result.text, self.config.validator)
            outcome.usage = outcome.usage + result.usage
            outcome.attempts.append(Attempt(model=result.model, ok=True, usage=result.usage, validation=report))
            LOG.info(
                f"Model {result.model} tokens={result.usage.total_tokens} "
                f"validation={'pass' if report.passed else 'fail'} checks={report.checks}"
            )

            # A later attempt only replaces earlier text when it produced something
            if result.text.strip() or not outcome.text:
                outcome.text = result.text
                outcome.model_used = result.model
                outcome.validation = report

            if report.passed:
                break

        if not outcome.passed:
            LOG.warning(f"Draft validation failed for submission {submission.id}; salvaging")
        return outcome
