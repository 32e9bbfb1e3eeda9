"""
Shared type definitions for the LVE360 stack pipeline.

These types flow through every stage of stack generation (intake,
parsing, safety screening, evidence, links, persistence) so that each
stage reads and writes the same shapes.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


Timing = Literal["AM", "PM", "AM/PM"]
TimingBucket = Literal["AM", "PM", "AM/PM", "Anytime"]
SafetyStatus = Literal["safe", "warning", "error"]


# ============================================================================
# Intake
# ============================================================================

class Submission(BaseModel):
    """
    Normalized intake submission.

    Owned by the intake subsystem; the pipeline only reads it.
    """
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    goals: List[str] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list, description="Health conditions (free text)")
    medications: List[str] = Field(default_factory=list)
    supplements: List[str] = Field(default_factory=list, description="Supplements the user already takes")
    hormones: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    pregnant: bool = Field(default=False, description="Currently pregnant or breastfeeding")
    dob: Optional[str] = None
    sex: Optional[str] = None
    height: Optional[str] = None
    weight: Optional[float] = None
    energy_rating: Optional[float] = None
    sleep_rating: Optional[float] = None
    dosing_pref: Optional[str] = None
    brand_pref: Optional[str] = None
    tier: str = Field(default="free", description="Account tier (free, premium, pro)")

    class Config:
        json_schema_extra = {
            "example": {
                "id": "6f1c2a9e-3a51-4d0e-9a51-4a9f1d2f7c10",
                "email": "sam@example.com",
                "goals": ["better sleep", "energy"],
                "conditions": ["hypertension"],
                "medications": ["lisinopril"],
                "supplements": ["vitamin d"],
                "pregnant": False,
                "brand_pref": "budget brands",
                "tier": "free",
            }
        }


# ============================================================================
# Stack items
# ============================================================================

class DoseParsed(BaseModel):
    """Numeric dose; grams are always expressed as milligrams."""
    amount: Optional[float] = None
    unit: Optional[str] = None


class LinkVariants(BaseModel):
    """Marketplace link per brand-preference bucket."""
    budget: Optional[str] = None
    trusted: Optional[str] = None
    clean: Optional[str] = None
    default: Optional[str] = None

    def any(self) -> bool:
        return any([self.budget, self.trusted, self.clean, self.default])


class PartnerLinks(BaseModel):
    """Links only surfaced to paid tiers."""
    specialty_pharmacy: Optional[str] = None
    other: Optional[str] = None


class ChosenLinks(BaseModel):
    primary_marketplace: Optional[str] = None
    specialty_pharmacy: Optional[str] = None
    other: Optional[str] = None


class StackItem(BaseModel):
    """
    One recommended supplement.

    Created by the markdown parser and mutated in place by the safety
    screener (caution), the evidence resolver (name, citations) and the
    link policy (chosen_links).
    """
    name: str = Field(description="Display name; canonical after evidence resolution")
    dose: Optional[str] = None
    dose_parsed: DoseParsed = Field(default_factory=DoseParsed)
    timing: Optional[str] = Field(default=None, description="AM, PM, AM/PM or free text")
    timing_text: Optional[str] = Field(default=None, description="Timing text as written in the report")
    timing_bucket: Optional[TimingBucket] = None
    is_current: bool = Field(default=False, description="User already takes this")
    rationale: Optional[str] = None
    caution: Optional[str] = None
    citations: Optional[List[str]] = None
    cost_estimate: Optional[float] = Field(default=None, description="Estimated monthly cost in USD")
    link_variants: LinkVariants = Field(default_factory=LinkVariants)
    partner_links: PartnerLinks = Field(default_factory=PartnerLinks)
    chosen_links: ChosenLinks = Field(default_factory=ChosenLinks)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Magnesium",
                "dose": "200 mg",
                "dose_parsed": {"amount": 200, "unit": "mg"},
                "timing": "PM",
                "rationale": "Supports relaxation and sleep quality",
                "citations": ["https://pubmed.ncbi.nlm.nih.gov/23853635/"],
            }
        }


# ============================================================================
# Pipeline results
# ============================================================================

class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ValidationReport(BaseModel):
    """Per-check outcome of the structural validator."""
    checks: Dict[str, bool] = Field(default_factory=dict)
    word_count: int = 0
    table_rows: int = 0
    citation_bullets: int = 0
    missing_headings: List[str] = Field(default_factory=list)
    thin_sections: List[str] = Field(default_factory=list)
    passed: bool = False


class SafetyFlag(BaseModel):
    code: str
    severity: Literal["info", "warning", "danger"]
    item: str
    message: str
    action: Literal["remove", "caution"]


class SafetyResult(BaseModel):
    cleaned: List[StackItem] = Field(default_factory=list)
    status: SafetyStatus = "safe"
    removed: List[str] = Field(default_factory=list, description="Names of removed items")
    flags: List[SafetyFlag] = Field(default_factory=list)


class Stack(BaseModel):
    """Persisted parent aggregate, one per submission."""
    id: Optional[str] = None
    submission_id: str
    user_email: Optional[str] = None
    generation_id: str
    model_used: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    safety_status: SafetyStatus = "safe"
    validation_passed: bool = False
    total_monthly_cost: Optional[float] = None
    summary: str = Field(default="", description="Assembled narrative markdown")


class SaveResult(BaseModel):
    saved: bool = False
    stack_id: Optional[str] = None
    items_inserted: int = 0
    items_skipped: int = 0
    error: Optional[str] = None


class GenerationResult(BaseModel):
    markdown: str
    stack: Stack
    items: List[StackItem] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    validation: Optional[ValidationReport] = None
    model_used: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)
    safety_status: SafetyStatus = "safe"
    saved: bool = False
    stack_id: Optional[str] = None
    items_inserted: int = 0
