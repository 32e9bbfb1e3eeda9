"""
Deterministic safety guardrails for generated stacks.

All safety logic is rule-based, not LLM-generated. The screener removes
items that must be avoided and annotates items that need caution; the
resulting status is persisted on the stack verbatim.
"""
import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple

from .db_writer import get_db_connection, resolve_dsn
from .types import SafetyFlag, SafetyResult, StackItem, Submission
from .utils import clean_name, normalize_name

LOG = logging.getLogger("lve360.guardrails")


# ============================================================================
# Supplement groups
# ============================================================================

# Rule targets expand to these name fragments (matched on word boundaries)
SUPPLEMENT_GROUPS = {
    "stimulants": ["caffeine", "guarana", "yohimbine", "synephrine", "green tea extract", "bitter orange"],
    "omega 3": ["omega", "fish oil", "krill", "epa", "dha", "cod liver"],
    "minerals": ["calcium", "iron", "magnesium", "zinc"],
    "blood thinning": ["omega", "fish oil", "garlic", "ginkgo", "vitamin e", "turmeric", "curcumin", "nattokinase"],
    "glucose lowering": ["berberine", "chromium", "cinnamon", "alpha lipoic", "bitter melon"],
    "hepatotoxic": ["kava", "green tea extract", "black cohosh", "niacin"],
    "serotonergic": ["5 htp", "st john", "same", "tryptophan"],
    "retinol": ["vitamin a", "retinol", "retinyl"],
    "uterotonic": ["dong quai", "black cohosh", "blue cohosh", "pennyroyal", "licorice"],
    "potassium sparing": ["potassium"],
}


# ============================================================================
# Contraindications
# ============================================================================

# condition -> supplements to remove
CONDITION_BLOCKS = {
    "kidney_disease": ["creatine", "potassium", "magnesium"],
    "liver_disease": ["hepatotoxic"],
    "anxiety": ["stimulants"],
    "insomnia": ["stimulants"],
    "arrhythmia": ["stimulants"],
    "bleeding_disorder": ["blood thinning"],
    "hemochromatosis": ["iron", "vitamin c"],
}

# condition -> supplements that stay, with a caution note
CONDITION_CAUTIONS = {
    "hypertension": (["stimulants", "licorice"], "Blood pressure monitoring recommended; stimulants may raise BP transiently."),
    "diabetes": (["glucose lowering"], "Monitor blood glucose; this may lower blood sugar further."),
    "gerd": (["caffeine", "fish oil"], "May worsen reflux in some people; take with food."),
    "thyroid_disease": (["iodine", "kelp", "ashwagandha"], "May affect thyroid hormone levels; check with your clinician."),
}


# ============================================================================
# Medication interactions
# ============================================================================

MEDICATION_INTERACTIONS = {
    "ssri": {
        "avoid": ["serotonergic"],
        "caution": ["stimulants"],
        "note": "Stimulants may increase anxiety or interact with serotonergic medications.",
    },
    "maoi": {
        "avoid": ["stimulants", "serotonergic", "tyramine"],
        "danger": True,
        "note": "Serious interaction risk with MAOIs.",
    },
    "anticoagulants": {
        "avoid": ["vitamin k", "ginkgo", "nattokinase"],
        "caution": ["blood thinning"],
        "note": "May increase bleeding risk; consult clinician and monitor for bruising.",
    },
    "bp_meds": {
        "avoid": ["potassium sparing"],
        "caution": ["stimulants", "licorice"],
        "note": "May alter blood pressure response. Monitor BP regularly.",
    },
    "diabetes_meds": {
        "caution": ["glucose lowering"],
        "note": "May lower blood glucose further. Monitor glucose levels.",
    },
    "thyroid_meds": {
        "caution": ["minerals", "biotin"],
        "note": "Minerals can bind thyroid meds; separate by at least 4 hours.",
    },
}

MEDICATION_CLASSES = {
    "ssri": ["fluoxetine", "sertraline", "escitalopram", "citalopram", "paroxetine", "prozac", "zoloft", "lexapro", "ssri"],
    "maoi": ["phenelzine", "tranylcypromine", "isocarboxazid", "selegiline", "nardil", "parnate", "maoi"],
    "anticoagulants": ["warfarin", "coumadin", "apixaban", "rivaroxaban", "eliquis", "xarelto", "heparin", "clopidogrel", "plavix"],
    "bp_meds": ["lisinopril", "amlodipine", "losartan", "metoprolol", "atenolol", "carvedilol", "spironolactone", "valsartan"],
    "diabetes_meds": ["metformin", "insulin", "glipizide", "glyburide", "januvia", "jardiance", "ozempic", "semaglutide"],
    "thyroid_meds": ["levothyroxine", "liothyronine", "synthroid", "armour thyroid", "thyroid"],
}

CONDITION_KEYWORDS = {
    "kidney_disease": ["kidney", "renal", "ckd", "dialysis", "nephropathy"],
    "liver_disease": ["liver", "hepatitis", "cirrhosis", "fatty liver"],
    "anxiety": ["anxiety", "panic"],
    "insomnia": ["insomnia", "trouble sleeping"],
    "arrhythmia": ["arrhythmia", "atrial fibrillation", "afib", "tachycardia", "palpitations"],
    "bleeding_disorder": ["bleeding disorder", "hemophilia", "von willebrand"],
    "hemochromatosis": ["hemochromatosis", "iron overload"],
    "hypertension": ["hypertension", "high blood pressure"],
    "diabetes": ["diabetes", "diabetic", "prediabetes", "insulin resistance"],
    "gerd": ["gerd", "acid reflux", "heartburn"],
    "thyroid_disease": ["hypothyroid", "hyperthyroid", "hashimoto", "graves", "thyroid"],
}


# ============================================================================
# Pregnancy & allergies
# ============================================================================

PREGNANCY_BLOCK = ["retinol", "uterotonic", "stimulants", "ashwagandha", "tongkat", "tribulus", "kava"]

ALLERGEN_SOURCES = {
    "fish": ["omega", "fish oil", "cod liver", "krill"],
    "shellfish": ["krill", "glucosamine", "chitosan"],
    "soy": ["soy", "lecithin", "phosphatidylserine"],
    "dairy": ["whey", "casein", "colostrum"],
    "milk": ["whey", "casein", "colostrum"],
    "bee": ["bee pollen", "propolis", "royal jelly"],
    "ragweed": ["echinacea", "chamomile"],
}


# ============================================================================
# Helper Functions
# ============================================================================

def _terms(targets: List[str]) -> List[str]:
    out = []
    for t in targets:
        out.extend(SUPPLEMENT_GROUPS.get(t, [t]))
    return [normalize_name(t) for t in out]


def _matches(item_key: str, targets: List[str]) -> bool:
    return any(re.search(rf"\b{re.escape(term)}\b", item_key) for term in _terms(targets) if term)


def classify(value: str, table: Dict[str, List[str]]) -> Optional[str]:
    v = normalize_name(value)
    for label, keywords in table.items():
        if any(normalize_name(kw) in v for kw in keywords):
            return label
    return None


def normalize_medication(med: str) -> str:
    """Map a medication name to a drug class ("other" when unknown)."""
    return classify(med, MEDICATION_CLASSES) or "other"


def normalize_condition(condition: str) -> str:
    return classify(condition, CONDITION_KEYWORDS) or normalize_name(condition).replace(" ", "_")


def screening_profile(submission: Submission) -> dict:
    """Cleaned name lists and flags the screener works from."""
    return {
        "medications": [clean_name(m) for m in submission.medications if clean_name(m)],
        "conditions": [clean_name(c) for c in submission.conditions if clean_name(c)],
        "allergies": [clean_name(a) for a in submission.allergies if clean_name(a)],
        "pregnant": bool(submission.pregnant),
        "dosing_pref": submission.dosing_pref,
        "brand_pref": submission.brand_pref,
    }


def profile_flags(profile: dict, item: StackItem) -> List[SafetyFlag]:
    """Pregnancy and allergy stops; these always run."""
    key = normalize_name(item.name)
    flags: List[SafetyFlag] = []

    if profile.get("pregnant") and _matches(key, PREGNANCY_BLOCK):
        flags.append(SafetyFlag(
            code="pregnancy_caution", severity="danger", item=item.name, action="remove",
            message=f"{item.name} is not recommended during pregnancy or breastfeeding.",
        ))

    for allergy in profile.get("allergies", []):
        allergy_key = normalize_name(allergy)
        sources = [allergy_key]
        for allergen, names in ALLERGEN_SOURCES.items():
            if re.search(rf"\b{allergen}\b", allergy_key):
                sources.extend(names)
        if _matches(key, sources):
            flags.append(SafetyFlag(
                code="allergy", severity="warning", item=item.name, action="remove",
                message=f"{item.name} may contain an ingredient you reported an allergy to ({allergy}).",
            ))
    return flags


def interaction_flags(profile: dict, item: StackItem) -> List[SafetyFlag]:
    """Static condition and medication tables."""
    key = normalize_name(item.name)
    flags: List[SafetyFlag] = []

    conditions = {normalize_condition(c) for c in profile.get("conditions", [])}
    for condition in sorted(conditions):
        if condition in CONDITION_BLOCKS and _matches(key, CONDITION_BLOCKS[condition]):
            flags.append(SafetyFlag(
                code=f"{condition}_contraindication", severity="warning", item=item.name, action="remove",
                message=f"{item.name} is contraindicated with {condition.replace('_', ' ')}.",
            ))
        if condition in CONDITION_CAUTIONS:
            targets, note = CONDITION_CAUTIONS[condition]
            if _matches(key, targets):
                flags.append(SafetyFlag(
                    code=f"{condition}_caution", severity="info", item=item.name, action="caution", message=note,
                ))

    med_classes = {normalize_medication(m) for m in profile.get("medications", [])}
    for med_class in sorted(med_classes):
        interaction = MEDICATION_INTERACTIONS.get(med_class)
        if not interaction:
            continue
        if _matches(key, interaction.get("avoid", [])):
            flags.append(SafetyFlag(
                code=f"{med_class}_interaction",
                severity="danger" if interaction.get("danger") else "warning",
                item=item.name, action="remove",
                message=f"Avoid with {med_class.replace('_', ' ')}: {interaction['note']}",
            ))
        elif _matches(key, interaction.get("caution", [])):
            flags.append(SafetyFlag(
                code=f"{med_class}_caution", severity="info", item=item.name, action="caution",
                message=f"{med_class.upper()}: {interaction['note']}",
            ))

    return flags


def rule_flags(profile: dict, item: StackItem, rules: List["InteractionRule"]) -> List[SafetyFlag]:
    """Flags from per-ingredient database rules whose ingredient appears in the item name."""
    key = normalize_name(item.name)
    med_classes = {normalize_medication(m) for m in profile.get("medications", [])}
    conditions = {normalize_condition(c) for c in profile.get("conditions", [])}
    flags: List[SafetyFlag] = []

    for rule in rules:
        ingredient = normalize_name(rule.ingredient)
        if not ingredient or not re.search(rf"\b{re.escape(ingredient)}\b", key):
            continue
        for column in rule.flags:
            trigger, target, code, severity, action, template, default_note = RULE_COLUMNS[column]
            if trigger == "medication" and target not in med_classes:
                continue
            if trigger == "condition" and target not in conditions:
                continue
            if trigger == "pregnancy" and not profile.get("pregnant"):
                continue
            flags.append(SafetyFlag(
                code=code, severity=severity, item=item.name, action=action,
                message=f"{template.format(name=item.name)} {rule.notes or default_note}",
            ))
    return flags


def evaluate_item(profile: dict, item: StackItem, rules: Optional[List["InteractionRule"]] = None) -> List[SafetyFlag]:
    """
    All rules that fire for one item.

    Database rules, when given and any fire for the item, replace the static
    condition and medication tables for that item.
    """
    flags = profile_flags(profile, item)
    db_flags = rule_flags(profile, item, rules) if rules else []
    if not db_flags:
        return flags + interaction_flags(profile, item)

    codes = {f.code for f in flags}
    return flags + [f for f in db_flags if f.code not in codes]


def check_stack(profile: dict, items: List[StackItem], rules: Optional[List["InteractionRule"]] = None) -> SafetyResult:
    """
    Cross-check parsed items against the user's profile.

    Returns:
        SafetyResult with the cleaned list, removed names, all flags, and a
        status: "error" if any danger-level rule fired, "warning" if anything
        was removed or annotated, else "safe".
    """
    cleaned: List[StackItem] = []
    removed: List[str] = []
    flags: List[SafetyFlag] = []

    for item in items:
        item_flags = evaluate_item(profile, item, rules)
        flags.extend(item_flags)
        if any(f.action == "remove" for f in item_flags):
            removed.append(item.name)
            continue
        notes = [f.message for f in item_flags if f.action == "caution"]
        if notes:
            existing = [item.caution] if item.caution else []
            item.caution = "; ".join(existing + notes)
        cleaned.append(item)

    if any(f.severity == "danger" for f in flags):
        status = "error"
    elif flags:
        status = "warning"
    else:
        status = "safe"

    if removed:
        LOG.info(f"Safety screen removed {len(removed)} item(s): {removed}")
    return SafetyResult(cleaned=cleaned, status=status, removed=removed, flags=flags)


# ============================================================================
# Database interaction rules
# ============================================================================

# interactions column -> (trigger, target, code, severity, action, message, default note)
RULE_COLUMNS = {
    "binds_thyroid_meds": (
        "medication", "thyroid_meds", "thyroid_spacing", "warning", "caution",
        "{name} may bind thyroid meds.", "Separate by at least 4 hours.",
    ),
    "anticoagulants_bleeding_risk": (
        "medication", "anticoagulants", "bleeding_risk", "warning", "caution",
        "{name} may increase bleeding risk.", "Monitor for bruising or bleeding.",
    ),
    "diabetes_meds_additive": (
        "medication", "diabetes_meds", "blood_sugar_additive", "warning", "caution",
        "{name} may lower blood glucose further.", "Monitor glucose levels.",
    ),
    "pregnancy_caution": (
        "pregnancy", None, "pregnancy_caution", "danger", "remove",
        "{name} is not recommended during pregnancy.", "Avoid unless prescribed.",
    ),
    "liver_disease_caution": (
        "condition", "liver_disease", "liver_caution", "warning", "remove",
        "{name} may stress the liver.", "Avoid or monitor liver enzymes.",
    ),
    "kidney_disease_caution": (
        "condition", "kidney_disease", "kidney_caution", "warning", "caution",
        "{name} may increase kidney workload.", "Stay hydrated and avoid high doses.",
    ),
}


@dataclass(frozen=True)
class InteractionRule:
    ingredient: str
    flags: Tuple[str, ...] = ()
    notes: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "InteractionRule":
        return cls(
            ingredient=row.get("ingredient") or "",
            flags=tuple(c for c in RULE_COLUMNS if row.get(c)),
            notes=(row.get("notes") or "").strip() or None,
        )


class InteractionRuleSource(Protocol):
    def rules(self) -> List[InteractionRule]: ...


class PostgresInteractionRules:
    """Rules from the ``interactions`` table, cached for ``ttl_s`` seconds."""

    def __init__(self, dsn: Optional[str] = None, ttl_s: float = 300.0):
        self.dsn = dsn
        self.ttl_s = ttl_s
        self._cache: Optional[List[InteractionRule]] = None
        self._loaded_at = 0.0

    def ensure_configured(self) -> None:
        resolve_dsn(self.dsn)

    def rules(self) -> List[InteractionRule]:
        now = time.monotonic()
        if self._cache is None or now - self._loaded_at > self.ttl_s:
            with get_db_connection(self.dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT * FROM interactions")
                    rows = cur.fetchall()
            self._cache = [InteractionRule.from_row(dict(r)) for r in rows if r.get("ingredient")]
            self._loaded_at = now
            LOG.info(f"Loaded {len(self._cache)} interaction rules")
        return self._cache


class GuardrailScreener:
    """
    Default safety screener: ``check(profile, items) -> SafetyResult``.

    With a rule source, database rules are tried first for each item and
    the static tables cover items no database rule fires for. If the source
    fails, every item is screened with the static tables.
    """

    def __init__(self, rules: Optional[InteractionRuleSource] = None):
        self.rules = rules

    def check(self, profile: dict, items: List[StackItem]) -> SafetyResult:
        db_rules = None
        if self.rules is not None:
            try:
                db_rules = self.rules.rules()
            except Exception as e:
                LOG.error(f"Interaction rules unavailable, using static rules: {e}")
        return check_stack(profile, items, db_rules)
