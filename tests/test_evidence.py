import json

from lve360_shared.config import EvidencePolicy
from lve360_shared.evidence import (
    EvidenceIndex,
    build_evidence_section,
    candidate_keys,
    canonical_name,
    resolve_citations,
    resolve_evidence,
)
from lve360_shared.types import StackItem
from lve360_shared.utils import PROJECT_ROOT


def test_canonical_aliases():
    assert canonical_name("Fish Oil") == "Omega-3"
    assert canonical_name("omega 3") == "Omega-3"
    assert canonical_name("Magnesium Glycinate") == "Magnesium"
    assert canonical_name("Vitamin D3") == "Vitamin D"
    assert canonical_name("Ubiquinol") == "CoQ10"
    assert canonical_name("Elderberry") is None
    assert canonical_name("Magnesium glycinate 200") is None
    assert canonical_name("Calcium + Vitamin D") is None


def test_form_qualified_name_still_finds_citations(evidence_index):
    assert candidate_keys("Magnesium glycinate 200")[0] == "magnesium glycinate"
    cites = resolve_citations(StackItem(name="Magnesium glycinate 200"), evidence_index)
    assert cites and cites[0] == "https://pubmed.ncbi.nlm.nih.gov/23853635/"


def test_combination_products_are_not_merged(evidence_index):
    items = [
        StackItem(name="Vitamin D", dose="2,000 IU"),
        StackItem(name="Calcium + Vitamin D", dose="600 mg"),
        StackItem(name="Calcium with Zinc", dose="500 mg"),
    ]
    out = resolve_evidence(items, evidence_index, EvidencePolicy())
    assert [i.name for i in out] == ["Vitamin D", "Calcium + Vitamin D", "Calcium with Zinc"]
    assert out[1].dose == "600 mg"


def test_candidate_keys_are_ordered_and_unique():
    keys = candidate_keys("Fish Oil")
    assert keys[0] == "omega 3 epa dha"
    assert "fish oil" in keys
    assert len(keys) == len(set(keys))


def test_exact_lookup_caps_citations(evidence_index):
    cites = resolve_citations(StackItem(name="Magnesium"), evidence_index, max_per_item=3)
    assert len(cites) == 3
    assert cites[0] == "https://pubmed.ncbi.nlm.nih.gov/23853635/"


def test_fuzzy_lookup():
    index = EvidenceIndex({"rhodiola rosea extract": ["https://pubmed.ncbi.nlm.nih.gov/19016404/"]})
    cites = resolve_citations(StackItem(name="Rhodiola"), index)
    assert cites == ["https://pubmed.ncbi.nlm.nih.gov/19016404/"]


def test_backend_citations_filtered(evidence_index):
    item = StackItem(
        name="Elderberry",
        citations=["https://randomblog.example/elderberry", "https://doi.org/10.1000/elder.1"],
    )
    assert resolve_citations(item, evidence_index) == ["https://doi.org/10.1000/elder.1"]


def test_no_citation_is_none(evidence_index):
    assert resolve_citations(StackItem(name="Elderberry"), evidence_index) is None
    assert resolve_citations(StackItem(name="See Dosing Notes"), evidence_index) is None
    assert resolve_citations(StackItem(name="Multivitamin"), evidence_index) is None


def test_resolve_renames_and_dedupes(evidence_index):
    items = [
        StackItem(name="Fish Oil", rationale="Heart health"),
        StackItem(name="Omega-3", dose="1 g"),
        StackItem(name="Elderberry"),
    ]
    out = resolve_evidence(items, evidence_index, EvidencePolicy())
    assert [i.name for i in out] == ["Omega-3", "Elderberry"]
    assert out[0].dose == "1 g"
    assert out[0].rationale == "Heart health"
    assert out[0].citations == ["https://pubmed.ncbi.nlm.nih.gov/30415637/"]


def test_evidence_section_is_padded():
    policy = EvidencePolicy()
    items = [StackItem(name="Omega-3", citations=["https://pubmed.ncbi.nlm.nih.gov/30415637/"])]
    section = build_evidence_section(items, policy)
    bullets = [l for l in section.split("\n") if l.startswith("- ")]
    assert len(bullets) == policy.min_bullets
    assert bullets[0] == "- Omega-3: https://pubmed.ncbi.nlm.nih.gov/30415637/"
    assert bullets[-1] == f"- Evidence pending: {policy.fallback_url}"


def test_evidence_section_without_items():
    section = build_evidence_section([], EvidencePolicy())
    bullets = [l for l in section.split("\n") if l.startswith("- ")]
    assert len(bullets) == 8
    assert not section.startswith("- ")


def test_index_from_json(tmp_path):
    path = tmp_path / "index.json"
    path.write_text(json.dumps({
        "version": "v9",
        "entries": {
            "Zinc (picolinate)": [{"url": "https://pubmed.ncbi.nlm.nih.gov/28515951/", "title": "Zinc"}],
            "NAC": ["https://pubmed.ncbi.nlm.nih.gov/29589254/"],
        },
    }))
    index = EvidenceIndex.from_json(path)
    assert index.version == "v9"
    assert len(index) == 2
    assert index.get("zinc picolinate") == ("https://pubmed.ncbi.nlm.nih.gov/28515951/",)
    assert "nac" in index


def test_shipped_index_covers_canonical_names():
    index = EvidenceIndex.from_json(PROJECT_ROOT / "config" / "evidence_index.json")
    for name in ("Omega-3", "Vitamin D", "Magnesium", "Ashwagandha", "Creatine"):
        assert resolve_citations(StackItem(name=name), index), name
