import pytest

from lve360_shared.config import ConfigurationError, GenerationConfig, require_env
from lve360_shared.utils import PROJECT_ROOT, clean_name, normalize_name


def test_load_shipped_config(monkeypatch):
    monkeypatch.delenv("LVE360_MODEL_LADDER", raising=False)
    monkeypatch.delenv("AMAZON_ASSOCIATES_TAG", raising=False)
    cfg = GenerationConfig.load(PROJECT_ROOT / "config" / "generation.yml")
    assert cfg.models.attempts() == ["gpt-4o-mini", "gpt-4o"]
    assert cfg.validator.min_words == 1800
    assert cfg.validator.min_table_rows == 10
    assert cfg.evidence.min_bullets == 8
    assert cfg.evidence.index_path.exists()
    assert cfg.links.catalog_path.exists()
    assert cfg.links.paid_tiers == ["premium", "pro"]
    assert cfg.links.amazon_tag == "lve360-20"


def test_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "gen.yml"
    path.write_text("models:\n  ladder: [a, b]\n  max_passes: 1\nvalidator:\n  min_words: 500\n")
    monkeypatch.setenv("LVE360_CONFIG", str(path))
    monkeypatch.setenv("LVE360_MODEL_LADDER", "m1, m2,m3")
    monkeypatch.setenv("AMAZON_ASSOCIATES_TAG", "other-21")

    cfg = GenerationConfig.load()
    assert cfg.models.ladder == ["m1", "m2", "m3"]
    assert cfg.models.attempts() == ["m1"]
    assert cfg.validator.min_words == 500
    assert cfg.validator.min_citations == 8
    assert cfg.links.amazon_tag == "other-21"


def test_missing_config_fails_fast(tmp_path):
    with pytest.raises(ConfigurationError):
        GenerationConfig.load(tmp_path / "nope.yml")


def test_require_env(monkeypatch):
    monkeypatch.delenv("LVE360_TEST_VAR", raising=False)
    with pytest.raises(ConfigurationError):
        require_env("LVE360_TEST_VAR")
    monkeypatch.setenv("LVE360_TEST_VAR", " value ")
    assert require_env("LVE360_TEST_VAR") == "value"


def test_name_helpers():
    assert clean_name("**Omega-3**  ") == "Omega-3"
    assert normalize_name("**Omega-3 (EPA/DHA)**") == "omega 3 epa dha"
    assert normalize_name("") == ""
