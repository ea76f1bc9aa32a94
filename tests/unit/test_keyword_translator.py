"""
Unit tests for keyword translation.

Tests tokenization, synonym expansion, DTC detection and the mapping loader.
"""
import pytest

from diagnostic_kb.services import keyword_translator
from diagnostic_kb.services.keyword_translator import (
    DISPLAY_LIMIT,
    KEYWORD_MAPPINGS,
    KeywordSet,
    extract_dtc_codes,
    load_keyword_mappings,
    tokenize,
    translate,
    unique_tokens,
)


def test_engine_vibration_complaint():
    """Test expansion of an Indonesian vibration complaint."""
    keywords = translate("mesin bergetar saat idle")

    for expected in ("vibration", "getar", "bergetar", "getaran", "shaking", "engine", "motor"):
        assert expected in keywords
    # Raw tokens longer than two characters are kept verbatim
    for token in ("mesin", "bergetar", "saat", "idle"):
        assert token in keywords


def test_dtc_is_added_uppercased_next_to_raw_token():
    keywords = translate("P0300")
    assert "P0300" in keywords
    assert "p0300" in keywords


def test_dtc_prefix_expansion_is_lowercased():
    keywords = translate("P0300")
    assert "p0" in keywords
    assert "powertrain" in keywords
    assert "P0" not in keywords


def test_empty_query_yields_empty_set():
    assert len(translate("")) == 0
    assert len(translate("   ")) == 0


def test_none_query_yields_empty_set():
    assert len(translate(None)) == 0


def test_short_tokens_are_dropped():
    keywords = translate("xq zz qwerty")
    assert "xq" not in keywords
    assert "zz" not in keywords
    assert "qwerty" in keywords


@pytest.mark.parametrize("query", [
    "AC tidak dingin",
    "Mobil Matic susah hidup di pagi hari",
    "bunyi cit saat rem, kode C0035 dan U0100",
    "!!! ??? ...",
])
def test_translate_contains_every_long_token(query):
    keywords = translate(query)
    for token in query.lower().split():
        if len(token) > 2:
            assert token in keywords


@pytest.mark.parametrize("query", ["mesin bergetar saat idle", "P0171 boros", "AC tidak dingin", ""])
def test_translate_is_idempotent(query):
    assert translate(query) == translate(query)


def test_substring_trigger_fires_inside_other_words():
    """'ac' inside 'tracking' expands to the HVAC keywords (known imprecision)."""
    keywords = translate("tracking")
    assert "hvac" in keywords


def test_multiple_dtc_codes():
    assert extract_dtc_codes("kode p0171 dan B1234, bukan X1234") == ["P0171", "B1234"]


def test_dtc_inside_longer_token_is_detected():
    assert "P0420" in translate("error:p0420")


def test_keywords_are_deduplicated():
    keywords = translate("rem rem rem")
    assert keywords.to_list().count("rem") == 1
    assert keywords.to_list().count("brake") == 1


def test_tokenize_keeps_order_and_duplicates():
    assert tokenize("Rem dan REM bunyi") == ["rem", "dan", "rem", "bunyi"]
    assert unique_tokens("Rem dan REM bunyi") == ["rem", "dan", "bunyi"]


def test_keyword_set_preview_is_capped():
    keywords = KeywordSet(f"kw{i:02d}" for i in range(25))
    assert len(keywords) == 25
    assert keywords.preview() == [f"kw{i:02d}" for i in range(DISPLAY_LIMIT)]
    assert keywords.preview(3) == ["kw00", "kw01", "kw02"]


def test_keyword_set_equality_ignores_order():
    assert KeywordSet(["a", "b"]) == KeywordSet(["b", "a"])
    assert KeywordSet(["a", "b"]) == {"a", "b"}
    assert KeywordSet(["a"]) != KeywordSet(["a", "b"])


def test_mappings_are_read_only():
    with pytest.raises(TypeError):
        KEYWORD_MAPPINGS["new"] = ("value",)
    assert isinstance(KEYWORD_MAPPINGS["bergetar"], tuple)


def test_custom_mappings():
    keywords = translate("lampu kedip", mappings={"kedip": ("flicker",)})
    assert "flicker" in keywords
    assert "electrical" not in keywords


def test_missing_mappings_file(tmp_path, monkeypatch):
    monkeypatch.setattr(keyword_translator, "SERVICES_DIR", str(tmp_path))
    with pytest.raises(ValueError, match="not found"):
        load_keyword_mappings("missing.yaml")


def test_mappings_file_without_mappings_key(tmp_path, monkeypatch):
    (tmp_path / "bad.yaml").write_text("other: {}\n", encoding="utf-8")
    monkeypatch.setattr(keyword_translator, "SERVICES_DIR", str(tmp_path))
    with pytest.raises(ValueError, match="mappings"):
        load_keyword_mappings("bad.yaml")


def test_invalid_yaml(tmp_path, monkeypatch):
    (tmp_path / "broken.yaml").write_text("mappings: [unclosed\n", encoding="utf-8")
    monkeypatch.setattr(keyword_translator, "SERVICES_DIR", str(tmp_path))
    with pytest.raises(ValueError, match="Invalid YAML"):
        load_keyword_mappings("broken.yaml")
