import json

import pytest

from deepest.services import prompt_store


PROMPT_VALUES = {
    "feedback.user": {"topic": "Solar Energy"},
    "sections.user": {"min_sections": 3, "max_sections": 5, "input": "{}"},
    "title.user": {"input": "{}"},
    "introduction.user": {"input": "{}"},
    "queries.user": {"breadth": 3, "gap_instruction": "", "input": "{}"},
    "queries.gap_instruction": {"gaps": '["storage"]'},
    "learnings.user": {"url": "https://example.com", "input": "{}"},
    "gaps.user": {"max_gaps": 3, "input": "{}"},
    "synthesis.user": {"input": "{}"},
    "conclusion.user": {"input": "{}"},
}

JSON_AREAS = ["feedback", "sections", "queries", "learnings", "gaps"]
TEXT_AREAS = ["title", "introduction", "synthesis", "conclusion"]


@pytest.fixture
def temp_catalog(tmp_path, monkeypatch):
    path = tmp_path / "prompts.json"
    monkeypatch.setattr(prompt_store, "PROMPTS_PATH", path)
    prompt_store.clear_prompt_cache()
    yield path
    prompt_store.clear_prompt_cache()


@pytest.mark.parametrize("key", sorted(PROMPT_VALUES))
def test_every_prompt_renders(key):
    rendered = prompt_store.render_prompt(key, **PROMPT_VALUES[key])
    assert "$" not in rendered


@pytest.mark.parametrize("area", JSON_AREAS)
def test_json_areas_pair_with_json_system_prompt(area):
    pair = prompt_store.build_request(area, **PROMPT_VALUES[f"{area}.user"])
    assert "JSON array" in pair.system
    assert pair.user == prompt_store.render_prompt(f"{area}.user", **PROMPT_VALUES[f"{area}.user"])


@pytest.mark.parametrize("area", TEXT_AREAS)
def test_text_areas_pair_with_plain_text_system_prompt(area):
    pair = prompt_store.build_request(area, input="{}")
    assert "plain text" in pair.system


def test_grammar_version_is_one():
    assert prompt_store.load_catalog()["grammar_version"] == prompt_store.GRAMMAR_VERSION == 1


def test_missing_value_names_the_prompt():
    with pytest.raises(KeyError, match="sections.user"):
        prompt_store.render_prompt("sections.user", input="{}")


def test_unknown_key_raises():
    with pytest.raises(KeyError, match="Unknown prompt"):
        prompt_store.render_prompt("nope.user")


def test_catalog_reloads_after_change(temp_catalog):
    temp_catalog.write_text(
        json.dumps({"grammar_version": 1, "demo": {"user": "Hello $name"}}), encoding="utf-8"
    )
    assert prompt_store.render_prompt("demo.user", name="there") == "Hello there"


def test_catalog_with_other_grammar_version_is_rejected(temp_catalog):
    temp_catalog.write_text(json.dumps({"grammar_version": 2}), encoding="utf-8")
    with pytest.raises(ValueError, match="grammar_version"):
        prompt_store.load_catalog()
