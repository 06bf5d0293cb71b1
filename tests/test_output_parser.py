"""Tests for collaborator output parsing."""
import pytest

from deepest.errors import TransientFormatError
from deepest.services import output_parser
from deepest.services.output_parser import GradedLearning


class TestNormalize:
    def test_strips_think_block_and_code_fence(self):
        raw = '<think>planning...</think>\n```json\n["a", "b"]\n```'
        assert output_parser.normalize_output(raw) == '["a", "b"]'

    def test_leaves_plain_output(self):
        assert output_parser.normalize_output("  plain text ") == "plain text"


class TestStringLists:
    def test_feedback_requires_exactly_three(self):
        assert output_parser.parse_feedback_questions('["a?", "b?", "c?"]') == ["a?", "b?", "c?"]
        with pytest.raises(TransientFormatError):
            output_parser.parse_feedback_questions('["a?", "b?"]')

    def test_sections_reject_empty_array(self):
        with pytest.raises(TransientFormatError):
            output_parser.parse_sections("[]")

    def test_queries_truncate_to_breadth(self):
        assert output_parser.parse_queries('["q1", "q2", "q3"]', max_items=2) == ["q1", "q2"]

    def test_gaps_may_be_empty(self):
        assert output_parser.parse_gaps("[]") == []
        assert output_parser.parse_gaps('["a", "b", "c", "d"]', max_items=3) == ["a", "b", "c"]

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"sections": ["a"]}',
            '["a", 2]',
            '["a", "   "]',
            "Here are the sections: [\"a\"]",
        ],
    )
    def test_rejects_malformed_output(self, raw):
        with pytest.raises(TransientFormatError) as exc_info:
            output_parser.parse_sections(raw)
        assert exc_info.value.raw_output == raw

    def test_collapses_whitespace(self):
        assert output_parser.parse_sections('["  Key\\n Principles "]') == ["Key Principles"]


class TestLearnings:
    def test_parses_graded_learnings(self):
        raw = '[{"learning": "Fact one", "relevance": 9}, {"learning": "Fact two", "relevance": 1}]'
        assert output_parser.parse_learnings(raw) == [
            GradedLearning(text="Fact one", relevance=9),
            GradedLearning(text="Fact two", relevance=1),
        ]

    def test_empty_array_is_valid(self):
        assert output_parser.parse_learnings("[]") == []

    @pytest.mark.parametrize(
        "raw",
        [
            '["plain string"]',
            '[{"learning": "x"}]',
            '[{"learning": "x", "relevance": 11}]',
            '[{"learning": "x", "relevance": 0}]',
            '[{"learning": "x", "relevance": true}]',
            '[{"learning": "x", "relevance": "7"}]',
            '[{"learning": "", "relevance": 5}]',
        ],
    )
    def test_rejects_invalid_learnings(self, raw):
        with pytest.raises(TransientFormatError):
            output_parser.parse_learnings(raw)


class TestText:
    def test_returns_stripped_text(self):
        assert output_parser.parse_text("<think>hmm</think>  A fine title \n", kind="title") == "A fine title"

    def test_rejects_empty_text(self):
        with pytest.raises(TransientFormatError):
            output_parser.parse_text("<think>only thinking</think>", kind="conclusion")
