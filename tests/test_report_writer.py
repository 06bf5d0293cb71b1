import pytest

from deepest.errors import PersistenceError
from deepest.models.research import ResearchData, SectionContent
from deepest.services.learning_store import SectionLearningStore
from deepest.services.report_writer import ReportWriter, render_markdown, slugify


def make_data(title="Solar Energy: Overview & Costs"):
    return ResearchData(
        topic="Solar Energy",
        title=title,
        introduction="Intro text.",
        sections=["Overview", "Costs"],
        section_content=[
            SectionContent(section="Overview", content="Overview body."),
            SectionContent(section="Costs", content="Costs body."),
        ],
        conclusion="Final words.",
        depth=2,
    )


def test_slugify():
    assert slugify("Solar Energy: Overview & Costs") == "solar-energy-overview-costs"
    assert slugify("???") == "research-report"


def test_markdown_layout():
    markdown = render_markdown(make_data())

    headings = [line for line in markdown.splitlines() if line.startswith("#")]
    assert headings == [
        "# Solar Energy: Overview & Costs",
        "## Introduction",
        "## Overview",
        "## Costs",
        "## Conclusion",
    ]
    assert "Costs body." in markdown


def test_writes_without_overwriting(tmp_path):
    writer = ReportWriter(tmp_path / "out")

    first = writer.write(make_data())
    second = writer.write(make_data())

    assert first.name == "solar-energy-overview-costs.md"
    assert second.name == "solar-energy-overview-costs-1.md"
    assert first.read_text(encoding="utf-8") == second.read_text(encoding="utf-8")


def test_unwritable_folder_raises_persistence_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")

    with pytest.raises(PersistenceError):
        ReportWriter(blocker).write(make_data())


def test_research_data_requires_content_per_section():
    with pytest.raises(ValueError):
        ResearchData(
            topic="t",
            title="t",
            introduction="i",
            sections=["A", "B"],
            section_content=[SectionContent(section="A", content="a")],
            conclusion="c",
            depth=0,
        )


class TestLearningStore:
    def test_repeated_section_appends(self):
        store = SectionLearningStore()
        store.append("Costs", ["a"])
        store.append("Costs", ["a", "b"])

        assert store.learnings_for("Costs") == ["a", "a", "b"]
        assert store.all_learnings() == ["a", "a", "b"]

    def test_section_contents_follow_plan_order(self):
        store = SectionLearningStore()
        store.set_content("B", "b")
        store.set_content("A", "a")

        contents = store.section_contents(["A", "B", "A"])

        assert [c.section for c in contents] == ["A", "B", "A"]

    def test_content_set_once(self):
        store = SectionLearningStore()
        store.set_content("A", "a")

        with pytest.raises(ValueError):
            store.set_content("A", "again")

    def test_missing_content_raises(self):
        with pytest.raises(KeyError):
            SectionLearningStore().section_contents(["A"])

    def test_clear(self):
        store = SectionLearningStore()
        store.append("A", ["x"])
        store.set_content("A", "a")

        store.clear()

        assert store.is_empty()
        assert store.learnings_for("A") == []
