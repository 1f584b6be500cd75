#!/usr/bin/env python3
"""
Tests for status aggregation (tools/aggregate_status.py)

Run: python -m pytest tests/test_aggregate_status.py -q
"""

import itertools
import sys
from fractions import Fraction
from pathlib import Path

# Ensure tools/ is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "tools"))

from aggregate_status import STATUS_WEIGHTS, aggregate_status, status_weight
from build_content_graph import build_content_graph
from parse_frontmatter import Document


def _make_chapter(part, chapter, status):
    return Document(path=f"content/chapters/part{part}/chapter-{chapter:02d}.md",
                    title=f"Chapter {chapter}", status=status, part=part, chapter=chapter)


def _make_appendix(letter, status):
    return Document(path=f"content/appendices/appendix-{letter.lower()}.md",
                    title=f"Appendix {letter}", status=status, appendix_id=letter)


def _summary(docs):
    return aggregate_status(build_content_graph(docs))


class TestWeights:
    def test_weights(self):
        assert STATUS_WEIGHTS == {
            "complete": Fraction(1),
            "revised": Fraction(66, 100),
            "draft": Fraction(33, 100),
            "planned": Fraction(0),
        }

    def test_unknown_status_weighs_nothing(self):
        assert status_weight("wip") == 0


class TestAggregateStatus:
    def test_single_part_mean(self):
        s = _summary([_make_chapter(1, 1, "complete"), _make_chapter(1, 2, "draft")])
        assert s.part_percent(1) == 66.5
        assert s.overall == 66.5

    def test_all_revised(self):
        s = _summary([_make_chapter(1, n, "revised") for n in (1, 2, 3)])
        assert s.part_percent(1) == 66.0

    def test_rounding_to_two_places(self):
        s = _summary([
            _make_chapter(1, 1, "complete"),
            _make_chapter(1, 2, "complete"),
            _make_chapter(1, 3, "draft"),
        ])
        assert s.part_percent(1) == 77.67

    def test_parts_reported_separately(self):
        s = _summary([
            _make_chapter(1, 1, "complete"),
            _make_chapter(2, 1, "planned"),
            _make_chapter(2, 2, "complete"),
        ])
        assert s.parts == ((1, 100.0), (2, 50.0))
        assert s.part_percent(3) is None
        assert s.overall == 66.67

    def test_missing_chapter_not_in_denominator(self):
        s = _summary([_make_chapter(1, n, "complete") for n in (1, 2, 4)])
        assert s.part_percent(1) == 100.0

    def test_stub_counts_as_planned(self):
        s = _summary([_make_chapter(1, 1, "complete"), _make_chapter(1, 2, "planned")])
        assert s.part_percent(1) == 50.0

    def test_appendices_count_once_each(self):
        s = _summary([
            _make_chapter(1, 1, "complete"),
            _make_appendix("A", "planned"),
            _make_appendix("B", "draft"),
        ])
        assert s.appendix_count == 2
        assert s.appendices == 16.5
        assert s.overall == 44.33
        assert s.document_count == 3

    def test_status_counts(self):
        s = _summary([
            _make_chapter(1, 1, "complete"),
            _make_chapter(1, 2, "draft"),
            _make_chapter(1, 3, "draft"),
        ])
        assert dict(s.status_counts) == {"planned": 0, "draft": 2, "revised": 0, "complete": 1}

    def test_empty_book(self):
        s = _summary([])
        assert s.parts == ()
        assert s.overall == 0.0
        assert s.appendices == 0.0
        assert s.document_count == 0

    def test_deterministic_across_input_order(self):
        docs = [
            _make_chapter(1, 1, "draft"),
            _make_chapter(1, 2, "revised"),
            _make_chapter(2, 1, "complete"),
            _make_appendix("A", "draft"),
        ]
        summaries = {_summary(list(p)) for p in itertools.permutations(docs)}
        assert len(summaries) == 1

    def test_to_dict(self):
        d = _summary([_make_chapter(1, 1, "complete"), _make_appendix("A", "planned")]).to_dict()
        assert d["parts"] == {"1": 100.0}
        assert d["appendices"] == 0.0
        assert d["overall"] == 50.0
        assert d["status_counts"]["complete"] == 1
