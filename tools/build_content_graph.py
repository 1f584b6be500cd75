#!/usr/bin/env python3
"""Content graph: order parsed documents into parts, chapters and appendices.

Checks:
  1. (part, chapter) and appendix ids are unique (fatal, names every path)
  2. Chapter numbers are contiguous from 1 (gaps are warnings)
  3. "Chapter N" / "Appendix X" references resolve (warnings). Prose does
     not name a part, so "Chapter N" resolves when any part has a chapter N

The graph is rebuilt from the current file set on every run and never
mutated afterwards.

Usage:
  python tools/build_content_graph.py --book-root . [--numbering continuous]
"""

from __future__ import annotations

import argparse
import re
import sys
from collections import defaultdict
from dataclasses import dataclass

from book_config import NUMBERING_MODES, load_config
from book_errors import DuplicateAppendix, DuplicateChapterNumber, StructuralError
from build_report import ValidationResult
from parse_frontmatter import CANONICAL_LOCALE, Document, discover_documents, load_document

CHAPTER_REF = re.compile(r"\bChapter\s+(\d+)\b")
APPENDIX_REF = re.compile(r"\bAppendix\s+([A-Z])\b")
_FENCED_CODE = re.compile(r"^(```|~~~).*?^\1[^\n]*$", re.MULTILINE | re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`\n]*`")


@dataclass(frozen=True)
class Part:
    number: int
    chapters: tuple[Document, ...]

    @property
    def chapter_numbers(self) -> tuple[int, ...]:
        return tuple(d.chapter for d in self.chapters)


@dataclass(frozen=True)
class ContentGraph:
    parts: tuple[Part, ...] = ()
    appendices: tuple[Document, ...] = ()
    locale: str = CANONICAL_LOCALE

    def chapters(self) -> tuple[Document, ...]:
        return tuple(d for p in self.parts for d in p.chapters)

    def documents(self) -> tuple[Document, ...]:
        """Every document in reading order: chapters by part, then appendices."""
        return self.chapters() + self.appendices

    def part(self, number: int) -> Part | None:
        for p in self.parts:
            if p.number == number:
                return p
        return None

    def find_chapter(self, number: int, part: int | None = None) -> list[Document]:
        return [
            d for d in self.chapters()
            if d.chapter == number and (part is None or d.part == part)
        ]

    def find_appendix(self, appendix_id: str) -> Document | None:
        for d in self.appendices:
            if d.appendix_id == appendix_id:
                return d
        return None

    def positions(self) -> set[tuple]:
        return {d.position for d in self.documents()}


def find_duplicate_positions(documents) -> list[StructuralError]:
    """Return one error per structural position claimed by several files.

    The result does not depend on input order.
    """
    by_position: dict[tuple, list[str]] = defaultdict(list)
    for d in documents:
        by_position[d.position].append(d.path)

    conflicts: list[StructuralError] = []
    for position in sorted(by_position, key=_position_sort_key):
        paths = by_position[position]
        if len(paths) < 2:
            continue
        if position[0] == "appendix":
            conflicts.append(DuplicateAppendix(position[1], paths))
        else:
            conflicts.append(DuplicateChapterNumber(position[1], position[2], paths))
    return conflicts


def _position_sort_key(position: tuple):
    if position[0] == "chapter":
        return (0, position[1], position[2], "")
    return (1, 0, 0, position[1])


def build_content_graph(
    documents,
    locale: str = CANONICAL_LOCALE,
    numbering: str = "per-part",
    result: ValidationResult | None = None,
) -> ContentGraph:
    """Assemble the ordered graph for ``locale``.

    Raises the first DuplicateChapterNumber/DuplicateAppendix found; use
    find_duplicate_positions() to report all of them.
    """
    docs = [d for d in documents if d.locale == locale]
    conflicts = find_duplicate_positions(docs)
    if conflicts:
        raise conflicts[0]

    by_part: dict[int, list[Document]] = defaultdict(list)
    appendices: list[Document] = []
    for d in docs:
        if d.is_appendix:
            appendices.append(d)
        else:
            by_part[d.part].append(d)

    parts = tuple(
        Part(number=n, chapters=tuple(sorted(by_part[n], key=lambda d: d.chapter)))
        for n in sorted(by_part)
    )
    graph = ContentGraph(
        parts=parts,
        appendices=tuple(sorted(appendices, key=lambda d: d.appendix_id)),
        locale=locale,
    )

    if result is not None:
        for msg in find_gaps(graph, numbering):
            result.warn(msg)
    return graph


def find_gaps(graph: ContentGraph, numbering: str = "per-part") -> list[str]:
    """Describe missing part, chapter and appendix numbers."""
    if numbering not in NUMBERING_MODES:
        raise ValueError(f"unknown numbering mode: {numbering!r}")
    gaps: list[str] = []

    part_numbers = [p.number for p in graph.parts]
    if part_numbers:
        missing_parts = sorted(set(range(1, max(part_numbers) + 1)) - set(part_numbers))
        for n in missing_parts:
            gaps.append(f"Part {n} has no chapters")

    if numbering == "per-part":
        for p in graph.parts:
            present = set(p.chapter_numbers)
            for n in sorted(set(range(1, max(present) + 1)) - present):
                gaps.append(f"Part {p.number}: chapter {n} is missing")
    else:
        present = {d.chapter for d in graph.chapters()}
        if present:
            for n in sorted(set(range(1, max(present) + 1)) - present):
                gaps.append(f"Chapter {n} is missing")
        previous_max = 0
        for p in graph.parts:
            if p.chapter_numbers and p.chapter_numbers[0] <= previous_max:
                gaps.append(
                    f"Part {p.number} starts at chapter {p.chapter_numbers[0]}, "
                    f"but an earlier part already reached chapter {previous_max}"
                )
            if p.chapter_numbers:
                previous_max = max(previous_max, p.chapter_numbers[-1])

    letters = [d.appendix_id for d in graph.appendices]
    if letters:
        expected = {chr(c) for c in range(ord("A"), ord(max(letters)) + 1)}
        for letter in sorted(expected - set(letters)):
            gaps.append(f"Appendix {letter} is missing")
    return gaps


def strip_code(body: str) -> str:
    """Remove fenced and inline code so code samples are not read as prose."""
    return _INLINE_CODE.sub("", _FENCED_CODE.sub("", body))


def check_cross_references(graph: ContentGraph, result: ValidationResult) -> int:
    """Warn about references to chapters/appendices absent from the graph.

    Returns the number of unresolved references.
    """
    chapter_numbers = {d.chapter for d in graph.chapters()}
    appendix_ids = {d.appendix_id for d in graph.appendices}
    unresolved = 0
    for d in graph.documents():
        prose = strip_code(d.body)
        missing_ch = sorted({int(n) for n in CHAPTER_REF.findall(prose)} - chapter_numbers)
        missing_app = sorted(set(APPENDIX_REF.findall(prose)) - appendix_ids)
        for n in missing_ch:
            result.warn(f"{d.path}: reference to Chapter {n} does not resolve", d.path)
        for a in missing_app:
            result.warn(f"{d.path}: reference to Appendix {a} does not resolve", d.path)
        unresolved += len(missing_ch) + len(missing_app)
    return unresolved


def main():
    parser = argparse.ArgumentParser(description="Build and check the book's content graph.")
    parser.add_argument("--book-root", default=".", help="Book root directory")
    parser.add_argument("--numbering", choices=NUMBERING_MODES, help="Override book.yaml numbering")
    args = parser.parse_args()

    config = load_config(args.book_root)
    numbering = args.numbering or config.numbering
    result = ValidationResult()
    docs = []
    for fp in discover_documents(args.book_root, config.content_dir, config.translations_dir):
        try:
            doc = load_document(fp, args.book_root, result)
        except StructuralError as e:
            result.record(e)
            continue
        if doc.is_canonical:
            docs.append(doc)

    for conflict in find_duplicate_positions(docs):
        result.record(conflict)
    if result.ok:
        graph = build_content_graph(docs, numbering=numbering, result=result)
        check_cross_references(graph, result)
        for p in graph.parts:
            print(f"Part {p.number}: chapters {', '.join(str(n) for n in p.chapter_numbers)}")
        if graph.appendices:
            print(f"Appendices: {', '.join(d.appendix_id for d in graph.appendices)}")

    print()
    print(result.summary())
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
