#!/usr/bin/env python3
"""Translation linker: pair canonical (en) documents with their translations.

A translation shares its canonical document's structural position
(part+chapter, or appendix id) under a different locale.

Staleness is a date heuristic only: a translation is stale when its
lastUpdated is earlier than the canonical document's. Content is not
compared, so a translation bumped without real changes looks fresh.

Checks:
  1. One file per locale+position (DuplicateTranslation, fatal)
  2. Translations without a canonical counterpart (orphans, warning)
  3. Stale translations (warning)
  4. Canonical documents without a translation, per locale (listed)

Usage:
  python tools/link_translations.py --book-root . [--locale pt_BR]
"""

from __future__ import annotations

import argparse
import sys
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from book_config import load_config
from book_errors import DuplicateTranslation, StructuralError, describe_position
from build_content_graph import ContentGraph, Part, build_content_graph
from build_report import ValidationResult
from parse_frontmatter import LOCALE_PATTERN, Document, discover_documents, load_document

LANGUAGE_NAMES = {
    "en": "English",
    "pt": "Portuguese",
    "pt_BR": "Portuguese (Brazil)",
    "es": "Spanish",
    "es_MX": "Spanish (Mexico)",
    "es_ES": "Spanish (Spain)",
    "fr": "French",
    "fr_FR": "French (France)",
    "de": "German",
    "de_DE": "German (Germany)",
    "it": "Italian",
    "it_IT": "Italian (Italy)",
    "ru": "Russian",
    "ru_RU": "Russian (Russia)",
    "zh": "Chinese",
    "zh_CN": "Chinese (Simplified)",
    "zh_TW": "Chinese (Traditional)",
    "ja": "Japanese",
    "ja_JP": "Japanese (Japan)",
    "ko": "Korean",
    "ko_KR": "Korean (South Korea)",
}


def is_valid_locale(code: str) -> bool:
    """ISO 639-1 code, optionally with a region: 'pt', 'pt_BR'."""
    return bool(code) and LOCALE_PATTERN.match(code) is not None


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TranslationStatus:
    document: Document
    stale: bool

    @property
    def locale(self) -> str:
        return self.document.locale


@dataclass(frozen=True)
class TranslationLink:
    canonical: Document
    translations: tuple[TranslationStatus, ...]

    def get(self, locale: str) -> TranslationStatus | None:
        for t in self.translations:
            if t.locale == locale:
                return t
        return None


@dataclass(frozen=True)
class StaleTranslation:
    locale: str
    path: str
    canonical_path: str
    translated_on: date
    canonical_on: date

    def __str__(self):
        return (f"{self.path} ({self.translated_on.isoformat()}) is older than "
                f"{self.canonical_path} ({self.canonical_on.isoformat()})")

    def to_dict(self) -> dict:
        return {
            "locale": self.locale,
            "path": self.path,
            "canonical_path": self.canonical_path,
            "translated_on": self.translated_on.isoformat(),
            "canonical_on": self.canonical_on.isoformat(),
        }


@dataclass(frozen=True)
class MissingTranslation:
    locale: str
    canonical_path: str
    position: tuple

    def __str__(self):
        return f"[{self.locale}] {describe_position(self.position)} ({self.canonical_path})"

    def to_dict(self) -> dict:
        return {
            "locale": self.locale,
            "canonical_path": self.canonical_path,
            "position": list(self.position),
        }


@dataclass(frozen=True)
class TranslationReport:
    links: tuple[TranslationLink, ...]
    stale: tuple[StaleTranslation, ...]
    missing: tuple[MissingTranslation, ...]
    orphaned: tuple[Document, ...]
    coverage: tuple[tuple[str, float], ...]
    locales: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "locales": list(self.locales),
            "coverage": {loc: pct for loc, pct in self.coverage},
            "stale": [s.to_dict() for s in self.stale],
            "missing": [m.to_dict() for m in self.missing],
            "orphaned": [d.path for d in self.orphaned],
        }


# ---------------------------------------------------------------------------
# Linking
# ---------------------------------------------------------------------------

def is_stale(canonical: Document, translated: Document) -> bool | None:
    """True/False by lastUpdated comparison; None if either date is unknown."""
    if canonical.last_updated is None or translated.last_updated is None:
        return None
    return translated.last_updated < canonical.last_updated


def find_duplicate_translations(documents) -> list[DuplicateTranslation]:
    by_key: dict[tuple, list[str]] = defaultdict(list)
    for d in documents:
        if d.is_canonical:
            continue
        by_key[(d.locale, d.position)].append(d.path)
    conflicts = []
    for (locale, position) in sorted(by_key, key=lambda k: (k[0], str(k[1]))):
        paths = by_key[(locale, position)]
        if len(paths) > 1:
            conflicts.append(DuplicateTranslation(locale, position, paths))
    return conflicts


def link_translations(
    graph: ContentGraph,
    translated_documents,
    locales=None,
    result: ValidationResult | None = None,
) -> TranslationReport:
    """Link every canonical document in ``graph`` to its translations.

    ``locales`` restricts linking to the given locale codes (None = all
    locales found). Raises the first DuplicateTranslation found.
    """
    wanted = set(locales) if locales is not None else None
    translated = [
        d for d in translated_documents
        if not d.is_canonical and (wanted is None or d.locale in wanted)
    ]
    conflicts = find_duplicate_translations(translated)
    if conflicts:
        raise conflicts[0]

    all_locales = sorted({d.locale for d in translated} | (wanted or set()))
    canonical_docs = graph.documents()
    canonical_positions = {d.position for d in canonical_docs}

    by_position: dict[tuple, list[Document]] = defaultdict(list)
    orphaned = []
    for d in sorted(translated, key=lambda d: (d.locale, d.path)):
        if d.position in canonical_positions:
            by_position[d.position].append(d)
        else:
            orphaned.append(d)
            if result is not None:
                result.warn(
                    f"{d.path}: orphaned translation, no canonical "
                    f"{describe_position(d.position)}", d.path,
                )

    links = []
    stale = []
    for canon in canonical_docs:
        statuses = []
        for t in by_position.get(canon.position, []):
            verdict = is_stale(canon, t)
            if verdict is None and result is not None:
                result.warn(f"{t.path}: staleness unknown, lastUpdated missing here or in "
                            f"{canon.path}", t.path)
            if verdict:
                entry = StaleTranslation(t.locale, t.path, canon.path,
                                         t.last_updated, canon.last_updated)
                stale.append(entry)
                if result is not None:
                    result.warn(f"Stale translation: {entry}", t.path, canon.path)
            statuses.append(TranslationStatus(document=t, stale=bool(verdict)))
        links.append(TranslationLink(canonical=canon, translations=tuple(statuses)))

    missing = []
    coverage = []
    for loc in all_locales:
        have = 0
        for link in links:
            if link.get(loc) is None:
                missing.append(MissingTranslation(loc, link.canonical.path, link.canonical.position))
            else:
                have += 1
        pct = round(have * 100 / len(links), 2) if links else 0.0
        coverage.append((loc, pct))

    return TranslationReport(
        links=tuple(links),
        stale=tuple(stale),
        missing=tuple(missing),
        orphaned=tuple(orphaned),
        coverage=tuple(coverage),
        locales=tuple(all_locales),
    )


def assemble_locale_graph(graph: ContentGraph, report: TranslationReport, locale: str) -> ContentGraph:
    """Graph for ``locale`` in canonical order, falling back to the canonical
    document wherever no translation exists."""
    if locale == graph.locale:
        return graph
    chosen = {}
    for link in report.links:
        t = link.get(locale)
        chosen[link.canonical.path] = t.document if t is not None else link.canonical
    parts = tuple(
        Part(number=p.number, chapters=tuple(chosen[d.path] for d in p.chapters))
        for p in graph.parts
    )
    appendices = tuple(chosen[d.path] for d in graph.appendices)
    return ContentGraph(parts=parts, appendices=appendices, locale=locale)


def main():
    parser = argparse.ArgumentParser(description="Report translation coverage and staleness.")
    parser.add_argument("--book-root", default=".", help="Book root directory")
    parser.add_argument("--locale", help="Only report this locale (e.g. pt_BR)")
    args = parser.parse_args()

    if args.locale and not is_valid_locale(args.locale):
        print(f"ERROR: invalid locale code '{args.locale}' (expected e.g. 'pt' or 'pt_BR')",
              file=sys.stderr)
        return 1

    config = load_config(args.book_root)
    result = ValidationResult()
    docs = []
    for fp in discover_documents(args.book_root, config.content_dir, config.translations_dir):
        try:
            docs.append(load_document(fp, args.book_root, result))
        except StructuralError as e:
            result.record(e)

    if result.ok:
        try:
            graph = build_content_graph(docs, numbering=config.numbering)
            report = link_translations(graph, docs, [args.locale] if args.locale else None, result)
        except StructuralError as e:
            result.record(e)
        else:
            for loc, pct in report.coverage:
                print(f"{language_name(loc)} ({loc}): {pct:.2f}% translated")
            for m in report.missing:
                print(f"  missing: {m}")

    print()
    print(result.summary())
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
