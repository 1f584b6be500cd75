#!/usr/bin/env python3
"""Build the book: validate every content file, then render HTML/PDF/EPUB.

Stages (each completes before the next starts):
  1. Parse and validate the frontmatter of every chapter/appendix file
  2. Check structural uniqueness (chapters, appendices, translations)
  3. Build the content graph, check cross-references, aggregate status
  4. Link translations (staleness, orphans, coverage)
  5. Render the requested formats (skipped if any structural error)

Exit codes:
  0  all requested formats built, no document errors
  1  at least one fatal document error (nothing rendered), or cancelled
  2  documents valid, but at least one format failed to render

Usage:
  python tools/build_book.py --all
  python tools/build_book.py --pdf --epub --output-dir public/downloads
  python tools/build_book.py --html --locale pt_BR --report build-report.json
  python tools/build_book.py --test
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

import console
from aggregate_status import aggregate_status
from book_config import ConfigError, load_config
from book_errors import StructuralError
from build_content_graph import build_content_graph, check_cross_references, find_duplicate_positions
from build_report import EXIT_DOCUMENT_ERRORS, BuildReport, ValidationResult
from dispatch_renders import RENDER_ORDER, PandocRenderer, dispatch_renders, normalize_formats
from link_translations import (
    assemble_locale_graph,
    find_duplicate_translations,
    is_valid_locale,
    language_name,
    link_translations,
)
from parse_frontmatter import CANONICAL_LOCALE, discover_documents, load_document

CASE_INSENSITIVE_FLAGS = {"--html", "--pdf", "--epub", "--all", "--test"}


def run_pipeline(
    book_root,
    formats=(),
    output_dir=None,
    locale: str | None = None,
    config=None,
    renderer=None,
    max_workers: int | None = None,
    cancel_event: threading.Event | None = None,
    on_event=None,
) -> BuildReport:
    """Run one full build and return its report.

    ``renderer`` defaults to a PandocRenderer; ``formats`` may be empty to
    validate only. A fresh ValidationResult is used for every call.
    """
    book_root = Path(book_root)
    config = config or load_config(book_root)
    result = ValidationResult()
    fmts = normalize_formats(formats)

    if locale is not None and not is_valid_locale(locale):
        result.error(f"Invalid locale code '{locale}' (expected e.g. 'pt' or 'pt_BR')")
        return BuildReport.from_result(result, locale=locale, aborted=True,
                                       abort_reason="invalid locale")
    target_locale = locale or CANONICAL_LOCALE
    link_locales = None if target_locale == CANONICAL_LOCALE else [target_locale]

    # 1. frontmatter
    documents = []
    for fp in discover_documents(book_root, config.content_dir, config.translations_dir):
        try:
            documents.append(load_document(fp, book_root, result))
        except StructuralError as e:
            result.record(e)
    validated = tuple(d.path for d in documents)

    canonical = [d for d in documents if d.is_canonical]
    if not canonical and result.ok:
        result.error(f"No content files found under {book_root / config.content_dir}")
    all_translated = [d for d in documents if not d.is_canonical]
    translated = [d for d in all_translated if link_locales is None or d.locale in link_locales]

    # 2. uniqueness, every conflict reported, whichever locale is built
    chapter_conflicts = find_duplicate_positions(canonical)
    for conflict in chapter_conflicts:
        result.record(conflict)
    translation_conflicts = find_duplicate_translations(all_translated)
    for conflict in translation_conflicts:
        result.record(conflict)

    # 3-4. graph, status, translations
    graph = completion = translations = None
    if canonical and not chapter_conflicts:
        graph = build_content_graph(canonical, numbering=config.numbering, result=result)
        check_cross_references(graph, result)
        completion = aggregate_status(graph)
        if not translation_conflicts:
            translations = link_translations(graph, translated, link_locales, result)

    if not result.ok:
        return BuildReport.from_result(
            result,
            documents_validated=validated,
            completion=completion,
            translations=translations,
            locale=target_locale,
            aborted=True,
            abort_reason=f"{len(result.errors)} structural error(s)",
        )

    # 5. render
    renders = ()
    cancelled = False
    if fmts:
        render_graph = graph
        if target_locale != CANONICAL_LOCALE:
            if target_locale not in translations.locales or not any(
                link.get(target_locale) for link in translations.links
            ):
                result.warn(f"No {language_name(target_locale)} translations found; "
                            "rendering canonical text")
            render_graph = assemble_locale_graph(graph, translations, target_locale)

        if renderer is None:
            renderer = PandocRenderer(config, book_root)
        skipped = getattr(renderer, "skipped_documents", None)
        if skipped is not None:
            for path in skipped(render_graph):
                result.warn(f"{path}: fewer than {config.min_render_lines} lines, "
                            "left out of rendered output", path)

        out = Path(output_dir) if output_dir else book_root / config.output_dir
        if cancel_event is None:
            cancel_event = threading.Event()
        renders = dispatch_renders(render_graph, fmts, out, renderer,
                                   max_workers=max_workers, cancel_event=cancel_event,
                                   on_event=on_event)
        cancelled = cancel_event.is_set()

    return BuildReport.from_result(
        result,
        documents_validated=validated,
        completion=completion,
        translations=translations,
        renders=renders,
        locale=target_locale,
        aborted=cancelled,
        abort_reason="cancelled" if cancelled else None,
    )


def _normalize_flag_case(argv: list[str]) -> list[str]:
    """--PDF, --Pdf and --pdf are the same flag."""
    return [a.lower() if a.lower() in CASE_INSENSITIVE_FLAGS else a for a in argv]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Validate the book sources and build it in HTML, PDF and/or EPUB.",
    )
    parser.add_argument("--html", action="store_true", help="Build HTML5")
    parser.add_argument("--pdf", action="store_true", help="Build PDF")
    parser.add_argument("--epub", action="store_true", help="Build EPUB")
    parser.add_argument("--all", action="store_true", help="Build all formats")
    parser.add_argument("--test", action="store_true",
                        help="Check that the build dependencies are installed, then exit")
    parser.add_argument("--book-root", default=".", help="Book root directory (default: .)")
    parser.add_argument("--config", help="Config file (default: <book-root>/book.yaml)")
    parser.add_argument("--output-dir", help="Output directory (default from book.yaml)")
    parser.add_argument("--locale", help="Build this translation (e.g. pt_BR)")
    parser.add_argument("--report", help="Write the build report JSON to this path")
    parser.add_argument("--log-file", help="Also append log lines to this file")
    parser.add_argument("--sequential", action="store_true",
                        help="Render formats one at a time instead of concurrently")
    argv = sys.argv[1:] if argv is None else argv
    return parser.parse_args(_normalize_flag_case(list(argv)))


def selected_formats(args) -> tuple[str, ...]:
    if args.all:
        return RENDER_ORDER
    return tuple(f for f in RENDER_ORDER if getattr(args, f))


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.log_file:
        console.set_log_file(args.log_file)

    book_root = Path(args.book_root)
    try:
        config = load_config(book_root, args.config)
    except ConfigError as e:
        console.abort(str(e))

    if args.test:
        import check_env
        return check_env.report(book_root.resolve(), config)

    cancel_event = threading.Event()

    def _handle_shutdown(signum, frame):
        if cancel_event.is_set():
            print("\n[FORCED EXIT] Exiting immediately.", flush=True)
            sys.exit(EXIT_DOCUMENT_ERRORS)
        cancel_event.set()
        print("\n[SHUTDOWN] Cancelling in-flight renders...", flush=True)

    handled = [signal.SIGINT] + ([signal.SIGTERM] if hasattr(signal, "SIGTERM") else [])
    previous = {sig: signal.signal(sig, _handle_shutdown) for sig in handled}

    formats = selected_formats(args)
    console.log("=" * 64)
    console.log(f"{config.title}: book build")
    console.log("=" * 64)
    console.log(f"Formats: {', '.join(f.upper() for f in formats) or 'none (validate only)'}")
    if args.locale:
        console.log(f"Locale: {language_name(args.locale)} ({args.locale})")

    try:
        report = run_pipeline(
            book_root,
            formats=formats,
            output_dir=args.output_dir,
            locale=args.locale,
            config=config,
            max_workers=1 if args.sequential else None,
            cancel_event=cancel_event,
            on_event=lambda fmt, msg, level="INFO": console.log(f"[{fmt.upper()}] {msg}", level),
        )
    finally:
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)

    console.log_separator("REPORT")
    print(report.summary())
    if args.report:
        report.write_json(args.report)
        console.log(f"Report written to {args.report}")
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
