#!/usr/bin/env python3
"""Set up a translation: copy the canonical content tree into translations/<locale>/.

Every canonical Markdown file is copied with its relative path preserved and
its frontmatter stamped with ``locale: <code>``. Files that already exist in
the translation tree are skipped unless --force is given, so re-running the
tool only adds chapters written since the last run.

Copies keep the canonical lastUpdated date, so an untouched copy counts as a
fresh translation (and towards coverage) until the canonical file is edited
again. Translators should bump lastUpdated when a chapter is translated.

Usage:
  python tools/setup_translation.py pt_BR
  python tools/setup_translation.py de_DE --force --book-root path/to/book
"""

from __future__ import annotations

import argparse
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path

from book_config import ConfigError, load_config
from console import abort, info, warn
from link_translations import is_valid_locale, language_name
from parse_frontmatter import CANONICAL_LOCALE

_LOCALE_LINE = re.compile(r"^(locale|language|lang)\s*:")


@dataclass
class CopySummary:
    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    overwritten: list[str] = field(default_factory=list)


def stamp_locale(text: str, locale: str) -> str:
    """Set the frontmatter locale of ``text``; files without a block are unchanged."""
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return text
    for i in range(1, len(lines)):
        if lines[i].strip() in ("---", "..."):
            block = [line for line in lines[1:i] if not _LOCALE_LINE.match(line)]
            block.append(f"locale: {locale}\n")
            return lines[0] + "".join(block) + "".join(lines[i:])
    return text


def copy_content_structure(source_dir: Path, target_dir: Path, locale: str,
                           force: bool = False) -> CopySummary:
    summary = CopySummary()
    for src in sorted(source_dir.rglob("*.md")):
        rel = src.relative_to(source_dir).as_posix()
        dst = target_dir / rel
        existed = dst.exists()
        if existed and not force:
            summary.skipped.append(rel)
            continue
        dst.parent.mkdir(parents=True, exist_ok=True)
        text = src.read_text(encoding="utf-8")
        dst.write_text(stamp_locale(text, locale), encoding="utf-8")
        (summary.overwritten if existed else summary.copied).append(rel)
    return summary


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create or refresh a translation tree.")
    parser.add_argument("locale", help="ISO 639-1 code, optionally with region (pt, pt_BR)")
    parser.add_argument("-f", "--force", action="store_true",
                        help="Overwrite files that already exist in the translation tree")
    parser.add_argument("-v", "--verbose", action="store_true", help="List every file")
    parser.add_argument("--book-root", default=".", help="Book root directory")
    args = parser.parse_args(argv)

    if not is_valid_locale(args.locale):
        abort(f"Invalid language code '{args.locale}'. Use ISO 639-1 format "
              "(e.g. 'pt', 'es') or with region (e.g. 'pt_BR', 'en_US').")
    if args.locale == CANONICAL_LOCALE:
        abort(f"'{CANONICAL_LOCALE}' is the canonical language; nothing to set up.")

    root = Path(args.book_root)
    try:
        config = load_config(root)
    except ConfigError as e:
        abort(str(e))

    content = root / config.content_dir
    if not content.is_dir():
        abort(f"Content directory does not exist: {content}")

    target = root / config.translations_dir / args.locale
    print(f"[SETUP] Setting up translation for {language_name(args.locale)} ({args.locale})")
    if target.exists():
        warn(f"Language directory already exists: {target}")
    target.mkdir(parents=True, exist_ok=True)

    summary = copy_content_structure(content, target, args.locale, force=args.force)
    if args.verbose:
        for rel in summary.copied:
            info(f"copied: {rel}")
        for rel in summary.overwritten:
            info(f"overwritten: {rel}")
        for rel in summary.skipped:
            info(f"skipped (exists): {rel}")

    info(f"Language directory: {target}")
    info(f"Files copied: {len(summary.copied) + len(summary.overwritten)}")
    info(f"Files skipped (already exist): {len(summary.skipped)}")
    if summary.skipped:
        warn("Some files already existed and were skipped. Use --force to overwrite them.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
