#!/usr/bin/env python3
"""Frontmatter parser: per-file metadata extraction and validation.

Each content file starts with a YAML block delimited by ``---`` lines,
followed by the Markdown body:

    ---
    title: "Writing Your First Driver"
    status: draft
    part: 2
    chapter: 6
    lastUpdated: 2025-08-30
    ---
    # Writing Your First Driver
    ...

Rules:
  - A missing or unterminated block, invalid YAML, or a value that cannot be
    coerced to its declared type raises MalformedFrontmatter.
  - A missing ``title`` or ``status`` raises MissingRequiredField.
  - Unknown keys are kept verbatim in ``Document.extra``.
  - An unknown ``status`` is normalised to ``planned`` with a warning.
  - part/chapter/appendix/locale are inferred from the directory layout
    when the frontmatter omits them; explicit values always win.

Usage:
  python tools/parse_frontmatter.py content/chapters/part1/chapter-01.md [...]
"""

from __future__ import annotations

import argparse
import re
import sys
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from types import MappingProxyType

import jsonschema
import yaml

from book_errors import MalformedFrontmatter, MissingRequiredField, StructuralError
from build_report import ValidationResult

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STATUSES = ("planned", "draft", "revised", "complete")
DEFAULT_STATUS = "planned"
CANONICAL_LOCALE = "en"
LOCALE_PATTERN = re.compile(r"^[a-z]{2}(_[A-Z]{2})?$")

# Frontmatter key (as written by authors) -> Document field.
KEY_ALIASES = {
    "title": "title",
    "description": "description",
    "author": "author",
    "reviewer": "reviewer",
    "translator": "translator",
    "status": "status",
    "part": "part",
    "chapter": "chapter",
    "appendix": "appendix_id",
    "appendixId": "appendix_id",
    "appendix_id": "appendix_id",
    "locale": "locale",
    "language": "locale",
    "lang": "locale",
    "lastUpdated": "last_updated",
    "last_updated": "last_updated",
    "date": "last_updated",
    "estimatedReadTime": "estimated_read_time",
    "estimated_read_time": "estimated_read_time",
    "readTime": "estimated_read_time",
}
# When several aliases are present, the first one listed here wins.
ALIAS_PRIORITY = {
    "last_updated": ("lastUpdated", "last_updated", "date"),
    "appendix_id": ("appendixId", "appendix_id", "appendix"),
    "locale": ("locale", "language", "lang"),
    "estimated_read_time": ("estimatedReadTime", "estimated_read_time", "readTime"),
}

TEXT_FIELDS = ("title", "description", "author", "reviewer", "translator")
INT_FIELDS = ("part", "chapter", "estimated_read_time")

FRONTMATTER_SCHEMA = {
    "type": "object",
    "required": ["title", "status"],
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "author": {"type": "string"},
        "reviewer": {"type": "string"},
        "translator": {"type": "string"},
        "status": {"enum": list(STATUSES)},
        "part": {"type": "integer", "minimum": 1},
        "chapter": {"type": "integer", "minimum": 1},
        "appendix_id": {"type": "string", "pattern": "^[A-Z]$"},
        "locale": {"type": "string", "pattern": LOCALE_PATTERN.pattern},
        "last_updated": {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}$"},
        "estimated_read_time": {"type": "integer", "minimum": 1},
    },
}

_TRANSLATION_DIR = re.compile(r"(?:^|/)translations/(?P<locale>[^/]+)/")
_PART_DIR = re.compile(r"(?:^|/)chapters/part-?(?P<part>\d+)/")
_CHAPTER_FILE = re.compile(r"(?:^|/)chapters/(?:.*/)?chapter-?(?P<chapter>\d+)[^/]*\.md$")
_APPENDIX_FILE = re.compile(r"(?:^|/)appendices/(?:.*/)?appendix-(?P<appendix>[A-Za-z])[^/]*\.md$")
_CLOSING_DELIMITERS = ("---", "...")


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Document:
    """One parsed content file."""
    path: str
    title: str
    status: str
    description: str = ""
    part: int | None = None
    chapter: int | None = None
    appendix_id: str | None = None
    locale: str = CANONICAL_LOCALE
    author: str = ""
    reviewer: str = ""
    translator: str = ""
    last_updated: date | None = None
    estimated_read_time: int | None = None
    extra: MappingProxyType = field(default_factory=lambda: MappingProxyType({}), compare=False)
    body: str = field(default="", repr=False)

    @property
    def is_appendix(self) -> bool:
        return self.appendix_id is not None

    @property
    def is_canonical(self) -> bool:
        return self.locale == CANONICAL_LOCALE

    @property
    def position(self) -> tuple:
        """Structural identity shared by a document and its translations."""
        if self.is_appendix:
            return ("appendix", self.appendix_id)
        return ("chapter", self.part, self.chapter)

    @property
    def body_line_count(self) -> int:
        return len(self.body.splitlines())

    def label(self) -> str:
        if self.is_appendix:
            return f"Appendix {self.appendix_id}"
        return f"Part {self.part} / Chapter {self.chapter}"


# ---------------------------------------------------------------------------
# Splitting and coercion
# ---------------------------------------------------------------------------

def split_frontmatter(text: str, path: str = "<string>") -> tuple[dict, str]:
    """Split raw file content into (metadata mapping, body)."""
    if text.startswith("\ufeff"):
        text = text[1:]
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        raise MalformedFrontmatter(path, "file does not start with a '---' metadata block")

    end = None
    for i in range(1, len(lines)):
        if lines[i].strip() in _CLOSING_DELIMITERS:
            end = i
            break
    if end is None:
        raise MalformedFrontmatter(path, "metadata block is not terminated")

    raw = "".join(lines[1:end])
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise MalformedFrontmatter(path, f"invalid YAML: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedFrontmatter(path, "metadata block must be a key/value mapping")

    body = "".join(lines[end + 1:])
    return data, body


def _coerce_text(value, key: str, path: str) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, date)) and not isinstance(value, bool):
        return str(value)
    raise MalformedFrontmatter(path, f"'{key}' must be text, got {type(value).__name__}")


def _coerce_status(value, key: str, path: str) -> str:
    # YAML 1.1 reads yes/no/on/off as booleans
    if isinstance(value, bool):
        return str(value).lower()
    return _coerce_text(value, key, path)


def _coerce_int(value, key: str, path: str) -> int:
    if isinstance(value, bool):
        raise MalformedFrontmatter(path, f"'{key}' must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise MalformedFrontmatter(path, f"'{key}' must be an integer, got {value!r}")


def _coerce_date(value, key: str, path: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        try:
            return date.fromisoformat(s)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise MalformedFrontmatter(path, f"'{key}' must be a date (YYYY-MM-DD), got {value!r}")


def _coerce_appendix(value, key: str, path: str) -> str:
    s = _coerce_text(value, key, path)
    if len(s) != 1 or not s.isalpha():
        raise MalformedFrontmatter(path, f"'{key}' must be a single letter, got {value!r}")
    return s.upper()


def coerce_metadata(raw: dict, path: str = "<string>") -> tuple[dict, dict]:
    """Map raw frontmatter onto Document fields.

    Returns (known_fields, extra). ``status`` is returned as written; it is
    normalised later by parse_document().
    """
    winners = {}
    for target, keys in ALIAS_PRIORITY.items():
        for k in keys:
            if raw.get(k) is not None:
                winners[target] = k
                break

    known: dict = {}
    extra: dict = {}
    for key, value in raw.items():
        key = str(key)
        target = KEY_ALIASES.get(key)
        if target is None:
            extra[key] = value
            continue
        if value is None:
            continue
        if target in winners and winners[target] != key:
            extra[key] = value
            continue

        if target in TEXT_FIELDS or target == "locale":
            known[target] = _coerce_text(value, key, path)
        elif target == "status":
            known[target] = _coerce_status(value, key, path)
        elif target in INT_FIELDS:
            known[target] = _coerce_int(value, key, path)
        elif target == "last_updated":
            known[target] = _coerce_date(value, key, path)
        elif target == "appendix_id":
            known[target] = _coerce_appendix(value, key, path)
        else:
            known[target] = value
    return known, extra


# ---------------------------------------------------------------------------
# Path inference
# ---------------------------------------------------------------------------

def relative_path(path, book_root=None) -> str:
    p = Path(path)
    if book_root is not None:
        try:
            p = p.resolve().relative_to(Path(book_root).resolve())
        except ValueError:
            pass
    return p.as_posix()


def infer_position(path: str) -> dict:
    """Infer part/chapter/appendix_id/locale from a book-relative path."""
    inferred: dict = {}
    posix = path.replace("\\", "/")
    m = _TRANSLATION_DIR.search(posix)
    if m:
        inferred["locale"] = m.group("locale")
    m = _APPENDIX_FILE.search(posix)
    if m:
        inferred["appendix_id"] = m.group("appendix").upper()
        return inferred
    m = _PART_DIR.search(posix)
    if m:
        inferred["part"] = int(m.group("part"))
    m = _CHAPTER_FILE.search(posix)
    if m:
        inferred["chapter"] = int(m.group("chapter"))
    return inferred


# ---------------------------------------------------------------------------
# Document parsing
# ---------------------------------------------------------------------------

def _schema_view(fields_: dict) -> dict:
    view = {}
    for k, v in fields_.items():
        view[k] = v.isoformat() if isinstance(v, date) else v
    return view


def parse_document(path, text: str, book_root=None, result=None) -> Document:
    """Parse one file's content into a Document.

    ``result`` (a build_report.ValidationResult) receives non-fatal warnings.
    """
    rel = relative_path(path, book_root)
    raw, body = split_frontmatter(text, rel)
    known, extra = coerce_metadata(raw, rel)

    inferred = infer_position(rel)
    is_appendix = "appendix_id" in known or (
        "appendix_id" in inferred and "part" not in known and "chapter" not in known
    )
    for key, value in inferred.items():
        if key in known:
            continue
        if is_appendix and key in ("part", "chapter"):
            continue
        if not is_appendix and key == "appendix_id":
            continue
        known[key] = value

    for required in ("title", "status"):
        if not known.get(required):
            raise MissingRequiredField(rel, required)

    status = known["status"].lower()
    if status not in STATUSES:
        if result is not None:
            result.warn(f"{rel}: unknown status '{known['status']}', treated as '{DEFAULT_STATUS}'", rel)
        status = DEFAULT_STATUS
    known["status"] = status

    try:
        jsonschema.validate(_schema_view(known), FRONTMATTER_SCHEMA)
    except jsonschema.ValidationError as e:
        where = ".".join(str(p) for p in e.absolute_path) or "frontmatter"
        raise MalformedFrontmatter(rel, f"{where}: {e.message}") from e

    has_chapter = known.get("part") is not None and known.get("chapter") is not None
    has_appendix = known.get("appendix_id") is not None
    if has_chapter == has_appendix:
        if has_chapter:
            reason = "declares both part/chapter and an appendix id"
        else:
            reason = "needs either part+chapter or an appendix id"
        raise MalformedFrontmatter(rel, reason)
    if has_appendix and (known.get("part") is not None or known.get("chapter") is not None):
        raise MalformedFrontmatter(rel, "appendices must not declare part or chapter")

    return Document(
        path=rel,
        body=body,
        extra=MappingProxyType(dict(extra)),
        **known,
    )


def load_document(path, book_root=None, result=None) -> Document:
    rel = relative_path(path, book_root)
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except UnicodeDecodeError as e:
        raise MalformedFrontmatter(rel, f"not valid UTF-8 ({e.reason})") from e
    except OSError as e:
        raise MalformedFrontmatter(rel, f"cannot be read ({e.strerror or e})") from e
    return parse_document(path, text, book_root=book_root, result=result)


def discover_documents(book_root, content_dir: str = "content",
                       translations_dir: str = "translations") -> list[Path]:
    """List every chapter/appendix Markdown file of the book, sorted."""
    root = Path(book_root)
    bases = [root / content_dir]
    tdir = root / translations_dir
    if tdir.is_dir():
        bases.extend(sorted(p for p in tdir.iterdir() if p.is_dir()))

    found: list[Path] = []
    for base in bases:
        for section in ("chapters", "appendices"):
            if (base / section).is_dir():
                found.extend((base / section).rglob("*.md"))
    return sorted(set(found))


def main():
    parser = argparse.ArgumentParser(description="Parse and validate content file frontmatter.")
    parser.add_argument("files", nargs="+", help="Markdown files to check")
    parser.add_argument("--book-root", default=".", help="Book root (for path inference)")
    args = parser.parse_args()

    result = ValidationResult()
    for fp in args.files:
        try:
            doc = load_document(fp, args.book_root, result)
        except StructuralError as e:
            result.record(e)
            continue
        print(f"{doc.path}: {doc.label()} [{doc.locale}] status={doc.status}: {doc.title}")
    print()
    print(result.summary())
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
