#!/usr/bin/env python3
"""Book build environment sanity-check.

Checks:
- Python version (>= 3.10)
- Required Python dependencies importable
- pandoc on PATH, major version >= 3
- PDF engine (xelatex by default) on PATH
- pandoc template (eisvogel by default) installed
- Book root layout: content directory, title/metadata files from book.yaml
"""

from __future__ import annotations

import argparse
import importlib
import os
import platform
import re
import shutil
import subprocess
import sys
from pathlib import Path

from book_config import BookConfig, ConfigError, load_config

MIN_PY = (3, 10)
MIN_PANDOC_MAJOR = 3
REQUIRED_MODULES = [
    ("yaml", "PyYAML"),
    ("jsonschema", "jsonschema"),
]


def find_book_root(start: Path) -> Path:
    """Find the book root by walking parents.

    The book root is the folder containing book.yaml or content/chapters/.
    """
    cur = start.resolve()
    for _ in range(8):
        if (cur / "book.yaml").exists() or (cur / "content" / "chapters").is_dir():
            return cur
        if cur.parent == cur:
            break
        cur = cur.parent
    raise SystemExit(
        "ERROR: Could not find the book root. Run from the book folder (contains book.yaml "
        "or content/chapters/), or pass --book-root."
    )


def check_python_version() -> list[str]:
    issues: list[str] = []
    if sys.version_info < MIN_PY:
        issues.append(
            f"Python >= {MIN_PY[0]}.{MIN_PY[1]} required; found {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}."
        )
    return issues


def check_import(module: str, pip_name: str) -> tuple[bool, str | None]:
    try:
        importlib.import_module(module)
        return True, None
    except ImportError as e:
        return False, f"Missing module '{module}'. Install '{pip_name}'. ({e})"


def tool_version(executable: str) -> str | None:
    """First line of ``<executable> --version``, or None if not runnable."""
    if shutil.which(executable) is None:
        return None
    try:
        res = subprocess.run([executable, "--version"], capture_output=True, text=True, timeout=30)
    except (OSError, subprocess.TimeoutExpired):
        return None
    out = (res.stdout or res.stderr).strip()
    return out.splitlines()[0] if out else ""


def parse_major_version(version_line: str) -> int | None:
    m = re.search(r"(\d+)\.\d+", version_line or "")
    return int(m.group(1)) if m else None


def find_template(name: str) -> Path | None:
    """Locate a pandoc template by name in the user data directories."""
    if not name:
        return None
    p = Path(name)
    if p.suffix and p.exists():
        return p
    homes = [Path.home() / ".local" / "share" / "pandoc", Path.home() / ".pandoc"]
    if os.environ.get("XDG_DATA_HOME"):
        homes.insert(0, Path(os.environ["XDG_DATA_HOME"]) / "pandoc")
    for home in homes:
        for suffix in (".latex", ".tex"):
            candidate = home / "templates" / f"{name}{suffix}"
            if candidate.exists():
                return candidate
    return None


def run_checks(book_root: Path, config: BookConfig) -> tuple[list[str], list[str]]:
    """Print each check as it runs; return (issues, warnings)."""
    issues: list[str] = []
    warnings: list[str] = []
    issues.extend(check_python_version())

    for mod, pip_name in REQUIRED_MODULES:
        ok, msg = check_import(mod, pip_name)
        if not ok and msg:
            issues.append(msg)

    pc = config.pandoc
    print("\nTools:")
    version = tool_version(pc.executable)
    if version is None:
        print(f"  ✗ {pc.executable}: not found")
        issues.append(f"'{pc.executable}' not found on PATH")
    else:
        print(f"  ✓ {pc.executable}: {version}")
        major = parse_major_version(version)
        if major is None or major < MIN_PANDOC_MAJOR:
            issues.append(f"pandoc {MIN_PANDOC_MAJOR}.0+ required; found '{version}'")

    engine = tool_version(pc.pdf_engine)
    if engine is None:
        print(f"  ✗ {pc.pdf_engine}: not found (PDF builds will fail)")
        issues.append(f"PDF engine '{pc.pdf_engine}' not found on PATH")
    else:
        print(f"  ✓ {pc.pdf_engine}: {engine}")

    if pc.template:
        tpl = find_template(pc.template)
        if tpl is None:
            print(f"  ✗ template '{pc.template}': not found")
            issues.append(f"pandoc template '{pc.template}' not installed "
                          "(expected under ~/.local/share/pandoc/templates/)")
        else:
            print(f"  ✓ template '{pc.template}': {tpl}")

    print("\nContent:")
    chapters = book_root / config.content_dir / "chapters"
    if chapters.is_dir():
        count = sum(1 for _ in chapters.rglob("*.md"))
        print(f"  ✓ {chapters}: {count} file(s)")
        if count == 0:
            issues.append(f"No chapter files under {chapters}")
    else:
        print(f"  ✗ {chapters}: missing")
        issues.append(f"Chapter directory not found: {chapters}")

    appendices = book_root / config.content_dir / "appendices"
    if not appendices.is_dir():
        warnings.append(f"No appendix directory: {appendices}")

    for label, rel in (("Title file", config.title_file), ("Metadata file", config.metadata_file)):
        if not rel:
            continue
        fp = book_root / rel
        if fp.exists():
            print(f"  ✓ {label}: {fp}")
        else:
            print(f"  ✗ {label}: {fp} missing")
            issues.append(f"{label} not found: {fp}")

    out_dir = book_root / config.output_dir
    if not out_dir.exists():
        warnings.append(f"Output directory does not exist, will be created: {out_dir}")
    return issues, warnings


def report(book_root: Path, config: BookConfig) -> int:
    print("Book build environment check")
    print("-" * 72)
    print(f"Book root: {book_root}")
    print(f"Python: {sys.executable}")
    print(f"Python version: {sys.version.splitlines()[0]}")
    print(f"OS: {platform.system()} {platform.release()} ({platform.platform()})")

    issues, warnings = run_checks(book_root, config)

    print("\nResult:")
    if issues:
        print("ENV CHECK: FAIL")
        for i in issues:
            print(f"- {i}")
        print("\nFix:")
        print("  python -m pip install -e .")
        print("  install pandoc 3.x, a TeX distribution with xelatex, and the eisvogel template")
        return 2
    if warnings:
        print("ENV CHECK: PASS (WARNINGS)")
        for w in warnings:
            print(f"- {w}")
    else:
        print("ENV CHECK: PASS")
    print("Next:")
    print("  build-book --all")
    return 0


def main() -> None:
    ap = argparse.ArgumentParser(description="Check the book build environment.")
    ap.add_argument("--book-root", default=None, help="Path to the book root (contains book.yaml)")
    args = ap.parse_args()

    start = Path(args.book_root) if args.book_root else Path.cwd()
    root = find_book_root(start)
    try:
        config = load_config(root)
    except ConfigError as e:
        raise SystemExit(f"ERROR: {e}")
    raise SystemExit(report(root, config))


if __name__ == "__main__":
    main()
