"""Validation findings and the per-run BuildReport.

A ValidationResult is the mutable collector a single pipeline run writes
into; BuildReport is the frozen record produced from it at the end of the
run and handed to the CLI.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

EXIT_OK = 0
EXIT_DOCUMENT_ERRORS = 1
EXIT_RENDER_FAILURES = 2


@dataclass(frozen=True)
class Finding:
    message: str
    paths: tuple[str, ...] = ()

    def __str__(self):
        return self.message

    def to_dict(self) -> dict:
        return {"message": self.message, "paths": list(self.paths)}


class ValidationResult:
    def __init__(self):
        self.errors: list[Finding] = []
        self.warnings: list[Finding] = []

    def error(self, msg: str, *paths: str):
        self.errors.append(Finding(msg, tuple(p for p in paths if p)))

    def warn(self, msg: str, *paths: str):
        self.warnings.append(Finding(msg, tuple(p for p in paths if p)))

    def record(self, exc):
        """Record a StructuralError as an error finding."""
        self.errors.append(Finding(str(exc), tuple(getattr(exc, "paths", ()))))

    @property
    def ok(self) -> bool:
        return len(self.errors) == 0

    def summary(self) -> str:
        lines = []
        if self.errors:
            lines.append(f"ERRORS ({len(self.errors)}):")
            for e in self.errors:
                lines.append(f"  ✗ {e}")
        if self.warnings:
            lines.append(f"WARNINGS ({len(self.warnings)}):")
            for w in self.warnings:
                lines.append(f"  ⚠ {w}")
        if not self.errors and not self.warnings:
            lines.append("✓ All checks passed")
        elif not self.errors:
            lines.append(f"✓ No errors ({len(self.warnings)} warnings)")
        return "\n".join(lines)


@dataclass(frozen=True)
class BuildReport:
    errors: tuple[Finding, ...] = ()
    warnings: tuple[Finding, ...] = ()
    documents_validated: tuple[str, ...] = ()
    completion: object = None      # aggregate_status.CompletionSummary
    translations: object = None    # link_translations.TranslationReport
    renders: tuple = ()            # dispatch_renders.RenderOutcome, in dispatch order
    locale: str = "en"
    aborted: bool = False
    abort_reason: str | None = None

    @classmethod
    def from_result(cls, result: ValidationResult, **kwargs) -> "BuildReport":
        return cls(errors=tuple(result.errors), warnings=tuple(result.warnings), **kwargs)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.aborted

    @property
    def render_failures(self) -> tuple:
        return tuple(r for r in self.renders if not r.ok)

    @property
    def render_successes(self) -> tuple:
        return tuple(r for r in self.renders if r.ok)

    @property
    def exit_code(self) -> int:
        if not self.ok:
            return EXIT_DOCUMENT_ERRORS
        if self.render_failures:
            return EXIT_RENDER_FAILURES
        return EXIT_OK

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "exit_code": self.exit_code,
            "locale": self.locale,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "documents_validated": list(self.documents_validated),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "completion": self.completion.to_dict() if self.completion else None,
            "translations": self.translations.to_dict() if self.translations else None,
            "renders": [r.to_dict() for r in self.renders],
        }

    def write_json(self, path):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)

    def summary(self) -> str:
        lines = [f"Documents validated: {len(self.documents_validated)}"]
        if self.completion is not None:
            lines.append("")
            lines.append("Completion:")
            for part, pct in self.completion.parts:
                lines.append(f"  Part {part}: {pct:.2f}%")
            if self.completion.appendix_count:
                lines.append(f"  Appendices: {self.completion.appendices:.2f}%")
            lines.append(f"  Overall: {self.completion.overall:.2f}%")
        if self.translations is not None and self.translations.locales:
            lines.append("")
            lines.append("Translations:")
            for loc, pct in self.translations.coverage:
                lines.append(f"  {loc}: {pct:.2f}% translated")
            for item in self.translations.stale:
                lines.append(f"  ⚠ stale: {item}")
            for item in self.translations.missing:
                lines.append(f"  · missing: {item}")
        if self.renders:
            lines.append("")
            lines.append("Renders:")
            for r in self.renders:
                if r.ok:
                    lines.append(f"  ✓ {r.fmt.upper()}: {r.artifact_path} ({r.attempts} attempt(s))")
                else:
                    lines.append(f"  ✗ {r.fmt.upper()}: {r.error} ({r.attempts} attempt(s))")
        lines.append("")
        if self.errors:
            lines.append(f"ERRORS ({len(self.errors)}):")
            for e in self.errors:
                lines.append(f"  ✗ {e}")
        if self.warnings:
            lines.append(f"WARNINGS ({len(self.warnings)}):")
            for w in self.warnings:
                lines.append(f"  ⚠ {w}")
        if self.aborted:
            lines.append(f"🛑 Build aborted: {self.abort_reason}")
        elif self.render_failures:
            lines.append(f"⚠ {len(self.render_failures)} format(s) failed to render")
        elif not self.errors:
            lines.append("✓ Build completed")
        return "\n".join(lines)
