"""Roll document status up into part-level and book-level completion.

Weights: complete 1.0, revised 0.66, draft 0.33, planned 0.

Every chapter and appendix counts once, regardless of length or estimated
read time. A chapter number with no file does not exist yet and is not in
any denominator; a frontmatter-only stub is an ordinary ``planned``
document and counts as 0%.

Arithmetic is exact (Fraction) over a sorted input and rounded once at the
end, so the same document set always yields identical percentages.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from fractions import Fraction

from parse_frontmatter import STATUSES

STATUS_WEIGHTS = {
    "complete": Fraction("1.0"),
    "revised": Fraction("0.66"),
    "draft": Fraction("0.33"),
    "planned": Fraction(0),
}
PERCENT_DECIMALS = 2


@dataclass(frozen=True)
class CompletionSummary:
    parts: tuple[tuple[int, float], ...]
    appendices: float
    overall: float
    status_counts: tuple[tuple[str, int], ...]
    document_count: int
    appendix_count: int

    def part_percent(self, number: int) -> float | None:
        for n, pct in self.parts:
            if n == number:
                return pct
        return None

    def to_dict(self) -> dict:
        return {
            "parts": {str(n): pct for n, pct in self.parts},
            "appendices": self.appendices,
            "overall": self.overall,
            "status_counts": dict(self.status_counts),
            "document_count": self.document_count,
            "appendix_count": self.appendix_count,
        }


def status_weight(status: str) -> Fraction:
    return STATUS_WEIGHTS.get(status, Fraction(0))


def _percent(weights: list[Fraction]) -> float:
    if not weights:
        return 0.0
    mean = sum(weights, Fraction(0)) / len(weights)
    return round(float(mean * 100), PERCENT_DECIMALS)


def aggregate_status(graph) -> CompletionSummary:
    """Compute completion for a build_content_graph.ContentGraph."""
    parts = []
    for part in sorted(graph.parts, key=lambda p: p.number):
        weights = [status_weight(d.status) for d in sorted(part.chapters, key=lambda d: d.chapter)]
        parts.append((part.number, _percent(weights)))

    appendices = sorted(graph.appendices, key=lambda d: d.appendix_id)
    appendix_weights = [status_weight(d.status) for d in appendices]

    all_docs = sorted(graph.documents(), key=lambda d: d.path)
    overall = _percent([status_weight(d.status) for d in all_docs])

    counts = Counter(d.status for d in all_docs)
    return CompletionSummary(
        parts=tuple(parts),
        appendices=_percent(appendix_weights),
        overall=overall,
        status_counts=tuple((s, counts.get(s, 0)) for s in STATUSES),
        document_count=len(all_docs),
        appendix_count=len(appendices),
    )
