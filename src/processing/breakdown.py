from collections import Counter
from typing import Dict, Iterable

from core.entities import CATEGORIES, Digest, WorkBreakdownEntry


def compute_work_breakdown(digests: Iterable[Digest]) -> Dict[str, WorkBreakdownEntry]:
    """
    Category -> {count, percentage} over every digest given.
    Only categories with at least one digest appear.
    """
    counts = Counter(d.category for d in digests)
    total = sum(counts.values())
    if total == 0:
        return {}

    ordered = [c for c in CATEGORIES if c in counts] + sorted(c for c in counts if c not in CATEGORIES)
    return {
        category: WorkBreakdownEntry(
            count=counts[category],
            percentage=int(counts[category] * 100 / total + 0.5),
        )
        for category in ordered
    }
