"""Filter out CMRA locations and order the rest residential-first."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .models import AddressResult, DispatchResult, Failed, Rejected, Verified


def rank(results: Iterable[AddressResult]) -> List[AddressResult]:
    """Non-CMRA verified addresses, residential first, then catalog order.

    Entries whose provider-normalized address repeats an earlier one are dropped.
    """
    kept = [
        r for r in results
        if isinstance(r.outcome, Verified) and not r.outcome.is_cmra
    ]
    kept.sort(key=lambda r: (not r.outcome.is_residential, r.index))

    seen = set()
    ranked: List[AddressResult] = []
    for r in kept:
        key = r.outcome.normalized_address or r.address.key()
        if key in seen:
            continue
        seen.add(key)
        ranked.append(r)
    return ranked


@dataclass
class Tally:
    total: int = 0
    verified: int = 0
    cmra: int = 0
    residential: int = 0
    commercial: int = 0  # includes addresses with no residential indicator
    rejected: int = 0
    failed: Dict[str, int] = field(default_factory=dict)
    unprocessed: int = 0
    duplicates: int = 0
    exhausted_credentials: int = 0
    stop_reason: Optional[str] = None

    @property
    def failed_total(self) -> int:
        return sum(self.failed.values())


def tally(result: DispatchResult) -> Tally:
    """Diagnostic counts for a run."""
    t = Tally(
        total=len(result.results) + len(result.unprocessed),
        unprocessed=len(result.unprocessed),
        duplicates=result.duplicates,
        exhausted_credentials=result.exhausted_credentials,
        stop_reason=result.stop_reason,
    )
    failed: Counter = Counter()
    for r in result.results:
        outcome = r.outcome
        if isinstance(outcome, Verified):
            t.verified += 1
            if outcome.is_cmra:
                t.cmra += 1
            elif outcome.is_residential:
                t.residential += 1
            else:
                t.commercial += 1
        elif isinstance(outcome, Rejected):
            t.rejected += 1
        elif isinstance(outcome, Failed):
            failed[outcome.cause.value] += 1
    t.failed = dict(failed)
    return t
