"""
Proof History
=============

Bounded ledger of proof generation outcomes with cumulative statistics.

The ledger is an immutable snapshot replaced wholesale under a lock, so
readers never observe a partially applied update. Clearing swaps in an
empty ledger; cumulative counters are kept.

Version: 0.1.0
"""

import threading
from collections import Counter
from dataclasses import dataclass, replace

from dealproof.zk.models import ProofRecord, ProofStatistics


@dataclass(frozen=True)
class _Snapshot:
    entries: tuple[ProofRecord, ...] = ()
    generated: int = 0
    generation_failures: int = 0
    generation_time_ms: int = 0
    verified: int = 0
    verification_failures: int = 0
    verification_time_ms: int = 0
    relation_usage: tuple[tuple[str, int], ...] = ()


class ProofHistory:
    """
    Thread-safe proof history.

    Usage:
        history = ProofHistory(max_entries=1000)
        history.record(record)
        recent = history.entries(limit=10)
        stats = history.statistics()
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._lock = threading.Lock()
        self._snapshot = _Snapshot()

    def record(self, record: ProofRecord) -> None:
        """Append a generation outcome, evicting the oldest entry when full."""
        with self._lock:
            current = self._snapshot
            entries = (current.entries + (record,))[-self._max_entries :]

            usage = Counter(dict(current.relation_usage))
            if record.success and record.relation is not None:
                usage[record.relation.value] += 1

            self._snapshot = replace(
                current,
                entries=entries,
                generated=current.generated + (1 if record.success else 0),
                generation_failures=current.generation_failures + (0 if record.success else 1),
                generation_time_ms=current.generation_time_ms + record.processing_time_ms,
                relation_usage=tuple(sorted(usage.items())),
            )

    def record_verification(self, valid: bool, elapsed_ms: int) -> None:
        """Count a verification outcome."""
        with self._lock:
            current = self._snapshot
            self._snapshot = replace(
                current,
                verified=current.verified + (1 if valid else 0),
                verification_failures=current.verification_failures + (0 if valid else 1),
                verification_time_ms=current.verification_time_ms + elapsed_ms,
            )

    def entries(self, limit: int | None = None) -> list[ProofRecord]:
        """
        History entries, oldest first.

        Args:
            limit: Return only the most recent ``limit`` entries
        """
        entries = self._snapshot.entries
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else ()
        return list(entries)

    def clear(self) -> None:
        """Drop all entries. Cumulative statistics are kept."""
        with self._lock:
            self._snapshot = replace(self._snapshot, entries=())

    def statistics(self) -> ProofStatistics:
        snapshot = self._snapshot

        attempts = snapshot.generated + snapshot.generation_failures
        verifications = snapshot.verified + snapshot.verification_failures

        return ProofStatistics(
            total_proofs_generated=snapshot.generated,
            total_generation_failures=snapshot.generation_failures,
            total_proofs_verified=snapshot.verified,
            total_verification_failures=snapshot.verification_failures,
            average_generation_time_ms=(
                snapshot.generation_time_ms / attempts if attempts else 0.0
            ),
            average_verification_time_ms=(
                snapshot.verification_time_ms / verifications if verifications else 0.0
            ),
            relation_usage=dict(snapshot.relation_usage),
            success_rate=snapshot.generated / attempts if attempts else 1.0,
            history_size=len(snapshot.entries),
        )

    def __len__(self) -> int:
        return len(self._snapshot.entries)
