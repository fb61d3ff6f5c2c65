#!/usr/bin/env python3
"""
ZK-SNARK Benchmark Script
=========================

Benchmarks proving and verification time for the card-game proofs through
the engine facade. Target: <5 seconds proving time per proof.

Usage:
    python scripts/benchmark_zk.py [--iterations N] [--proof KIND] [--backend MODE]

Requirements (snarkjs backend):
    - Node.js 18+
    - snarkjs installed globally
    - Circuits compiled into circuits/build/
"""

import argparse
import asyncio
import random
import statistics
import sys
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dealproof.config import BackendMode, get_settings
from dealproof.logging import setup_logging
from dealproof.zk import (
    CardCommitmentRequest,
    CardDealingRequest,
    CardShuffleRequest,
    DeckGenerationRequest,
    MockProvingBackend,
    SnarkjsBackend,
    ZKEngine,
    ZKError,
)
from dealproof.zk.models import ProofRequest

TARGET_TIME_MS = 5000
DEFAULT_ITERATIONS = 10


class TimingSummary(BaseModel):
    """Distribution of a set of timings in milliseconds."""

    samples: int
    min_ms: float
    max_ms: float
    mean_ms: float
    median_ms: float
    p95_ms: float

    @classmethod
    def of(cls, times: list[float]) -> "TimingSummary | None":
        if not times:
            return None
        p95 = statistics.quantiles(times, n=20)[-1] if len(times) > 1 else times[0]
        return cls(
            samples=len(times),
            min_ms=min(times),
            max_ms=max(times),
            mean_ms=statistics.mean(times),
            median_ms=statistics.median(times),
            p95_ms=p95,
        )


class BenchmarkResult(BaseModel):
    """Benchmark outcome for one proof kind."""

    proof_kind: str
    iterations: int
    failures: int
    proving: TimingSummary | None
    verification: TimingSummary | None

    @property
    def pass_target(self) -> bool:
        return self.proving is not None and self.proving.p95_ms < TARGET_TIME_MS


class BenchmarkReport(BaseModel):
    """Full benchmark run, as written by --output."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    backend: BackendMode
    target_ms: int = TARGET_TIME_MS
    results: list[BenchmarkResult]

    @property
    def all_pass(self) -> bool:
        return all(r.pass_target for r in self.results)


def _shuffled_deck() -> tuple[list[int], list[int], list[int]]:
    original = list(range(52))
    shuffled = random.sample(original, len(original))
    return original, shuffled, [original.index(card) for card in shuffled]


def deck_generation_request(i: int) -> ProofRequest:
    return DeckGenerationRequest(seed=f"bench-seed-{i:05d}", game_id=f"BENCH-GAME-{i:05d}")


def card_commitment_request(i: int) -> ProofRequest:
    return CardCommitmentRequest(
        card_value=random.randrange(52),
        nonce=random.getrandbits(248),
        game_id=f"BENCH-GAME-{i:05d}",
    )


def card_shuffle_request(i: int) -> ProofRequest:
    original, shuffled, permutation = _shuffled_deck()
    return CardShuffleRequest(
        original_deck=original,
        shuffled_deck=shuffled,
        permutation=permutation,
        game_id=f"BENCH-GAME-{i:05d}",
    )


def card_dealing_request(i: int) -> ProofRequest:
    _, shuffled, _ = _shuffled_deck()
    return CardDealingRequest(
        deck=shuffled,
        positions=random.sample(range(52), 2),
        game_id=f"BENCH-GAME-{i:05d}",
        player_id=f"BENCH-PLAYER-{i % 6}",
    )


BENCHMARKS: dict[str, Callable[[int], ProofRequest]] = {
    "deck_generation": deck_generation_request,
    "card_commitment": card_commitment_request,
    "card_shuffle": card_shuffle_request,
    "card_dealing": card_dealing_request,
}


async def benchmark(engine: ZKEngine, proof_kind: str, iterations: int) -> BenchmarkResult:
    """Generate and verify ``iterations`` proofs of one kind."""
    make_request = BENCHMARKS[proof_kind]
    proving_ms: list[float] = []
    verification_ms: list[float] = []
    failures = 0

    print(f"\n▶ {proof_kind} ({iterations} iterations)")

    for i in range(iterations):
        result = await engine.generate_proof(make_request(i))
        if not result.success or result.proof is None:
            failures += 1
            print(f"  [{i + 1}/{iterations}] ✗ {result.error_code}: {result.error}")
            continue

        start = time.perf_counter()
        valid = await engine.verify_proof(result.proof)
        verify_ms = (time.perf_counter() - start) * 1000

        if not valid:
            failures += 1
            print(f"  [{i + 1}/{iterations}] ✗ proof did not verify")
            continue

        proving_ms.append(result.processing_time_ms)
        verification_ms.append(verify_ms)
        marker = "✓" if result.processing_time_ms < TARGET_TIME_MS else "!"
        print(
            f"  [{i + 1}/{iterations}] {marker} prove {result.processing_time_ms}ms"
            f" · verify {verify_ms:.0f}ms"
        )

    return BenchmarkResult(
        proof_kind=proof_kind,
        iterations=iterations,
        failures=failures,
        proving=TimingSummary.of(proving_ms),
        verification=TimingSummary.of(verification_ms),
    )


def print_report(report: BenchmarkReport) -> None:
    header = f"{'Proof':<18} {'OK':>5} {'Prove p95':>11} {'Prove mean':>11} {'Verify p95':>11}  Status"
    print(f"\n{header}\n{'-' * len(header)}")

    for r in report.results:
        ok = r.iterations - r.failures
        prove_p95 = f"{r.proving.p95_ms:.0f}ms" if r.proving else "-"
        prove_mean = f"{r.proving.mean_ms:.0f}ms" if r.proving else "-"
        verify_p95 = f"{r.verification.p95_ms:.0f}ms" if r.verification else "-"
        status = "PASS" if r.pass_target else "FAIL"
        print(
            f"{r.proof_kind:<18} {ok:>2}/{r.iterations:<2} {prove_p95:>11} "
            f"{prove_mean:>11} {verify_p95:>11}  {status}"
        )

    print(f"\nBackend: {report.backend.value} · target <{report.target_ms}ms at p95")


def build_engine(mode: BackendMode) -> ZKEngine:
    settings = get_settings()
    if mode == BackendMode.SNARKJS:
        backend = SnarkjsBackend(
            build_dir=settings.zk.build_dir,
            command=settings.zk.snarkjs_command,
            beacon_iterations_exp=settings.zk.beacon_iterations_exp,
        )
    else:
        backend = MockProvingBackend()
    return ZKEngine(settings=settings, backend=backend)


async def main() -> int:
    parser = argparse.ArgumentParser(description="Benchmark ZK-SNARK proof generation")
    parser.add_argument(
        "--iterations",
        "-n",
        type=int,
        default=DEFAULT_ITERATIONS,
        help=f"Number of iterations (default: {DEFAULT_ITERATIONS})",
    )
    parser.add_argument(
        "--proof", "-p", choices=sorted(BENCHMARKS), help="Benchmark one proof kind only"
    )
    parser.add_argument(
        "--backend",
        "-b",
        choices=[m.value for m in BackendMode],
        help="Proving backend (default from settings)",
    )
    parser.add_argument("--output", "-o", type=Path, help="Write the report as JSON")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(log_level="WARNING", json_logs=settings.json_logs)

    mode = BackendMode(args.backend) if args.backend else settings.zk.backend
    engine = build_engine(mode)

    try:
        await engine.trusted_setup_all(participant="bench")
    except ZKError as e:
        print(f"Trusted setup failed: {e.message}")
        print("Make sure circuits are compiled into circuits/build/")
        return 1

    kinds = [args.proof] if args.proof else list(BENCHMARKS)
    report = BenchmarkReport(
        backend=mode,
        results=[await benchmark(engine, kind, args.iterations) for kind in kinds],
    )
    print_report(report)

    if args.output:
        args.output.write_text(report.model_dump_json(indent=2))
        print(f"Report saved to: {args.output}")

    return 0 if report.all_pass else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
