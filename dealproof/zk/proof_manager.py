"""
Proof Manager
=============

Builds witnesses for the game phases, drives proof generation and
verification against published key material, and keeps a proof history.

Generation never raises for expected failures: malformed input, missing
setup, backend proving faults and timeouts all become
``ProofResult(success=False)`` with an error code. Verification returns
``False`` for an invalid proof and raises only for a missing key
(``SetupNotReadyError``) or a malformed proof (``VerificationFault``).

Usage:
    manager = ProofManager(registry, backend)

    result = await manager.create_card_commitment_proof(
        card_value=10,
        nonce=777,
        game_id="g1",
    )
    if result.success:
        assert await manager.verify_proof(result.proof)

Version: 0.1.0
"""

import asyncio
import secrets
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dealproof.config import ZKSettings, settings
from dealproof.logging import get_logger, log_context
from dealproof.zk.backend import ProvingBackend
from dealproof.zk.errors import (
    ErrorCode,
    ProofTimeoutError,
    ProvingError,
    ValidationError,
    VerificationFault,
    ZKError,
)
from dealproof.zk.hashing import DECK_SIZE, FIELD_ORDER, is_field_element, to_field
from dealproof.zk.history import ProofHistory
from dealproof.zk.keys import KeyMaterial, KeyRegistry
from dealproof.zk.models import (
    BatchProofRequest,
    BatchProofResult,
    BatchVerificationResult,
    CardCommitmentRequest,
    CardDealingRequest,
    CardShuffleRequest,
    DeckGenerationRequest,
    Groth16Proof,
    Proof,
    ProofKind,
    ProofMetadata,
    ProofRecord,
    ProofRequest,
    ProofResult,
    ProofStatistics,
)
from dealproof.zk.relations import (
    CARD_COMMITMENT,
    DEAL_VERIFY,
    DECK_GENERATION,
    SHUFFLE_SAMPLE_SIZE,
    SHUFFLE_VERIFY,
    BaseWitness,
    CardCommitmentWitness,
    DealVerifyWitness,
    DeckGenerationWitness,
    Relation,
    ShuffleVerifyWitness,
    get_relation,
    parse_witness,
)

logger = get_logger(__name__)

WitnessBuilder = Callable[[], tuple[Relation, list[BaseWitness]]]


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _require_card(value: Any, label: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value < DECK_SIZE:
        raise ValidationError(f"{label} must be a card index in [0, {DECK_SIZE}), got {value!r}")
    return value


def _require_deck(deck: Sequence[int], label: str) -> list[int]:
    if len(deck) != DECK_SIZE:
        raise ValidationError(f"{label} must hold {DECK_SIZE} cards, got {len(deck)}")
    cards = [_require_card(card, label) for card in deck]
    if len(set(cards)) != DECK_SIZE:
        raise ValidationError(f"{label} contains duplicate cards")
    return cards


class ProofManager:
    """
    Proof generation and verification for the card game.

    Proving runs in worker threads, bounded by a per-request timeout and
    retried on backend proving faults. Parallel batches are bounded by
    ``max_parallel_proofs``.
    """

    def __init__(
        self,
        registry: KeyRegistry,
        backend: ProvingBackend,
        config: ZKSettings | None = None,
        history: ProofHistory | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        nonce_source: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize the proof manager.

        Args:
            registry: Published key material
            backend: Proving backend
            config: Proof system settings (default from settings)
            history: Proof history (default: new bounded history)
            clock: Returns the current aware datetime
            id_factory: Returns fresh proof ids
            nonce_source: Returns fresh field-element nonces and seeds
        """
        self._registry = registry
        self._backend = backend
        self._config = config or settings.zk
        self._history = history or ProofHistory(self._config.history_max_entries)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._id_factory = id_factory or (lambda: f"proof-{secrets.token_hex(8)}")
        self._nonce_source = nonce_source or (lambda: secrets.randbelow(FIELD_ORDER))

    # =========================================================================
    # Witness construction
    # =========================================================================

    def _resolve_seed(self, seed: str | int | None) -> int:
        if seed is None:
            return self._nonce_source()
        if isinstance(seed, str):
            return to_field(seed)
        if not is_field_element(seed):
            raise ValidationError(f"Seed {seed!r} is not a field element")
        return seed

    def _deck_generation_witnesses(
        self,
        seed: str | int | None,
    ) -> tuple[Relation, list[BaseWitness]]:
        return DECK_GENERATION, [DeckGenerationWitness.build(self._resolve_seed(seed))]

    def _card_commitment_witnesses(
        self,
        card_value: int,
        nonce: int,
    ) -> tuple[Relation, list[BaseWitness]]:
        _require_card(card_value, "card_value")
        if not is_field_element(nonce):
            raise ValidationError(f"Nonce {nonce!r} is not a field element")
        return CARD_COMMITMENT, [CardCommitmentWitness.build(card_value, nonce)]

    def _card_shuffle_witnesses(
        self,
        original_deck: Sequence[int],
        shuffled_deck: Sequence[int],
        permutation: Sequence[int],
        sample_positions: Sequence[int] | None,
    ) -> tuple[Relation, list[BaseWitness]]:
        """
        Build the 8-card sample witness.

        ``permutation[i]`` is the original position of ``shuffled_deck[i]``.
        The sample's original cards are the referenced original positions in
        ascending order, and the sample permutation indexes into them.
        """
        original = _require_deck(original_deck, "original_deck")
        shuffled = _require_deck(shuffled_deck, "shuffled_deck")
        if sorted(permutation) != list(range(DECK_SIZE)):
            raise ValidationError(f"permutation must be a permutation of [0, {DECK_SIZE})")

        positions = (
            list(range(SHUFFLE_SAMPLE_SIZE)) if sample_positions is None else list(sample_positions)
        )
        if len(positions) != SHUFFLE_SAMPLE_SIZE or len(set(positions)) != SHUFFLE_SAMPLE_SIZE:
            raise ValidationError(
                f"sample_positions must name {SHUFFLE_SAMPLE_SIZE} distinct positions"
            )
        for position in positions:
            _require_card(position, "sample_positions")

        sources = [permutation[p] for p in positions]
        ordered = sorted(sources)

        witness = ShuffleVerifyWitness.build(
            original_cards=[original[j] for j in ordered],
            shuffled_cards=[shuffled[p] for p in positions],
            permutation=[ordered.index(s) for s in sources],
        )
        return SHUFFLE_VERIFY, [witness]

    def _card_dealing_witnesses(
        self,
        deck: Sequence[int],
        positions: Sequence[int],
        deck_seed: str | int | None,
    ) -> tuple[Relation, list[BaseWitness]]:
        cards = _require_deck(deck, "deck")
        if not positions:
            raise ValidationError("At least one position must be dealt")
        if len(set(positions)) != len(positions):
            raise ValidationError("Dealt positions must be distinct")
        for position in positions:
            _require_card(position, "position")

        seed = self._resolve_seed(deck_seed)
        witnesses: list[BaseWitness] = [
            DealVerifyWitness.build(
                card_value=cards[position],
                position=position,
                card_nonce=self._nonce_source(),
                deck_seed=seed,
            )
            for position in positions
        ]
        return DEAL_VERIFY, witnesses

    # =========================================================================
    # Generation
    # =========================================================================

    async def _prove_instance(
        self,
        relation: Relation,
        witness: BaseWitness,
        key: KeyMaterial,
    ) -> Groth16Proof:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ProvingError),
            stop=stop_after_attempt(self._config.proving_max_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                "proving_retry",
                relation=relation.relation_id.value,
                attempt=retry_state.attempt_number,
            ),
        ):
            with attempt:
                proof = await asyncio.to_thread(self._backend.prove, relation, witness, key)
        return proof

    async def _prove_all(
        self,
        relation: Relation,
        witnesses: list[BaseWitness],
        key: KeyMaterial,
    ) -> list[Groth16Proof]:
        return [await self._prove_instance(relation, w, key) for w in witnesses]

    async def _generate(
        self,
        kind: ProofKind,
        game_id: str | None,
        player_id: str | None,
        build: WitnessBuilder,
    ) -> ProofResult:
        start = time.perf_counter()
        relation: Relation | None = None

        with log_context(game_id=game_id, proof_kind=kind.value):
            try:
                try:
                    relation, witnesses = build()
                except PydanticValidationError as e:
                    raise ValidationError(f"Malformed witness: {e}") from e

                for witness in witnesses:
                    violations = relation.check(witness)
                    if violations:
                        raise ValidationError(
                            f"Witness does not satisfy {relation.relation_id.value}: "
                            + "; ".join(violations),
                            details={"violations": violations},
                        )

                key = self._registry.latest(relation.relation_id)

                try:
                    groth16_proofs = await asyncio.wait_for(
                        self._prove_all(relation, witnesses, key),
                        timeout=self._config.proof_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    raise ProofTimeoutError(
                        f"Proof generation exceeded {self._config.proof_timeout_seconds}s",
                        details={"relation": relation.relation_id.value},
                    ) from None

                proof = Proof(
                    id=self._id_factory(),
                    relation=relation.relation_id,
                    public_inputs=[v for w in witnesses for v in w.public_inputs()],
                    proof=groth16_proofs,
                    key_version=key.version,
                    metadata=ProofMetadata(
                        proof_kind=kind,
                        game_id=game_id or "",
                        player_id=player_id,
                        created_at=self._clock(),
                    ),
                )
                result = ProofResult(
                    success=True,
                    proof=proof,
                    processing_time_ms=_elapsed_ms(start),
                )

                logger.info(
                    "proof_generated",
                    proof_id=proof.id,
                    relation=relation.relation_id.value,
                    instances=proof.instance_count,
                    key_version=key.version,
                    processing_time_ms=result.processing_time_ms,
                )

            except ZKError as e:
                result = ProofResult(
                    success=False,
                    error=e.message,
                    error_code=e.code,
                    processing_time_ms=_elapsed_ms(start),
                )

                logger.warning(
                    "proof_generation_failed",
                    error_code=e.code.value,
                    error=e.message,
                )

            except Exception as e:
                result = ProofResult(
                    success=False,
                    error=f"Backend error: {e}",
                    error_code=ErrorCode.PROVING,
                    processing_time_ms=_elapsed_ms(start),
                )

                logger.exception(
                    "proof_generation_crashed",
                    error_type=type(e).__name__,
                )

            self._history.record(
                ProofRecord(
                    relation=relation.relation_id if relation else None,
                    proof_kind=kind,
                    game_id=game_id,
                    player_id=player_id,
                    success=result.success,
                    proof=result.proof,
                    error=result.error,
                    error_code=result.error_code,
                    processing_time_ms=result.processing_time_ms,
                    recorded_at=self._clock(),
                )
            )
        return result

    async def create_deck_generation_proof(
        self,
        seed: str | int | None = None,
        game_id: str | None = None,
    ) -> ProofResult:
        """
        Prove that a 52-card deck was derived from a seed.

        Args:
            seed: Seed string or field element (random if omitted)
            game_id: Game identifier (generated if omitted)
        """
        game_id = game_id or f"game-{int(self._clock().timestamp() * 1000)}"
        return await self._generate(
            ProofKind.DECK_GENERATION,
            game_id,
            None,
            lambda: self._deck_generation_witnesses(seed),
        )

    async def create_card_commitment_proof(
        self,
        card_value: int,
        nonce: int,
        game_id: str,
        player_id: str | None = None,
    ) -> ProofResult:
        """Prove knowledge of the card behind Hash(card_value, nonce)."""
        return await self._generate(
            ProofKind.CARD_COMMITMENT,
            game_id,
            player_id,
            lambda: self._card_commitment_witnesses(card_value, nonce),
        )

    async def create_card_shuffle_proof(
        self,
        original_deck: Sequence[int],
        shuffled_deck: Sequence[int],
        permutation: Sequence[int],
        game_id: str,
        sample_positions: Sequence[int] | None = None,
    ) -> ProofResult:
        """
        Prove a shuffle over an 8-card sample.

        Args:
            original_deck: Deck before the shuffle
            shuffled_deck: Deck after the shuffle
            permutation: ``shuffled_deck[i] == original_deck[permutation[i]]``
            game_id: Game identifier
            sample_positions: Shuffled positions to sample (default 0..7)
        """
        return await self._generate(
            ProofKind.CARD_SHUFFLE,
            game_id,
            None,
            lambda: self._card_shuffle_witnesses(
                original_deck, shuffled_deck, permutation, sample_positions
            ),
        )

    async def create_card_dealing_proof(
        self,
        deck: Sequence[int],
        positions: Sequence[int],
        game_id: str,
        player_id: str | None = None,
        deck_seed: str | int | None = None,
    ) -> ProofResult:
        """
        Prove that dealt cards come from the given deck positions.

        One dealVerify instance is proven per position; the proof's public
        inputs are the per-position triples concatenated in position order.
        """
        return await self._generate(
            ProofKind.CARD_DEALING,
            game_id,
            player_id,
            lambda: self._card_dealing_witnesses(deck, positions, deck_seed),
        )

    async def prove_witness(
        self,
        witness: BaseWitness | dict[str, Any],
        game_id: str,
        player_id: str | None = None,
    ) -> ProofResult:
        """Prove a caller-supplied witness for any relation."""

        def build() -> tuple[Relation, list[BaseWitness]]:
            parsed = witness if isinstance(witness, BaseWitness) else parse_witness(witness)
            return get_relation(parsed.relation_id), [parsed]

        return await self._generate(ProofKind.WITNESS, game_id, player_id, build)

    async def generate_proof(self, request: ProofRequest) -> ProofResult:
        """Dispatch a tagged proof request."""
        if isinstance(request, DeckGenerationRequest):
            return await self.create_deck_generation_proof(request.seed, request.game_id)
        if isinstance(request, CardCommitmentRequest):
            return await self.create_card_commitment_proof(
                request.card_value, request.nonce, request.game_id, request.player_id
            )
        if isinstance(request, CardShuffleRequest):
            return await self.create_card_shuffle_proof(
                request.original_deck,
                request.shuffled_deck,
                request.permutation,
                request.game_id,
                request.sample_positions,
            )
        if isinstance(request, CardDealingRequest):
            return await self.create_card_dealing_proof(
                request.deck,
                request.positions,
                request.game_id,
                request.player_id,
                request.deck_seed,
            )
        raise TypeError(f"Unsupported proof request: {type(request).__name__}")

    async def generate_batch_proofs(self, request: BatchProofRequest) -> BatchProofResult:
        """
        Generate several proofs.

        Sequential batches run in input order. Parallel batches run at most
        ``max_parallel_proofs`` at a time; results keep input order.
        """
        start = time.perf_counter()

        async def generate_one(item: ProofRequest) -> ProofResult:
            result = await self.generate_proof(item)
            if request.verify_immediately and result.success and result.proof:
                result.verified = await self._verify_isolated(result.proof)
            return result

        if request.parallel:
            semaphore = asyncio.Semaphore(self._config.max_parallel_proofs)

            async def bounded(item: ProofRequest) -> ProofResult:
                async with semaphore:
                    return await generate_one(item)

            results = list(await asyncio.gather(*(bounded(item) for item in request.proofs)))
        else:
            results = [await generate_one(item) for item in request.proofs]

        failed_count = sum(1 for r in results if not r.success)

        logger.info(
            "batch_generation_completed",
            total=len(results),
            failed=failed_count,
            parallel=request.parallel,
        )

        return BatchProofResult(
            success=failed_count == 0,
            results=results,
            total_processing_time_ms=_elapsed_ms(start),
            failed_count=failed_count,
        )

    # =========================================================================
    # Verification
    # =========================================================================

    async def verify_proof(self, proof: Proof, max_age: timedelta | None = None) -> bool:
        """
        Verify a proof against the key version it was generated with.

        Args:
            proof: Proof to verify
            max_age: Reject proofs created longer ago than this

        Returns:
            True if every instance verifies, False otherwise

        Raises:
            SetupNotReadyError: If the key version is not published
            VerificationFault: If the proof shape does not match the relation
        """
        start = time.perf_counter()
        relation = get_relation(proof.relation)
        key = self._registry.get(relation.relation_id, proof.key_version)

        try:
            n_public = relation.n_public
            if not proof.proof or len(proof.public_inputs) != n_public * len(proof.proof):
                raise VerificationFault(
                    f"Expected {n_public} public inputs per instance for "
                    f"{relation.relation_id.value}",
                    details={
                        "instances": len(proof.proof),
                        "public_inputs": len(proof.public_inputs),
                    },
                )

            if max_age is not None and self._clock() - proof.metadata.created_at > max_age:
                logger.info("proof_expired", proof_id=proof.id)
                valid = False
            else:
                valid = True
                for index, groth16_proof in enumerate(proof.proof):
                    chunk = proof.public_inputs[index * n_public : (index + 1) * n_public]
                    if not await asyncio.to_thread(
                        self._backend.verify, relation, chunk, groth16_proof, key
                    ):
                        valid = False
                        break
        except VerificationFault:
            self._history.record_verification(False, _elapsed_ms(start))
            raise

        self._history.record_verification(valid, _elapsed_ms(start))

        logger.info(
            "proof_verified",
            proof_id=proof.id,
            relation=relation.relation_id.value,
            valid=valid,
        )
        return valid

    async def _verify_isolated(self, proof: Proof) -> bool:
        try:
            return await self.verify_proof(proof)
        except ZKError as e:
            logger.warning(
                "proof_verification_error",
                proof_id=proof.id,
                error_code=e.code.value,
                error=e.message,
            )
            return False
        except Exception as e:
            logger.exception(
                "proof_verification_crashed",
                proof_id=proof.id,
                error_type=type(e).__name__,
            )
            return False

    async def verify_batch_proofs(self, proofs: Sequence[Proof]) -> BatchVerificationResult:
        """
        Verify proofs concurrently. A fault in one proof counts as that
        proof's failure and does not affect the others.
        """
        outcomes = await asyncio.gather(*(self._verify_isolated(p) for p in proofs))

        failures = [proof.id for proof, ok in zip(proofs, outcomes) if not ok]
        success_rate = (len(proofs) - len(failures)) / len(proofs) if proofs else 1.0

        logger.info(
            "batch_verification_completed",
            total=len(proofs),
            failed=len(failures),
        )

        return BatchVerificationResult(
            valid=not failures,
            failures=failures,
            outcomes={proof.id: ok for proof, ok in zip(proofs, outcomes)},
            success_rate=success_rate,
        )

    # =========================================================================
    # History
    # =========================================================================

    def get_statistics(self) -> ProofStatistics:
        return self._history.statistics()

    def get_proof_history(self, limit: int | None = None) -> list[ProofRecord]:
        """Recorded generation outcomes, oldest first."""
        return self._history.entries(limit)

    def clear_history(self) -> None:
        self._history.clear()
        logger.info("proof_history_cleared")
