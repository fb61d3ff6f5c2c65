"""
Unit Tests for the ZK Engine
============================

Tests for engine initialization, trusted setup and an end-to-end game flow.

Version: 0.1.0
"""

import pytest

from dealproof.config import Settings, ZKSettings
from dealproof.zk.backend import get_proving_backend, reset_proving_backend, set_proving_backend
from dealproof.zk.engine import ZKEngine, get_engine, reset_engine, set_engine
from dealproof.zk.errors import SetupNotReadyError, UnknownRelationError, ValidationError
from dealproof.zk.hashing import field_hash, to_field
from dealproof.zk.mock import MockProvingBackend
from dealproof.zk.models import (
    CardCommitmentRequest,
    CardDealingRequest,
    CardShuffleRequest,
    DeckGenerationRequest,
)
from dealproof.zk.relations import RelationId
from tests.factories import make_contribution


class CountingBackend(MockProvingBackend):
    """Mock backend that counts initialization calls."""

    def __init__(self) -> None:
        super().__init__()
        self.initialize_calls = 0

    async def initialize(self) -> None:
        self.initialize_calls += 1
        await super().initialize()


class TestInitialization:
    """Tests for engine initialization."""

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, settings):
        """Repeated initialization prepares the backend once."""
        backend = CountingBackend()
        engine = ZKEngine(settings=settings, backend=backend)

        await engine.initialize()
        await engine.initialize()

        assert engine.is_initialized
        assert backend.initialize_calls == 1

    @pytest.mark.asyncio
    async def test_generate_initializes(self, settings):
        """Operations initialize the engine on first use."""
        engine = ZKEngine(settings=settings, backend=MockProvingBackend())

        result = await engine.generate_proof(
            CardCommitmentRequest(card_value=10, nonce=777, game_id="g1")
        )

        assert engine.is_initialized
        assert not result.success


class TestTrustedSetup:
    """Tests for engine-driven ceremonies."""

    @pytest.mark.asyncio
    async def test_setup_publishes_version_one(self, engine):
        """The first setup publishes version 1 from derived participants."""
        material = await engine.trusted_setup(RelationId.CARD_COMMITMENT)

        assert material.version == 1
        ceremony = engine.ceremony_manager.get_ceremony_status(material.ceremony_id)
        assert ceremony.contributors == {"engine-1", "engine-2"}
        assert ceremony.transcript_hash == material.transcript_hash

    @pytest.mark.asyncio
    async def test_explicit_contributions(self, engine):
        """Caller contributions are used one per derived participant."""
        material = await engine.trusted_setup(
            "dealVerify",
            participant="alice",
            contributions=[make_contribution("a"), make_contribution("b")],
        )

        ceremony = engine.ceremony_manager.get_ceremony_status(material.ceremony_id)
        assert ceremony.contributors == {"alice-1", "alice-2"}

    @pytest.mark.asyncio
    async def test_contribution_count_mismatch(self, engine):
        """The number of contributions must match the quorum."""
        with pytest.raises(ValidationError):
            await engine.trusted_setup(
                RelationId.CARD_COMMITMENT,
                contributions=[make_contribution("a")],
            )

    @pytest.mark.asyncio
    async def test_larger_quorum(self):
        """The quorum follows min_contributions."""
        engine = ZKEngine(
            settings=Settings(zk=ZKSettings(min_contributions=3)),
            backend=MockProvingBackend(),
        )

        material = await engine.trusted_setup(RelationId.SHUFFLE_VERIFY, participant="p")

        ceremony = engine.ceremony_manager.get_ceremony_status(material.ceremony_id)
        assert len(ceremony.contributions) == 3

    @pytest.mark.asyncio
    async def test_unknown_relation(self, engine):
        """Unknown relations cannot be set up."""
        with pytest.raises(UnknownRelationError):
            await engine.trusted_setup("handRanking")

    @pytest.mark.asyncio
    async def test_setup_all(self, engine):
        """Every relation gets key material."""
        keys = await engine.trusted_setup_all()

        assert set(keys) == set(RelationId)
        assert all(material.version == 1 for material in keys.values())

    @pytest.mark.asyncio
    async def test_resetup_keeps_old_proofs_verifiable(self, ready_engine):
        """A second ceremony publishes version 2; version 1 proofs still verify."""
        request = CardCommitmentRequest(card_value=10, nonce=777, game_id="g1")
        old = await ready_engine.generate_proof(request)

        material = await ready_engine.trusted_setup(RelationId.CARD_COMMITMENT)
        new = await ready_engine.generate_proof(request)

        assert material.version == 2
        assert old.proof.key_version == 1
        assert new.proof.key_version == 2
        assert await ready_engine.verify_proof(old.proof)
        assert await ready_engine.verify_proof(new.proof)


class TestVerificationKeys:
    """Tests for verification key export."""

    @pytest.mark.asyncio
    async def test_export_returns_copy(self, ready_engine):
        """Mutating an exported key does not affect the registry."""
        vk = ready_engine.export_verification_key("cardCommitment")
        assert vk["nPublic"] == 1

        vk["nPublic"] = 99
        assert ready_engine.export_verification_key("cardCommitment")["nPublic"] == 1

    @pytest.mark.asyncio
    async def test_export_specific_version(self, ready_engine):
        """Older versions stay exportable after re-setup."""
        first = ready_engine.export_verification_key(RelationId.DEAL_VERIFY)
        await ready_engine.trusted_setup(RelationId.DEAL_VERIFY)

        assert ready_engine.export_verification_key(RelationId.DEAL_VERIFY, version=1) == first
        assert ready_engine.export_verification_key(RelationId.DEAL_VERIFY) != first

    def test_export_without_setup(self, engine):
        """Exporting before setup raises setup not ready."""
        with pytest.raises(SetupNotReadyError):
            engine.export_verification_key(RelationId.DECK_GENERATION)


class TestGameFlow:
    """End-to-end proof flow for one hand."""

    @pytest.mark.asyncio
    async def test_full_hand(self, ready_engine):
        """Deck, shuffle, deal and commit proofs all verify as a batch."""
        seed = "game-42"

        deck_result = await ready_engine.generate_proof(
            DeckGenerationRequest(seed=seed, game_id="g42")
        )
        assert deck_result.success

        deck = list(range(52))
        shuffled = list(reversed(deck))
        permutation = [deck.index(card) for card in shuffled]
        shuffle_result = await ready_engine.generate_proof(
            CardShuffleRequest(
                original_deck=deck,
                shuffled_deck=shuffled,
                permutation=permutation,
                game_id="g42",
            )
        )
        assert shuffle_result.success

        deal_result = await ready_engine.generate_proof(
            CardDealingRequest(
                deck=shuffled,
                positions=[0, 1, 2, 3],
                game_id="g42",
                player_id="p1",
                deck_seed=seed,
            )
        )
        assert deal_result.success
        assert deal_result.proof.public_inputs[0] == field_hash(51, 0, to_field(seed))

        commit_result = await ready_engine.generate_proof(
            CardCommitmentRequest(card_value=10, nonce=777, game_id="g1")
        )
        assert commit_result.success

        batch = await ready_engine.proof_manager.verify_batch_proofs(
            [
                deck_result.proof,
                shuffle_result.proof,
                deal_result.proof,
                commit_result.proof,
            ]
        )

        assert batch.valid
        assert batch.failures == []
        assert batch.success_rate == 1.0


class TestStatistics:
    """Tests for engine statistics."""

    @pytest.mark.asyncio
    async def test_statistics_after_setup(self, ready_engine):
        """Statistics reflect completed ceremonies and generated proofs."""
        await ready_engine.generate_proof(
            CardCommitmentRequest(card_value=10, nonce=777, game_id="g1")
        )

        stats = ready_engine.get_statistics()

        assert stats.initialized
        assert stats.backend == "mock"
        assert set(stats.relations) == {r.value for r in RelationId}
        assert stats.key_versions == {r.value: 1 for r in RelationId}
        assert stats.ceremonies.completed_ceremonies == 4
        assert stats.ceremonies.active_ceremonies == 0
        assert stats.ceremonies.total_contributions == 8
        assert stats.proofs.total_proofs_generated == 1

    def test_statistics_before_setup(self, engine):
        """A fresh engine reports no keys."""
        stats = engine.get_statistics()

        assert not stats.initialized
        assert stats.key_versions == {}
        assert stats.proofs.history_size == 0


class TestEngineAccessor:
    """Tests for the process-wide engine accessor."""

    def test_get_engine_is_cached(self):
        """get_engine returns the same instance until reset."""
        reset_engine()
        try:
            first = get_engine()
            assert get_engine() is first

            reset_engine()
            assert get_engine() is not first
        finally:
            reset_engine()

    def test_set_engine(self, engine):
        """A custom engine replaces the global one."""
        set_engine(engine)
        try:
            assert get_engine() is engine
        finally:
            reset_engine()

    def test_engine_uses_configured_backend(self):
        """The global engine is built on the process-wide backend."""
        backend = MockProvingBackend()
        set_proving_backend(backend)
        reset_engine()
        try:
            assert get_proving_backend() is backend
            assert get_engine().get_statistics().backend == "mock"
        finally:
            reset_engine()
            reset_proving_backend()
        assert get_proving_backend() is not backend
