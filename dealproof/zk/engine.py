"""
ZK Engine
=========

Facade over relations, trusted setup and proof management.

Usage:
    engine = get_engine()
    await engine.initialize()
    await engine.trusted_setup_all()

    result = await engine.generate_proof(
        CardCommitmentRequest(card_value=10, nonce=777, game_id="g1")
    )
    assert await engine.verify_proof(result.proof)

Version: 0.1.0
"""

import asyncio
import copy
import secrets
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from dealproof.config import Settings, get_settings
from dealproof.logging import get_logger
from dealproof.zk.backend import ProvingBackend, get_proving_backend
from dealproof.zk.ceremony import CeremonyManager, CeremonyStatistics, ContributionData
from dealproof.zk.errors import CeremonyStateError, ValidationError
from dealproof.zk.keys import KeyMaterial, KeyRegistry
from dealproof.zk.models import Proof, ProofRequest, ProofResult, ProofStatistics
from dealproof.zk.proof_manager import ProofManager
from dealproof.zk.relations import RELATIONS, RelationId, get_relation

logger = get_logger(__name__)


class EngineStatistics(BaseModel):
    """Aggregate view of the engine state."""

    initialized: bool
    backend: str
    relations: list[str]
    key_versions: dict[str, int]
    ceremonies: CeremonyStatistics
    proofs: ProofStatistics


def _random_contribution() -> ContributionData:
    return ContributionData(
        tau=secrets.token_hex(32),
        alpha=secrets.token_hex(32),
        beta=secrets.token_hex(32),
        gamma=secrets.token_hex(32),
        delta=secrets.token_hex(32),
    )


class ZKEngine:
    """
    Entry point for the proof system.

    Owns one key registry shared by its ceremony manager and proof manager.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        backend: ProvingBackend | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        nonce_source: Callable[[], int] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._backend = backend or get_proving_backend()
        self._registry = KeyRegistry()

        self._ceremonies = CeremonyManager(
            self._registry,
            self._backend,
            config=self._settings.zk,
            clock=clock,
            id_factory=id_factory,
        )
        self._proofs = ProofManager(
            self._registry,
            self._backend,
            config=self._settings.zk,
            clock=clock,
            id_factory=id_factory,
            nonce_source=nonce_source,
        )

        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def registry(self) -> KeyRegistry:
        return self._registry

    @property
    def ceremony_manager(self) -> CeremonyManager:
        return self._ceremonies

    @property
    def proof_manager(self) -> ProofManager:
        return self._proofs

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Load relation definitions and prepare the backend. Idempotent."""
        async with self._init_lock:
            if self._initialized:
                return

            await self._backend.initialize()
            self._initialized = True

            logger.info(
                "zk_engine_initialized",
                backend=self._backend.mode.value,
                relations=[r.value for r in RELATIONS],
            )

    async def trusted_setup(
        self,
        relation: RelationId | str,
        participant: str = "engine",
        contributions: Sequence[ContributionData | dict[str, Any]] | None = None,
    ) -> KeyMaterial:
        """
        Run a complete ceremony for relation.

        The quorum is met by derived participants ``<participant>-1``,
        ``<participant>-2``, ... each contributing once.

        Args:
            relation: Relation to set up
            participant: Base participant id
            contributions: One contribution per derived participant
                (fresh randomness if omitted)

        Returns:
            The published KeyMaterial

        Raises:
            UnknownRelationError: If the relation is not defined
            ValidationError: If the number of contributions does not match
                the quorum
        """
        await self.initialize()

        relation_id = get_relation(relation).relation_id
        quorum = self._settings.zk.min_contributions

        if contributions is None:
            contributions = [_random_contribution() for _ in range(quorum)]
        elif len(contributions) != quorum:
            raise ValidationError(
                f"Expected {quorum} contributions, got {len(contributions)}",
                details={"relation": relation_id.value},
            )

        participants = [f"{participant}-{i}" for i in range(1, quorum + 1)]

        ceremony = await self._ceremonies.initialize_ceremony(
            relation_id,
            title=f"{relation_id.value} trusted setup",
            description=f"Engine-driven setup for {relation_id.value}",
            initiator=participants[0],
        )
        for name in participants[1:]:
            await self._ceremonies.add_participant(ceremony.id, name)
        for name, data in zip(participants, contributions):
            await self._ceremonies.make_contribution(ceremony.id, name, data)

        completed = self._ceremonies.get_ceremony_status(ceremony.id)
        if completed.key_version is None:
            raise CeremonyStateError(f"Ceremony {ceremony.id} did not complete")
        return self._registry.get(relation_id, completed.key_version)

    async def trusted_setup_all(
        self,
        participant: str = "engine",
    ) -> dict[RelationId, KeyMaterial]:
        """Run trusted_setup for every defined relation."""
        return {
            relation_id: await self.trusted_setup(relation_id, participant)
            for relation_id in RELATIONS
        }

    async def generate_proof(self, request: ProofRequest) -> ProofResult:
        await self.initialize()
        return await self._proofs.generate_proof(request)

    async def verify_proof(self, proof: Proof) -> bool:
        await self.initialize()
        return await self._proofs.verify_proof(proof)

    def export_verification_key(
        self,
        relation: RelationId | str,
        version: int | None = None,
    ) -> dict[str, Any]:
        """
        Verification key for relation (latest version by default).

        Raises:
            SetupNotReadyError: If no such key has been published
        """
        relation_id = get_relation(relation).relation_id
        material = (
            self._registry.latest(relation_id)
            if version is None
            else self._registry.get(relation_id, version)
        )
        return copy.deepcopy(material.verification_key)

    def get_statistics(self) -> EngineStatistics:
        return EngineStatistics(
            initialized=self._initialized,
            backend=self._backend.mode.value,
            relations=[r.value for r in RELATIONS],
            key_versions={
                r.value: self._registry.latest(r).version for r in self._registry.relations()
            },
            ceremonies=self._ceremonies.get_statistics(),
            proofs=self._proofs.get_statistics(),
        )


# =============================================================================
# Engine Accessor
# =============================================================================

_engine: ZKEngine | None = None


def get_engine() -> ZKEngine:
    """
    Get the process-wide engine instance.

    Returns:
        ZKEngine built from settings and the configured backend
    """
    global _engine

    if _engine is None:
        _engine = ZKEngine()
        logger.info("zk_engine_created")

    return _engine


def set_engine(engine: ZKEngine) -> None:
    """
    Set a custom engine.

    Args:
        engine: ZKEngine instance
    """
    global _engine
    _engine = engine


def reset_engine() -> None:
    """Reset the engine to be re-created."""
    global _engine
    _engine = None
