"""
Trusted Setup Ceremony
======================

Multi-party trusted setup producing per-relation key material.

Lifecycle:
    initialized -> in_progress -> completed
    initialized | in_progress -> aborted

Each registered participant contributes exactly once. A contribution is
folded into the ceremony's chain state:

    state_0 = SHA-256("dealproof-ceremony" | relation | ceremony_id)
    state_n = SHA-256(state_{n-1} | contribution_digest_n)

Only SHA-256 digests of the contribution components are kept; the raw
randomness is discarded once folded in. When the number of contributors
reaches the configured quorum the backend derives key material from the
final state and the key is published with the next version for the
relation.

Contributions to one ceremony are serialized by a per-ceremony lock;
distinct ceremonies proceed in parallel.

Version: 0.1.0
"""

import asyncio
import hashlib
import json
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic import ValidationError as PydanticValidationError

from dealproof.config import ZKSettings, settings
from dealproof.logging import get_logger, log_context
from dealproof.zk.backend import ProvingBackend
from dealproof.zk.errors import (
    CeremonyNotFoundError,
    CeremonyStateError,
    ValidationError,
)
from dealproof.zk.keys import KeyMaterial, KeyRegistry
from dealproof.zk.relations import RelationId, get_relation

logger = get_logger(__name__)

Component = Annotated[str, StringConstraints(min_length=1)]


def _sha256(*parts: str) -> str:
    hasher = hashlib.sha256()
    for part in parts:
        hasher.update(part.encode())
        hasher.update(b"\x00")
    return hasher.hexdigest()


class CeremonyStatus(str, Enum):
    """Ceremony lifecycle states."""

    INITIALIZED = "initialized"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (CeremonyStatus.COMPLETED, CeremonyStatus.ABORTED)


class ContributionData(BaseModel):
    """
    A participant's secret contribution.

    Wire shape: ``{tau, alpha, beta, gamma, delta, relationSpecific}``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tau: Component
    alpha: Component
    beta: Component
    gamma: Component
    delta: Component
    relation_specific: dict[str, Component] = Field(
        default_factory=dict,
        alias="relationSpecific",
    )

    def component_digests(self) -> dict[str, str]:
        """SHA-256 of each component: the public trace of the contribution."""
        digests = {
            name: _sha256(getattr(self, name))
            for name in ("tau", "alpha", "beta", "gamma", "delta")
        }
        for key in sorted(self.relation_specific):
            digests[f"relationSpecific.{key}"] = _sha256(self.relation_specific[key])
        return digests

    def digest(self) -> str:
        return _sha256(json.dumps(self.component_digests(), sort_keys=True))


class Contribution(BaseModel):
    """An applied contribution. Holds digests only, never raw randomness."""

    model_config = ConfigDict(frozen=True)

    ceremony_id: str
    participant_id: str
    sequence: int = Field(..., ge=1)
    public_components: dict[str, str]
    contribution_hash: str
    previous_state_hash: str
    resulting_state_hash: str
    applied_at: datetime


class CeremonyEventType(str, Enum):
    """Transcript event types."""

    CEREMONY_INITIALIZED = "ceremony_initialized"
    PARTICIPANT_JOINED = "participant_joined"
    CONTRIBUTION_MADE = "contribution_made"
    CEREMONY_COMPLETED = "ceremony_completed"
    CEREMONY_ABORTED = "ceremony_aborted"


class CeremonyEvent(BaseModel):
    """One transcript entry."""

    model_config = ConfigDict(frozen=True)

    event_type: CeremonyEventType
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)


class Ceremony(BaseModel):
    """Trusted setup ceremony state."""

    id: str
    relation: RelationId
    title: str
    description: str
    initiator: str
    participants: list[str] = Field(default_factory=list)
    contributions: list[Contribution] = Field(default_factory=list)
    status: CeremonyStatus = CeremonyStatus.INITIALIZED
    created_at: datetime
    completed_at: datetime | None = None
    genesis_state: str
    chain_state: str
    transcript: list[CeremonyEvent] = Field(default_factory=list)
    transcript_hash: str | None = None
    abort_reason: str | None = None
    key_version: int | None = None

    @property
    def contributors(self) -> set[str]:
        return {c.participant_id for c in self.contributions}


class CeremonyStatistics(BaseModel):
    """Counts over all known ceremonies."""

    active_ceremonies: int
    completed_ceremonies: int
    aborted_ceremonies: int
    total_participants: int
    total_contributions: int


def _genesis_state(relation: RelationId, ceremony_id: str) -> str:
    return _sha256("dealproof-ceremony", relation.value, ceremony_id)


def _next_state(previous_state: str, contribution_hash: str) -> str:
    return _sha256(previous_state, contribution_hash)


def _transcript_hash(ceremony: Ceremony) -> str:
    """Hash over events, participants and final state (completion event excluded)."""
    events = [
        event.model_dump(mode="json")
        for event in ceremony.transcript
        if event.event_type != CeremonyEventType.CEREMONY_COMPLETED
    ]
    payload = {
        "events": events,
        "participants": ceremony.participants,
        "chain_state": ceremony.chain_state,
    }
    return _sha256(json.dumps(payload, sort_keys=True))


class CeremonyManager:
    """
    Manages trusted setup ceremonies.

    Terminal ceremonies stay in memory for status queries and transcript
    verification until ``forget_ceremony`` removes them.

    Usage:
        manager = CeremonyManager(registry, backend)

        ceremony = await manager.initialize_ceremony(
            RelationId.CARD_COMMITMENT, "Commitments", "Game keys", "alice"
        )
        await manager.add_participant(ceremony.id, "bob")
        await manager.make_contribution(ceremony.id, "alice", data_a)
        await manager.make_contribution(ceremony.id, "bob", data_b)
    """

    def __init__(
        self,
        registry: KeyRegistry,
        backend: ProvingBackend,
        config: ZKSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._registry = registry
        self._backend = backend
        self._config = config or settings.zk
        self._clock = clock or (lambda: datetime.now(UTC))
        self._id_factory = id_factory or (lambda: f"ceremony-{uuid.uuid4().hex[:12]}")

        self._ceremonies: dict[str, Ceremony] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _get(self, ceremony_id: str) -> Ceremony:
        ceremony = self._ceremonies.get(ceremony_id)
        if ceremony is None:
            raise CeremonyNotFoundError(f"Ceremony {ceremony_id} not found")
        return ceremony

    def _record(self, ceremony: Ceremony, event_type: CeremonyEventType, **data: Any) -> None:
        ceremony.transcript.append(
            CeremonyEvent(event_type=event_type, timestamp=self._clock(), data=data)
        )

    @staticmethod
    def _require_active(ceremony: Ceremony) -> None:
        if ceremony.status.is_terminal:
            raise CeremonyStateError(
                f"Ceremony {ceremony.id} is {ceremony.status.value}",
                details={"ceremony_id": ceremony.id, "status": ceremony.status.value},
            )

    async def initialize_ceremony(
        self,
        relation: RelationId | str,
        title: str,
        description: str,
        initiator: str,
    ) -> Ceremony:
        """
        Start a ceremony with the initiator as first participant.

        Raises:
            UnknownRelationError: If the relation is not defined
        """
        relation_id = get_relation(relation).relation_id
        ceremony_id = self._id_factory()
        genesis = _genesis_state(relation_id, ceremony_id)

        ceremony = Ceremony(
            id=ceremony_id,
            relation=relation_id,
            title=title,
            description=description,
            initiator=initiator,
            participants=[initiator],
            created_at=self._clock(),
            genesis_state=genesis,
            chain_state=genesis,
        )
        self._record(
            ceremony,
            CeremonyEventType.CEREMONY_INITIALIZED,
            relation=relation_id.value,
            initiator=initiator,
        )

        self._ceremonies[ceremony_id] = ceremony
        self._locks[ceremony_id] = asyncio.Lock()

        logger.info(
            "ceremony_initialized",
            ceremony_id=ceremony_id,
            relation=relation_id.value,
            initiator=initiator,
        )
        return ceremony.model_copy(deep=True)

    async def add_participant(self, ceremony_id: str, participant: str) -> Ceremony:
        """
        Register a participant.

        Raises:
            CeremonyNotFoundError: If the ceremony does not exist
            CeremonyStateError: If the ceremony is terminal or full, or the
                participant is already registered
        """
        ceremony = self._get(ceremony_id)

        async with self._locks[ceremony_id]:
            self._require_active(ceremony)

            if participant in ceremony.participants:
                raise CeremonyStateError(
                    f"Participant {participant} already registered",
                    details={"ceremony_id": ceremony_id},
                )
            if len(ceremony.participants) >= self._config.max_participants:
                raise CeremonyStateError(
                    f"Ceremony {ceremony_id} is full",
                    details={"max_participants": self._config.max_participants},
                )

            ceremony.participants.append(participant)
            ceremony.status = CeremonyStatus.IN_PROGRESS
            self._record(
                ceremony,
                CeremonyEventType.PARTICIPANT_JOINED,
                participant=participant,
            )

            logger.info(
                "participant_joined",
                ceremony_id=ceremony_id,
                participant=participant,
                participants=len(ceremony.participants),
            )
            return ceremony.model_copy(deep=True)

    async def make_contribution(
        self,
        ceremony_id: str,
        participant: str,
        data: ContributionData | dict[str, Any],
    ) -> Contribution:
        """
        Fold a participant's contribution into the ceremony.

        Completes the ceremony and publishes key material once the quorum of
        distinct contributors is reached.

        Raises:
            CeremonyNotFoundError: If the ceremony does not exist
            CeremonyStateError: If the ceremony is terminal, the participant is
                not registered or has already contributed
            ValidationError: If the data is malformed or repeats an earlier
                contribution
        """
        ceremony = self._get(ceremony_id)

        if not isinstance(data, ContributionData):
            try:
                data = ContributionData.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(f"Malformed contribution: {e}") from e

        with log_context(ceremony_id=ceremony_id):
            async with self._locks[ceremony_id]:
                self._require_active(ceremony)

                if participant not in ceremony.participants:
                    raise CeremonyStateError(
                        f"Participant {participant} is not registered",
                        details={"ceremony_id": ceremony_id},
                    )
                if participant in ceremony.contributors:
                    raise CeremonyStateError(
                        f"Participant {participant} has already contributed",
                        details={"ceremony_id": ceremony_id},
                    )

                contribution_hash = data.digest()
                if self._config.require_unique_contributions and any(
                    c.contribution_hash == contribution_hash for c in ceremony.contributions
                ):
                    raise ValidationError(
                        "Contribution is not unique",
                        details={"ceremony_id": ceremony_id, "participant": participant},
                    )

                previous_state = ceremony.chain_state
                contribution = Contribution(
                    ceremony_id=ceremony_id,
                    participant_id=participant,
                    sequence=len(ceremony.contributions) + 1,
                    public_components=data.component_digests(),
                    contribution_hash=contribution_hash,
                    previous_state_hash=previous_state,
                    resulting_state_hash=_next_state(previous_state, contribution_hash),
                    applied_at=self._clock(),
                )

                completes = len(ceremony.contributors) + 1 >= self._config.min_contributions
                keys = None
                if completes:
                    # Nothing is mutated until key derivation succeeds
                    keys = await asyncio.to_thread(
                        self._backend.derive_keys,
                        get_relation(ceremony.relation),
                        contribution.resulting_state_hash,
                        ceremony_id,
                    )

                ceremony.contributions.append(contribution)
                ceremony.chain_state = contribution.resulting_state_hash
                ceremony.status = CeremonyStatus.IN_PROGRESS
                self._record(
                    ceremony,
                    CeremonyEventType.CONTRIBUTION_MADE,
                    participant=participant,
                    sequence=contribution.sequence,
                    contribution_hash=contribution_hash,
                    resulting_state_hash=contribution.resulting_state_hash,
                )

                logger.info(
                    "contribution_applied",
                    participant=participant,
                    sequence=contribution.sequence,
                )

                if keys is not None:
                    self._complete(ceremony, *keys)

                return contribution

    def _complete(
        self,
        ceremony: Ceremony,
        proving_key: dict[str, Any],
        verification_key: dict[str, Any],
    ) -> KeyMaterial:
        completed_at = self._clock()
        transcript_hash = _transcript_hash(ceremony)

        material = self._registry.publish(
            relation=ceremony.relation,
            proving_key=proving_key,
            verification_key=verification_key,
            ceremony_id=ceremony.id,
            transcript_hash=transcript_hash,
            created_at=completed_at,
        )

        ceremony.status = CeremonyStatus.COMPLETED
        ceremony.completed_at = completed_at
        ceremony.transcript_hash = transcript_hash
        ceremony.key_version = material.version
        self._record(
            ceremony,
            CeremonyEventType.CEREMONY_COMPLETED,
            contributions=len(ceremony.contributions),
            transcript_hash=transcript_hash,
            key_version=material.version,
        )

        logger.info(
            "ceremony_completed",
            ceremony_id=ceremony.id,
            relation=ceremony.relation.value,
            contributions=len(ceremony.contributions),
            key_version=material.version,
        )
        return material

    async def abort_ceremony(self, ceremony_id: str, reason: str) -> Ceremony:
        """
        Abort a non-terminal ceremony.

        Raises:
            CeremonyNotFoundError: If the ceremony does not exist
            CeremonyStateError: If the ceremony is already terminal
        """
        ceremony = self._get(ceremony_id)

        async with self._locks[ceremony_id]:
            self._require_active(ceremony)
            self._abort(ceremony, reason)
            return ceremony.model_copy(deep=True)

    async def forget_ceremony(self, ceremony_id: str) -> None:
        """
        Drop a terminal ceremony and its lock from the manager.

        Published key material is unaffected; status, statistics and
        transcript verification no longer see the ceremony.

        Raises:
            CeremonyNotFoundError: If the ceremony does not exist
            CeremonyStateError: If the ceremony is not terminal
        """
        ceremony = self._get(ceremony_id)

        async with self._locks[ceremony_id]:
            if not ceremony.status.is_terminal:
                raise CeremonyStateError(
                    f"Ceremony {ceremony_id} is still {ceremony.status.value}",
                    details={"ceremony_id": ceremony_id},
                )
            del self._ceremonies[ceremony_id]
            del self._locks[ceremony_id]

        logger.info("ceremony_forgotten", ceremony_id=ceremony_id)

    def _abort(self, ceremony: Ceremony, reason: str) -> None:
        ceremony.status = CeremonyStatus.ABORTED
        ceremony.abort_reason = reason
        self._record(ceremony, CeremonyEventType.CEREMONY_ABORTED, reason=reason)

        logger.warning(
            "ceremony_aborted",
            ceremony_id=ceremony.id,
            relation=ceremony.relation.value,
            reason=reason,
        )

    async def cleanup_timed_out_ceremonies(self) -> int:
        """
        Abort non-terminal ceremonies older than the configured timeout.

        Returns:
            Number of ceremonies aborted
        """
        timeout = timedelta(minutes=self._config.ceremony_timeout_minutes)
        cleaned = 0

        for ceremony_id, ceremony in list(self._ceremonies.items()):
            async with self._locks[ceremony_id]:
                if ceremony.status.is_terminal:
                    continue
                if self._clock() - ceremony.created_at > timeout:
                    self._abort(ceremony, "timeout")
                    cleaned += 1

        if cleaned:
            logger.info("ceremonies_timed_out", count=cleaned)
        return cleaned

    def verify_transcript(self, ceremony_id: str) -> bool:
        """
        Replay the contribution chain from the genesis state.

        Returns:
            True if every recorded state hash, the final chain state and (for
            completed ceremonies) the transcript hash are consistent
        """
        ceremony = self._get(ceremony_id)

        state = _genesis_state(ceremony.relation, ceremony.id)
        if state != ceremony.genesis_state:
            return False

        for sequence, contribution in enumerate(ceremony.contributions, start=1):
            if contribution.sequence != sequence:
                return False
            if contribution.previous_state_hash != state:
                return False
            expected_hash = _sha256(json.dumps(contribution.public_components, sort_keys=True))
            if contribution.contribution_hash != expected_hash:
                return False
            state = _next_state(state, contribution.contribution_hash)
            if contribution.resulting_state_hash != state:
                return False

        if state != ceremony.chain_state:
            return False

        if ceremony.status == CeremonyStatus.COMPLETED:
            return ceremony.transcript_hash == _transcript_hash(ceremony)
        return True

    def get_ceremony_status(self, ceremony_id: str) -> Ceremony:
        """
        Snapshot of a ceremony.

        Raises:
            CeremonyNotFoundError: If the ceremony does not exist
        """
        return self._get(ceremony_id).model_copy(deep=True)

    def list_active_ceremonies(self) -> list[Ceremony]:
        return [
            ceremony.model_copy(deep=True)
            for ceremony in self._ceremonies.values()
            if not ceremony.status.is_terminal
        ]

    def get_statistics(self) -> CeremonyStatistics:
        ceremonies = list(self._ceremonies.values())
        return CeremonyStatistics(
            active_ceremonies=sum(1 for c in ceremonies if not c.status.is_terminal),
            completed_ceremonies=sum(
                1 for c in ceremonies if c.status == CeremonyStatus.COMPLETED
            ),
            aborted_ceremonies=sum(1 for c in ceremonies if c.status == CeremonyStatus.ABORTED),
            total_participants=sum(len(c.participants) for c in ceremonies),
            total_contributions=sum(len(c.contributions) for c in ceremonies),
        )
