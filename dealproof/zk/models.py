"""
ZK-SNARK Data Models
====================

Pydantic models for proofs, proof results and proof requests.

Version: 0.1.0
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from dealproof.zk.errors import ErrorCode
from dealproof.zk.relations import RelationId


class ProofKind(str, Enum):
    """Game phase a proof attests to."""

    DECK_GENERATION = "deck_generation"
    CARD_COMMITMENT = "card_commitment"
    CARD_SHUFFLE = "card_shuffle"
    CARD_DEALING = "card_dealing"
    WITNESS = "witness"


class Groth16Proof(BaseModel):
    """
    A single Groth16 proof.

    Compatible with snarkjs Groth16 proof format.
    """

    model_config = ConfigDict(frozen=True)

    # Proof points (G1 and G2 elements)
    pi_a: list[str] = Field(..., description="Proof point A (G1)")
    pi_b: list[list[str]] = Field(..., description="Proof point B (G2)")
    pi_c: list[str] = Field(..., description="Proof point C (G1)")

    # Protocol info
    protocol: str = Field(default="groth16")
    curve: str = Field(default="bn128")

    def to_calldata(self) -> list[int]:
        """Convert to Solidity calldata format (8 uint256)."""
        return [
            int(self.pi_a[0]),
            int(self.pi_a[1]),
            int(self.pi_b[0][0]),
            int(self.pi_b[0][1]),
            int(self.pi_b[1][0]),
            int(self.pi_b[1][1]),
            int(self.pi_c[0]),
            int(self.pi_c[1]),
        ]

    def to_hex(self) -> str:
        """Convert to hex string for storage."""
        return json.dumps(self.model_dump()).encode().hex()

    @classmethod
    def from_hex(cls, hex_str: str) -> "Groth16Proof":
        """Create from hex string."""
        data = json.loads(bytes.fromhex(hex_str).decode())
        return cls(**data)


class ProofMetadata(BaseModel):
    """Provenance of a generated proof."""

    model_config = ConfigDict(frozen=True)

    proof_kind: ProofKind
    game_id: str
    player_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Proof(BaseModel):
    """
    A proof over one or more instances of a relation.

    ``proof`` holds one backend proof per relation instance and
    ``public_inputs`` the concatenation of each instance's public inputs in
    the relation's fixed order. Single-instance relations carry one proof.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    relation: RelationId
    public_inputs: list[int]
    proof: list[Groth16Proof]
    key_version: int = Field(..., ge=1)
    metadata: ProofMetadata

    @property
    def instance_count(self) -> int:
        return len(self.proof)


class ProofResult(BaseModel):
    """Outcome of a proof generation request."""

    success: bool
    proof: Proof | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    processing_time_ms: int = Field(..., ge=0)

    # Set when the proof was verified right after generation
    verified: bool | None = None


class BatchVerificationResult(BaseModel):
    """Result of verifying several proofs independently."""

    valid: bool
    failures: list[str] = Field(default_factory=list)
    outcomes: dict[str, bool] = Field(default_factory=dict)
    success_rate: float = Field(..., ge=0, le=1)


# =============================================================================
# Requests
# =============================================================================


class DeckGenerationRequest(BaseModel):
    """Request a proof that a deck was derived from a seed."""

    kind: Literal["deck_generation"] = "deck_generation"
    seed: str | int | None = None
    game_id: str | None = None


class CardCommitmentRequest(BaseModel):
    """Request a proof that a commitment opens to a card."""

    kind: Literal["card_commitment"] = "card_commitment"
    card_value: int
    nonce: int
    game_id: str
    player_id: str | None = None


class CardShuffleRequest(BaseModel):
    """Request a proof over an 8-card sample of a shuffle."""

    kind: Literal["card_shuffle"] = "card_shuffle"
    original_deck: list[int]
    shuffled_deck: list[int]
    permutation: list[int]
    game_id: str
    sample_positions: list[int] | None = None


class CardDealingRequest(BaseModel):
    """Request a proof binding dealt cards to their deck positions."""

    kind: Literal["card_dealing"] = "card_dealing"
    deck: list[int]
    positions: list[int]
    game_id: str
    player_id: str | None = None
    deck_seed: str | int | None = None


ProofRequest = Annotated[
    Union[
        DeckGenerationRequest,
        CardCommitmentRequest,
        CardShuffleRequest,
        CardDealingRequest,
    ],
    Field(discriminator="kind"),
]


class BatchProofRequest(BaseModel):
    """Several proof requests generated under one policy."""

    proofs: list[ProofRequest]
    parallel: bool = False
    verify_immediately: bool = False


class BatchProofResult(BaseModel):
    """Per-item results of a batch, in input order."""

    success: bool
    results: list[ProofResult]
    total_processing_time_ms: int = Field(..., ge=0)
    failed_count: int = Field(..., ge=0)


# =============================================================================
# History
# =============================================================================


class ProofRecord(BaseModel):
    """One entry of the proof history ledger."""

    model_config = ConfigDict(frozen=True)

    relation: RelationId | None
    proof_kind: ProofKind
    game_id: str | None = None
    player_id: str | None = None
    success: bool
    proof: Proof | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    processing_time_ms: int = Field(..., ge=0)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ProofStatistics(BaseModel):
    """Counters over generated and verified proofs."""

    total_proofs_generated: int = 0
    total_generation_failures: int = 0
    total_proofs_verified: int = 0
    total_verification_failures: int = 0
    average_generation_time_ms: float = 0.0
    average_verification_time_ms: float = 0.0
    relation_usage: dict[str, int] = Field(default_factory=dict)
    success_rate: float = 1.0
    history_size: int = 0
