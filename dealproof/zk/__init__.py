"""
ZK-SNARK Module
===============

Zero-knowledge proofs for a card game: relations, trusted setup
ceremonies, proof generation and verification.

Supports:
- Mock backend (development/testing)
- snarkjs backend (Groth16 over BN254)

Usage:
    from dealproof.zk import CardCommitmentRequest, get_engine

    engine = get_engine()
    await engine.trusted_setup("cardCommitment")

    result = await engine.generate_proof(
        CardCommitmentRequest(card_value=10, nonce=777, game_id="g1")
    )
    is_valid = await engine.verify_proof(result.proof)

Version: 0.1.0
"""

from dealproof.zk.backend import (
    ProvingBackend,
    get_proving_backend,
    reset_proving_backend,
    set_proving_backend,
)
from dealproof.zk.ceremony import (
    Ceremony,
    CeremonyManager,
    CeremonyStatus,
    Contribution,
    ContributionData,
)
from dealproof.zk.engine import ZKEngine, get_engine, reset_engine, set_engine
from dealproof.zk.errors import (
    CeremonyNotFoundError,
    CeremonyStateError,
    ErrorCode,
    ProofTimeoutError,
    ProvingError,
    SetupNotReadyError,
    UnknownRelationError,
    ValidationError,
    VerificationFault,
    ZKError,
)
from dealproof.zk.keys import KeyMaterial, KeyRegistry
from dealproof.zk.mock import MockProvingBackend
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
    ProofResult,
)
from dealproof.zk.proof_manager import ProofManager
from dealproof.zk.relations import RELATIONS, Relation, RelationId, get_relation
from dealproof.zk.snarkjs import SnarkjsBackend


__all__ = [
    # Engine
    "ZKEngine",
    "get_engine",
    "set_engine",
    "reset_engine",
    # Components
    "CeremonyManager",
    "ProofManager",
    "KeyRegistry",
    # Backends
    "ProvingBackend",
    "MockProvingBackend",
    "SnarkjsBackend",
    "get_proving_backend",
    "set_proving_backend",
    "reset_proving_backend",
    # Relations
    "RELATIONS",
    "Relation",
    "RelationId",
    "get_relation",
    # Models
    "Ceremony",
    "CeremonyStatus",
    "Contribution",
    "ContributionData",
    "KeyMaterial",
    "Groth16Proof",
    "Proof",
    "ProofKind",
    "ProofResult",
    "BatchProofRequest",
    "BatchProofResult",
    "BatchVerificationResult",
    "DeckGenerationRequest",
    "CardCommitmentRequest",
    "CardShuffleRequest",
    "CardDealingRequest",
    # Errors
    "ErrorCode",
    "ZKError",
    "ValidationError",
    "UnknownRelationError",
    "SetupNotReadyError",
    "ProvingError",
    "ProofTimeoutError",
    "VerificationFault",
    "CeremonyStateError",
    "CeremonyNotFoundError",
]
