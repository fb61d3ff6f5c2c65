"""
Proving Backend Interface
=========================

Contract between the proof system and the cryptographic backend.

A backend turns a completed ceremony's chain state into key material,
proves well-formed witnesses against that material and verifies proofs.
Backend methods are synchronous and may block (subprocesses, CPU-bound
arithmetic); callers run them in worker threads.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from typing import Any

from dealproof.config import BackendMode, settings
from dealproof.logging import get_logger
from dealproof.zk.keys import KeyMaterial
from dealproof.zk.models import Groth16Proof
from dealproof.zk.relations import BaseWitness, Relation

logger = get_logger(__name__)


class ProvingBackend(ABC):
    """
    Abstract proving backend.

    Implementations:
    - MockProvingBackend: in-process simulation (development/testing)
    - SnarkjsBackend: Groth16 over BN254 via snarkjs
    """

    @property
    @abstractmethod
    def mode(self) -> BackendMode:
        """Get the backend mode."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend for use."""
        pass

    @abstractmethod
    def derive_keys(
        self,
        relation: Relation,
        chain_state: str,
        ceremony_id: str,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Deterministically derive key material from a ceremony's final state.

        Args:
            relation: Relation the keys are for
            chain_state: Hex digest of the ceremony's final chain state
            ceremony_id: Ceremony producing the keys

        Returns:
            Tuple of (proving_key, verification_key)
        """
        pass

    @abstractmethod
    def prove(
        self,
        relation: Relation,
        witness: BaseWitness,
        key: KeyMaterial,
    ) -> Groth16Proof:
        """
        Prove one relation instance.

        Raises:
            ProvingError: If the backend cannot produce a proof
        """
        pass

    @abstractmethod
    def verify(
        self,
        relation: Relation,
        public_inputs: list[int],
        proof: Groth16Proof,
        key: KeyMaterial,
    ) -> bool:
        """
        Verify one relation instance.

        Returns:
            True if the proof is valid for the public inputs, False otherwise

        Raises:
            VerificationFault: If the proof or inputs are malformed
        """
        pass


# =============================================================================
# Backend Factory
# =============================================================================

_backend: ProvingBackend | None = None


def get_proving_backend() -> ProvingBackend:
    """
    Get the configured proving backend instance.

    Returns:
        ProvingBackend instance based on settings
    """
    global _backend

    if _backend is None:
        mode = settings.zk.backend

        if mode == BackendMode.MOCK:
            from dealproof.zk.mock import MockProvingBackend

            _backend = MockProvingBackend()
        elif mode == BackendMode.SNARKJS:
            from dealproof.zk.snarkjs import SnarkjsBackend

            _backend = SnarkjsBackend(
                build_dir=settings.zk.build_dir,
                command=settings.zk.snarkjs_command,
                beacon_iterations_exp=settings.zk.beacon_iterations_exp,
            )
        else:
            raise ValueError(f"Unknown proving backend: {mode}")

        logger.info(
            "proving_backend_initialized",
            mode=mode.value,
        )

    return _backend


def set_proving_backend(backend: ProvingBackend) -> None:
    """
    Set a custom proving backend.

    Args:
        backend: ProvingBackend instance
    """
    global _backend
    _backend = backend
    logger.info(
        "proving_backend_set",
        mode=backend.mode.value,
    )


def reset_proving_backend() -> None:
    """Reset the backend to be re-initialized."""
    global _backend
    _backend = None
