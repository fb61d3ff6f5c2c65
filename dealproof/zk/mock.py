"""
Mock Proving Backend
====================

In-process simulation of a Groth16 backend for development and testing.

The mock is not zero-knowledge and not sound against a malicious prover
that knows the verification key; it exists so the orchestration layer can
run without circuit artifacts. It does enforce the relation: proving fails
unless every constraint holds, and verification fails unless the proof was
produced for exactly these public inputs under exactly this key.

Version: 0.1.0
"""

import json
import secrets
from collections.abc import Callable
from typing import Any

from dealproof.config import BackendMode
from dealproof.logging import get_logger
from dealproof.zk.backend import ProvingBackend
from dealproof.zk.errors import ProvingError, VerificationFault
from dealproof.zk.hashing import FIELD_ORDER, field_hash, is_field_element, to_field
from dealproof.zk.keys import KeyMaterial
from dealproof.zk.models import Groth16Proof
from dealproof.zk.relations import BaseWitness, Relation

logger = get_logger(__name__)


def _g1(*parts: str) -> list[str]:
    """Pseudo G1 point in projective form."""
    return [str(to_field(":".join(parts + ("x",)))), str(to_field(":".join(parts + ("y",)))), "1"]


def _g2(*parts: str) -> list[list[str]]:
    """Pseudo G2 point in projective form."""
    return [
        [str(to_field(":".join(parts + ("x0",)))), str(to_field(":".join(parts + ("x1",))))],
        [str(to_field(":".join(parts + ("y0",)))), str(to_field(":".join(parts + ("y1",))))],
        ["1", "0"],
    ]


def _vk_digest(verification_key: dict[str, Any]) -> int:
    """Field element committing to every point of a verification key."""
    encoded = json.dumps(verification_key, sort_keys=True).encode()
    return to_field(encoded)


def _parse_point(values: Any, label: str) -> list[int]:
    if not isinstance(values, list) or len(values) != 3:
        raise VerificationFault(f"Malformed proof point {label}")
    try:
        parsed = [int(v) for v in values]
    except (TypeError, ValueError) as e:
        raise VerificationFault(f"Malformed proof point {label}: {e}") from e
    if not all(is_field_element(v) for v in parsed):
        raise VerificationFault(f"Proof point {label} is outside the field")
    return parsed


class MockProvingBackend(ProvingBackend):
    """
    Simulated Groth16 backend.

    pi_a is derived from fresh randomness, pi_b binds pi_a to the
    verification key and pi_c binds the relation, the public inputs and
    both earlier points. Verification recomputes pi_b and pi_c.
    """

    def __init__(self, randomness: Callable[[], int] | None = None) -> None:
        """
        Initialize the mock backend.

        Args:
            randomness: Source of prover randomness (default: secrets)
        """
        self._randomness = randomness or (lambda: secrets.randbelow(FIELD_ORDER))
        self._initialized = False

        logger.debug("mock_proving_backend_created")

    @property
    def mode(self) -> BackendMode:
        return BackendMode.MOCK

    async def initialize(self) -> None:
        self._initialized = True
        logger.info("mock_proving_backend_initialized")

    def derive_keys(
        self,
        relation: Relation,
        chain_state: str,
        ceremony_id: str,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Derive keys as a pure function of chain state and relation."""
        seed = f"{relation.relation_id.value}:{chain_state}"

        verification_key: dict[str, Any] = {
            "protocol": "groth16",
            "curve": "bn128",
            "nPublic": relation.n_public,
            "vk_alpha_1": _g1(seed, "alpha"),
            "vk_beta_2": _g2(seed, "beta"),
            "vk_gamma_2": _g2(seed, "gamma"),
            "vk_delta_2": _g2(seed, "delta"),
            "IC": [_g1(seed, "ic", str(i)) for i in range(relation.n_public + 1)],
        }

        proving_key: dict[str, Any] = {
            "protocol": "groth16",
            "curve": "bn128",
            "relation": relation.relation_id.value,
            "ceremony_id": ceremony_id,
            "vk_digest": str(_vk_digest(verification_key)),
        }

        return proving_key, verification_key

    def _bind(
        self,
        digest: int,
        relation: Relation,
        public_inputs: list[int],
        a: list[int],
    ) -> tuple[list[list[str]], list[str]]:
        b0 = field_hash(digest, a[0])
        b1 = field_hash(digest, a[1])
        relation_tag = to_field(relation.relation_id.value)
        c0 = field_hash(digest, relation_tag, *public_inputs, a[0], b0)
        c1 = field_hash(digest, relation_tag, *public_inputs, a[1], b1)
        pi_b = [[str(b0), str(b1)], [str(field_hash(b0)), str(field_hash(b1))], ["1", "0"]]
        return pi_b, [str(c0), str(c1), "1"]

    def prove(
        self,
        relation: Relation,
        witness: BaseWitness,
        key: KeyMaterial,
    ) -> Groth16Proof:
        violations = relation.check(witness)
        if violations:
            raise ProvingError(
                f"Witness does not satisfy {relation.relation_id.value}",
                details={"violations": violations},
            )

        digest = int(key.proving_key["vk_digest"])
        r = self._randomness()
        a = [field_hash(r), field_hash(r, 1)]
        pi_b, pi_c = self._bind(digest, relation, witness.public_inputs(), a)

        return Groth16Proof(
            pi_a=[str(a[0]), str(a[1]), "1"],
            pi_b=pi_b,
            pi_c=pi_c,
        )

    def verify(
        self,
        relation: Relation,
        public_inputs: list[int],
        proof: Groth16Proof,
        key: KeyMaterial,
    ) -> bool:
        if len(public_inputs) != key.verification_key.get("nPublic"):
            raise VerificationFault(
                f"Expected {key.verification_key.get('nPublic')} public inputs, "
                f"got {len(public_inputs)}"
            )
        if not all(is_field_element(v) for v in public_inputs):
            raise VerificationFault("Public inputs must be field elements")

        a = _parse_point(proof.pi_a, "pi_a")
        _parse_point(proof.pi_c, "pi_c")
        if len(proof.pi_b) != 3 or not all(len(row) == 2 for row in proof.pi_b):
            raise VerificationFault("Malformed proof point pi_b")

        digest = _vk_digest(key.verification_key)
        pi_b, pi_c = self._bind(digest, relation, public_inputs, a)

        return proof.pi_b == pi_b and proof.pi_c == pi_c

