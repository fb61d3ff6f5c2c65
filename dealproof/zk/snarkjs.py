"""
snarkjs Proving Backend
=======================

Groth16 over BN254 using snarkjs via subprocess.

Expected circuit build layout (one directory per relation):

    <build_dir>/<relation>/<relation>_js/<relation>.wasm
    <build_dir>/<relation>/<relation>_0000.zkey

``<relation>_0000.zkey`` is the circuit-specific phase 2 starting key. Key
derivation finalizes it with a random beacon whose value is the ceremony's
final chain state, then exports the verification key.

Version: 0.1.0
"""

import json
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any

from dealproof.config import BackendMode
from dealproof.logging import get_logger
from dealproof.zk.backend import ProvingBackend
from dealproof.zk.errors import ProvingError, VerificationFault, ZKError
from dealproof.zk.keys import KeyMaterial
from dealproof.zk.models import Groth16Proof
from dealproof.zk.relations import BaseWitness, Relation

logger = get_logger(__name__)

# Default circuit build directory
DEFAULT_BUILD_DIR = Path(__file__).parent.parent.parent / "circuits" / "build"


class SnarkjsBackend(ProvingBackend):
    """
    Groth16 backend driving the snarkjs CLI.

    Usage:
        backend = SnarkjsBackend(build_dir="circuits/build")
        await backend.initialize()
    """

    def __init__(
        self,
        build_dir: str | Path | None = None,
        command: str = "npx",
        beacon_iterations_exp: int = 10,
    ) -> None:
        """
        Initialize the backend.

        Args:
            build_dir: Path to circuit build directory.
                      Defaults to circuits/build/
            command: Launcher for snarkjs ("npx" or a direct snarkjs path)
            beacon_iterations_exp: Beacon hash iterations exponent
        """
        self.build_dir = Path(build_dir) if build_dir else DEFAULT_BUILD_DIR
        self.command = command
        self.beacon_iterations_exp = beacon_iterations_exp

    @property
    def mode(self) -> BackendMode:
        return BackendMode.SNARKJS

    def _snarkjs_args(self, *args: str) -> list[str]:
        if self.command == "npx":
            return ["npx", "snarkjs", *args]
        return [self.command, *args]

    def _run(
        self,
        *args: str,
        fault: type[ZKError] = ProvingError,
    ) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                self._snarkjs_args(*args),
                capture_output=True,
                text=True,
                cwd=self.build_dir.parent,
            )
        except OSError as e:
            logger.error(
                "snarkjs_launch_failed",
                command=self.command,
                error=str(e),
            )
            raise fault(f"Could not run snarkjs: {e}") from e

    def _circuit_dir(self, relation: Relation) -> Path:
        return self.build_dir / relation.relation_id.value

    async def initialize(self) -> None:
        """Validate that required circuit files exist."""
        if not self.build_dir.exists():
            logger.warning(
                "zk_circuit_build_dir_not_found",
                path=str(self.build_dir),
            )
            return

        logger.info("snarkjs_backend_initialized", build_dir=str(self.build_dir))

    def derive_keys(
        self,
        relation: Relation,
        chain_state: str,
        ceremony_id: str,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        name = relation.relation_id.value
        circuit_dir = self._circuit_dir(relation)
        initial_zkey = circuit_dir / f"{name}_0000.zkey"
        final_zkey = circuit_dir / f"{name}_{ceremony_id}.zkey"
        vkey_path = circuit_dir / f"{name}_{ceremony_id}_vkey.json"

        if not initial_zkey.exists():
            raise ProvingError(f"Initial zkey not found: {initial_zkey}")

        result = self._run(
            "zkey",
            "beacon",
            str(initial_zkey),
            str(final_zkey),
            chain_state,
            str(self.beacon_iterations_exp),
            f"-n=dealproof ceremony {ceremony_id}",
        )
        if result.returncode != 0:
            logger.error(
                "snarkjs_beacon_failed",
                stderr=result.stderr,
                circuit=name,
            )
            raise ProvingError(f"Key finalization failed: {result.stderr}")

        result = self._run(
            "zkey",
            "export",
            "verificationkey",
            str(final_zkey),
            str(vkey_path),
        )
        if result.returncode != 0:
            logger.error(
                "snarkjs_vkey_export_failed",
                stderr=result.stderr,
                circuit=name,
            )
            raise ProvingError(f"Verification key export failed: {result.stderr}")

        with open(vkey_path) as f:
            verification_key = json.load(f)

        proving_key = {
            "protocol": "groth16",
            "curve": verification_key.get("curve", "bn128"),
            "relation": name,
            "ceremony_id": ceremony_id,
            "zkey_path": str(final_zkey),
        }

        logger.info("snarkjs_keys_derived", circuit=name, ceremony_id=ceremony_id)

        return proving_key, verification_key

    def prove(
        self,
        relation: Relation,
        witness: BaseWitness,
        key: KeyMaterial,
    ) -> Groth16Proof:
        name = relation.relation_id.value
        wasm_path = self._circuit_dir(relation) / f"{name}_js" / f"{name}.wasm"
        zkey_path = Path(key.proving_key["zkey_path"])

        if not wasm_path.exists():
            raise ProvingError(f"Circuit WASM not found: {wasm_path}")
        if not zkey_path.exists():
            raise ProvingError(f"Proving key not found: {zkey_path}")

        with tempfile.TemporaryDirectory(prefix=f"{name}_") as tmp:
            work_dir = Path(tmp)
            input_file = work_dir / "input.json"
            proof_file = work_dir / "proof.json"
            public_file = work_dir / "public.json"

            with open(input_file, "w") as f:
                json.dump(witness.circuit_inputs(), f)

            start_time = time.time()

            result = self._run(
                "groth16",
                "fullprove",
                str(input_file),
                str(wasm_path),
                str(zkey_path),
                str(proof_file),
                str(public_file),
            )

            proving_time_ms = int((time.time() - start_time) * 1000)

            if result.returncode != 0:
                logger.error(
                    "snarkjs_proof_generation_failed",
                    stderr=result.stderr,
                    circuit=name,
                )
                raise ProvingError(f"Proof generation failed: {result.stderr}")

            with open(proof_file) as f:
                proof_json = json.load(f)
            with open(public_file) as f:
                public_signals = json.load(f)

        if [int(s) for s in public_signals] != witness.public_inputs():
            raise ProvingError(
                "Circuit public signals do not match the witness",
                details={"circuit": name},
            )

        logger.debug(
            "snarkjs_proof_generated",
            circuit=name,
            proving_time_ms=proving_time_ms,
        )

        return Groth16Proof(**proof_json)

    def verify(
        self,
        relation: Relation,
        public_inputs: list[int],
        proof: Groth16Proof,
        key: KeyMaterial,
    ) -> bool:
        name = relation.relation_id.value

        if len(public_inputs) != relation.n_public:
            raise VerificationFault(
                f"Expected {relation.n_public} public inputs, got {len(public_inputs)}"
            )

        with tempfile.TemporaryDirectory(prefix=f"{name}_verify_") as tmp:
            work_dir = Path(tmp)
            vkey_file = work_dir / "verification_key.json"
            proof_file = work_dir / "proof.json"
            public_file = work_dir / "public.json"

            with open(vkey_file, "w") as f:
                json.dump(key.verification_key, f)
            with open(proof_file, "w") as f:
                json.dump(proof.model_dump(), f)
            with open(public_file, "w") as f:
                json.dump([str(v) for v in public_inputs], f)

            result = self._run(
                "groth16",
                "verify",
                str(vkey_file),
                str(public_file),
                str(proof_file),
                fault=VerificationFault,
            )

        if result.returncode == 0 and "OK" in result.stdout:
            return True
        if "Invalid proof" in result.stdout or "Invalid proof" in result.stderr:
            return False

        logger.error(
            "snarkjs_verification_crashed",
            stderr=result.stderr,
            circuit=name,
        )
        raise VerificationFault(f"Verifier failed: {result.stderr}")
