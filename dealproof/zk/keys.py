"""
Key Material Registry
=====================

Versioned store for the proving/verification keys published by completed
trusted setup ceremonies.

Each relation may be set up more than once; every completed ceremony
publishes the next version. Proofs record the version they were generated
against and are always verified with that version.

Version: 0.1.0
"""

import threading
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dealproof.logging import get_logger
from dealproof.zk.errors import SetupNotReadyError
from dealproof.zk.relations import RelationId

logger = get_logger(__name__)


class KeyMaterial(BaseModel):
    """Proving and verification keys for one relation, one ceremony."""

    model_config = ConfigDict(frozen=True)

    relation: RelationId
    proving_key: dict[str, Any]
    verification_key: dict[str, Any]
    version: int = Field(..., ge=1)
    ceremony_id: str
    transcript_hash: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class KeyRegistry:
    """
    Thread-safe registry of key material by relation and version.

    Usage:
        registry = KeyRegistry()
        material = registry.publish(RelationId.CARD_COMMITMENT, pk, vk, ceremony_id, transcript_hash)
        same = registry.get(RelationId.CARD_COMMITMENT, material.version)
        latest = registry.latest(RelationId.CARD_COMMITMENT)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: dict[RelationId, dict[int, KeyMaterial]] = {}

    def publish(
        self,
        relation: RelationId,
        proving_key: dict[str, Any],
        verification_key: dict[str, Any],
        ceremony_id: str,
        transcript_hash: str,
        created_at: datetime | None = None,
    ) -> KeyMaterial:
        """
        Publish key material under the next version for its relation.

        Returns:
            The published KeyMaterial
        """
        with self._lock:
            versions = self._keys.setdefault(relation, {})
            material = KeyMaterial(
                relation=relation,
                proving_key=proving_key,
                verification_key=verification_key,
                version=max(versions, default=0) + 1,
                ceremony_id=ceremony_id,
                transcript_hash=transcript_hash,
                created_at=created_at or datetime.now(UTC),
            )
            versions[material.version] = material

        logger.info(
            "key_material_published",
            relation=relation.value,
            version=material.version,
            ceremony_id=ceremony_id,
        )
        return material

    def get(self, relation: RelationId, version: int) -> KeyMaterial:
        """
        Look up a specific key version.

        Raises:
            SetupNotReadyError: If no such key has been published
        """
        with self._lock:
            material = self._keys.get(relation, {}).get(version)
        if material is None:
            raise SetupNotReadyError(
                f"No key material version {version} for {relation.value}",
                details={"relation": relation.value, "version": version},
            )
        return material

    def latest(self, relation: RelationId) -> KeyMaterial:
        """
        Look up the most recent key for relation.

        Raises:
            SetupNotReadyError: If the relation has no completed ceremony
        """
        with self._lock:
            versions = self._keys.get(relation, {})
            material = versions[max(versions)] if versions else None
        if material is None:
            raise SetupNotReadyError(
                f"Trusted setup not completed for {relation.value}",
                details={"relation": relation.value},
            )
        return material

    def has(self, relation: RelationId) -> bool:
        with self._lock:
            return bool(self._keys.get(relation))

    def relations(self) -> list[RelationId]:
        """Relations with at least one published key."""
        with self._lock:
            return [relation for relation, versions in self._keys.items() if versions]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(versions) for versions in self._keys.values())
