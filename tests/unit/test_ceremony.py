"""
Unit Tests for Trusted Setup Ceremonies
=======================================

Tests for the ceremony state machine, contribution chain and key
publication.

Version: 0.1.0
"""

import asyncio
import json

import pytest

from dealproof.zk.ceremony import CeremonyManager, CeremonyStatus
from dealproof.zk.errors import (
    CeremonyNotFoundError,
    CeremonyStateError,
    ProvingError,
    UnknownRelationError,
    ValidationError,
)
from dealproof.zk.mock import MockProvingBackend
from dealproof.zk.relations import RelationId
from tests.factories import make_contribution


async def _two_party(manager: CeremonyManager, relation=RelationId.CARD_COMMITMENT):
    ceremony = await manager.initialize_ceremony(relation, "Setup", "Test ceremony", "alice")
    await manager.add_participant(ceremony.id, "bob")
    return ceremony


class FailingKeyBackend(MockProvingBackend):
    """Backend whose key derivation always fails."""

    def derive_keys(self, relation, chain_state, ceremony_id):
        raise ProvingError("beacon failed")


class TestCeremonyLifecycle:
    """Tests for ceremony state transitions."""

    @pytest.mark.asyncio
    async def test_initialize(self, ceremony_manager):
        """A new ceremony starts with the initiator as sole participant."""
        ceremony = await ceremony_manager.initialize_ceremony(
            RelationId.DEAL_VERIFY, "Deal keys", "Keys for dealing", "alice"
        )

        assert ceremony.status == CeremonyStatus.INITIALIZED
        assert ceremony.participants == ["alice"]
        assert ceremony.chain_state == ceremony.genesis_state
        assert [e.event_type.value for e in ceremony.transcript] == ["ceremony_initialized"]

    @pytest.mark.asyncio
    async def test_initialize_unknown_relation(self, ceremony_manager):
        """Unknown relations are rejected."""
        with pytest.raises(UnknownRelationError):
            await ceremony_manager.initialize_ceremony("handRanking", "x", "y", "alice")

    @pytest.mark.asyncio
    async def test_add_participant_starts_ceremony(self, ceremony_manager):
        """Joining moves the ceremony in progress, keeping join order."""
        ceremony = await _two_party(ceremony_manager)
        updated = await ceremony_manager.add_participant(ceremony.id, "carol")

        assert updated.status == CeremonyStatus.IN_PROGRESS
        assert updated.participants == ["alice", "bob", "carol"]

    @pytest.mark.asyncio
    async def test_duplicate_participant(self, ceremony_manager):
        """A participant cannot join twice."""
        ceremony = await _two_party(ceremony_manager)
        with pytest.raises(CeremonyStateError):
            await ceremony_manager.add_participant(ceremony.id, "bob")

    @pytest.mark.asyncio
    async def test_max_participants(self, ceremony_manager):
        """Joining a full ceremony is rejected."""
        ceremony = await _two_party(ceremony_manager)
        await ceremony_manager.add_participant(ceremony.id, "carol")
        await ceremony_manager.add_participant(ceremony.id, "dave")

        with pytest.raises(CeremonyStateError, match="full"):
            await ceremony_manager.add_participant(ceremony.id, "erin")

    @pytest.mark.asyncio
    async def test_unknown_ceremony(self, ceremony_manager):
        """Operations on unknown ceremonies raise CeremonyNotFoundError."""
        with pytest.raises(CeremonyNotFoundError):
            await ceremony_manager.add_participant("missing", "bob")
        with pytest.raises(CeremonyNotFoundError):
            ceremony_manager.get_ceremony_status("missing")

    @pytest.mark.asyncio
    async def test_abort(self, ceremony_manager):
        """Aborting is terminal."""
        ceremony = await _two_party(ceremony_manager)
        aborted = await ceremony_manager.abort_ceremony(ceremony.id, "participant left")

        assert aborted.status == CeremonyStatus.ABORTED
        assert aborted.abort_reason == "participant left"

        with pytest.raises(CeremonyStateError):
            await ceremony_manager.abort_ceremony(ceremony.id, "again")
        with pytest.raises(CeremonyStateError):
            await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("a"))

    @pytest.mark.asyncio
    async def test_cleanup_timed_out(self, ceremony_manager, clock):
        """Stale non-terminal ceremonies are aborted; completed ones are kept."""
        stale = await _two_party(ceremony_manager)
        done = await _two_party(ceremony_manager, RelationId.DEAL_VERIFY)
        await ceremony_manager.make_contribution(done.id, "alice", make_contribution("a"))
        await ceremony_manager.make_contribution(done.id, "bob", make_contribution("b"))

        clock.advance(minutes=30)
        assert await ceremony_manager.cleanup_timed_out_ceremonies() == 0

        clock.advance(minutes=31)
        assert await ceremony_manager.cleanup_timed_out_ceremonies() == 1

        assert ceremony_manager.get_ceremony_status(stale.id).status == CeremonyStatus.ABORTED
        assert ceremony_manager.get_ceremony_status(done.id).status == CeremonyStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_forget_terminal_ceremony(self, ceremony_manager, registry):
        """Terminal ceremonies can be dropped; published keys stay."""
        done = await _two_party(ceremony_manager)
        await ceremony_manager.make_contribution(done.id, "alice", make_contribution("a"))
        await ceremony_manager.make_contribution(done.id, "bob", make_contribution("b"))

        await ceremony_manager.forget_ceremony(done.id)

        with pytest.raises(CeremonyNotFoundError):
            ceremony_manager.get_ceremony_status(done.id)
        with pytest.raises(CeremonyNotFoundError):
            await ceremony_manager.forget_ceremony(done.id)
        assert ceremony_manager.get_statistics().completed_ceremonies == 0
        assert registry.latest(RelationId.CARD_COMMITMENT).ceremony_id == done.id

    @pytest.mark.asyncio
    async def test_forget_active_ceremony_rejected(self, ceremony_manager):
        """Ceremonies still collecting contributions cannot be dropped."""
        ceremony = await _two_party(ceremony_manager)

        with pytest.raises(CeremonyStateError):
            await ceremony_manager.forget_ceremony(ceremony.id)
        status = ceremony_manager.get_ceremony_status(ceremony.id)
        assert status.status == CeremonyStatus.IN_PROGRESS


class TestContributions:
    """Tests for contributions and completion."""

    @pytest.mark.asyncio
    async def test_completes_at_quorum(self, ceremony_manager, registry):
        """The ceremony completes after exactly min_contributions contributors."""
        ceremony = await _two_party(ceremony_manager)

        await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("a"))
        status = ceremony_manager.get_ceremony_status(ceremony.id)
        assert status.status == CeremonyStatus.IN_PROGRESS
        assert not registry.has(RelationId.CARD_COMMITMENT)

        await ceremony_manager.make_contribution(ceremony.id, "bob", make_contribution("b"))
        status = ceremony_manager.get_ceremony_status(ceremony.id)
        assert status.status == CeremonyStatus.COMPLETED
        assert status.key_version == 1
        assert status.completed_at is not None

        material = registry.latest(RelationId.CARD_COMMITMENT)
        assert material.ceremony_id == ceremony.id
        assert material.transcript_hash == status.transcript_hash
        assert material.verification_key["nPublic"] == 1

    @pytest.mark.asyncio
    async def test_chain_state(self, ceremony_manager):
        """Each contribution links the previous state to the next."""
        ceremony = await _two_party(ceremony_manager)
        first = await ceremony_manager.make_contribution(
            ceremony.id, "alice", make_contribution("a")
        )
        second = await ceremony_manager.make_contribution(
            ceremony.id, "bob", make_contribution("b")
        )

        assert first.sequence == 1
        assert first.previous_state_hash == ceremony.genesis_state
        assert second.previous_state_hash == first.resulting_state_hash
        assert (
            ceremony_manager.get_ceremony_status(ceremony.id).chain_state
            == second.resulting_state_hash
        )

    @pytest.mark.asyncio
    async def test_raw_randomness_not_stored(self, ceremony_manager):
        """Only digests of the contribution are kept."""
        ceremony = await _two_party(ceremony_manager)
        await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("secret"))

        dumped = json.dumps(ceremony_manager.get_ceremony_status(ceremony.id).model_dump(mode="json"))
        assert "tau-secret" not in dumped
        assert "delta-secret" not in dumped

    @pytest.mark.asyncio
    async def test_unregistered_participant(self, ceremony_manager):
        """Only registered participants may contribute."""
        ceremony = await _two_party(ceremony_manager)
        with pytest.raises(CeremonyStateError, match="not registered"):
            await ceremony_manager.make_contribution(ceremony.id, "mallory", make_contribution("m"))

    @pytest.mark.asyncio
    async def test_contribute_once(self, ceremony_manager):
        """A participant contributes at most once."""
        ceremony = await ceremony_manager.initialize_ceremony(
            RelationId.CARD_COMMITMENT, "Setup", "Test", "alice"
        )
        await ceremony_manager.add_participant(ceremony.id, "bob")
        await ceremony_manager.add_participant(ceremony.id, "carol")
        await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("a"))

        with pytest.raises(CeremonyStateError, match="already contributed"):
            await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("a2"))

    @pytest.mark.asyncio
    async def test_duplicate_contribution_rejected(self, ceremony_manager):
        """A contribution repeating an earlier one is rejected."""
        ceremony = await _two_party(ceremony_manager)
        await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("same"))

        with pytest.raises(ValidationError, match="not unique"):
            await ceremony_manager.make_contribution(ceremony.id, "bob", make_contribution("same"))

    @pytest.mark.asyncio
    async def test_malformed_contribution(self, ceremony_manager):
        """Missing or empty components are rejected."""
        ceremony = await _two_party(ceremony_manager)

        with pytest.raises(ValidationError):
            await ceremony_manager.make_contribution(
                ceremony.id, "alice", {"alpha": "a", "beta": "b", "gamma": "c", "delta": "d"}
            )
        with pytest.raises(ValidationError):
            await ceremony_manager.make_contribution(
                ceremony.id,
                "alice",
                {"tau": "", "alpha": "a", "beta": "b", "gamma": "c", "delta": "d"},
            )

    @pytest.mark.asyncio
    async def test_wire_shape_contribution(self, ceremony_manager):
        """Contributions accept the wire shape with relationSpecific."""
        ceremony = await _two_party(ceremony_manager)
        contribution = await ceremony_manager.make_contribution(
            ceremony.id,
            "alice",
            {
                "tau": "t",
                "alpha": "a",
                "beta": "b",
                "gamma": "g",
                "delta": "d",
                "relationSpecific": {"deckSize": "52"},
            },
        )
        assert "relationSpecific.deckSize" in contribution.public_components

    @pytest.mark.asyncio
    async def test_completed_ceremony_is_closed(self, ceremony_manager):
        """No participants or contributions after completion."""
        ceremony = await ceremony_manager.initialize_ceremony(
            RelationId.CARD_COMMITMENT, "Setup", "Test", "alice"
        )
        await ceremony_manager.add_participant(ceremony.id, "bob")
        await ceremony_manager.add_participant(ceremony.id, "carol")
        await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("a"))
        await ceremony_manager.make_contribution(ceremony.id, "bob", make_contribution("b"))

        with pytest.raises(CeremonyStateError):
            await ceremony_manager.make_contribution(ceremony.id, "carol", make_contribution("c"))
        with pytest.raises(CeremonyStateError):
            await ceremony_manager.add_participant(ceremony.id, "dave")

    @pytest.mark.asyncio
    async def test_key_derivation_failure_leaves_ceremony_unchanged(
        self, registry, zk_settings, clock, id_factory
    ):
        """A failed key derivation does not apply the completing contribution."""
        manager = CeremonyManager(
            registry,
            FailingKeyBackend(),
            config=zk_settings,
            clock=clock,
            id_factory=id_factory,
        )
        ceremony = await _two_party(manager)
        await manager.make_contribution(ceremony.id, "alice", make_contribution("a"))

        with pytest.raises(ProvingError):
            await manager.make_contribution(ceremony.id, "bob", make_contribution("b"))

        status = manager.get_ceremony_status(ceremony.id)
        assert status.status == CeremonyStatus.IN_PROGRESS
        assert len(status.contributions) == 1
        assert not registry.has(RelationId.CARD_COMMITMENT)

    @pytest.mark.asyncio
    async def test_concurrent_contributions_serialized(self, ceremony_manager):
        """Concurrent contributions to one ceremony form a single chain."""
        ceremony = await _two_party(ceremony_manager)

        await asyncio.gather(
            ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("a")),
            ceremony_manager.make_contribution(ceremony.id, "bob", make_contribution("b")),
        )

        status = ceremony_manager.get_ceremony_status(ceremony.id)
        assert status.status == CeremonyStatus.COMPLETED
        assert [c.sequence for c in status.contributions] == [1, 2]
        assert ceremony_manager.verify_transcript(ceremony.id)

    @pytest.mark.asyncio
    async def test_distinct_ceremonies_in_parallel(self, ceremony_manager, registry):
        """Ceremonies for different relations progress independently."""
        first = await _two_party(ceremony_manager, RelationId.CARD_COMMITMENT)
        second = await _two_party(ceremony_manager, RelationId.SHUFFLE_VERIFY)

        await asyncio.gather(
            ceremony_manager.make_contribution(first.id, "alice", make_contribution("1a")),
            ceremony_manager.make_contribution(second.id, "alice", make_contribution("2a")),
            ceremony_manager.make_contribution(first.id, "bob", make_contribution("1b")),
            ceremony_manager.make_contribution(second.id, "bob", make_contribution("2b")),
        )

        assert registry.has(RelationId.CARD_COMMITMENT)
        assert registry.has(RelationId.SHUFFLE_VERIFY)

    @pytest.mark.asyncio
    async def test_new_ceremony_publishes_next_version(self, ceremony_manager, registry):
        """Setting a relation up again publishes version 2."""
        for label in ("first", "second"):
            ceremony = await _two_party(ceremony_manager)
            await ceremony_manager.make_contribution(
                ceremony.id, "alice", make_contribution(f"{label}-a")
            )
            await ceremony_manager.make_contribution(
                ceremony.id, "bob", make_contribution(f"{label}-b")
            )

        assert registry.latest(RelationId.CARD_COMMITMENT).version == 2
        assert registry.get(RelationId.CARD_COMMITMENT, 1).verification_key != registry.get(
            RelationId.CARD_COMMITMENT, 2
        ).verification_key


class TestTranscript:
    """Tests for transcript events and replay."""

    @pytest.mark.asyncio
    async def test_events(self, ceremony_manager):
        """Completed ceremonies record every step in order."""
        ceremony = await _two_party(ceremony_manager)
        await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("a"))
        await ceremony_manager.make_contribution(ceremony.id, "bob", make_contribution("b"))

        status = ceremony_manager.get_ceremony_status(ceremony.id)
        assert [e.event_type.value for e in status.transcript] == [
            "ceremony_initialized",
            "participant_joined",
            "contribution_made",
            "contribution_made",
            "ceremony_completed",
        ]

    @pytest.mark.asyncio
    async def test_verify_transcript(self, ceremony_manager):
        """Replaying an untouched chain succeeds."""
        ceremony = await _two_party(ceremony_manager)
        await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("a"))
        assert ceremony_manager.verify_transcript(ceremony.id)

        await ceremony_manager.make_contribution(ceremony.id, "bob", make_contribution("b"))
        assert ceremony_manager.verify_transcript(ceremony.id)

    @pytest.mark.asyncio
    async def test_verify_transcript_detects_tampering(self, ceremony_manager):
        """A rewritten contribution digest breaks the replay."""
        ceremony = await _two_party(ceremony_manager)
        await ceremony_manager.make_contribution(ceremony.id, "alice", make_contribution("a"))
        await ceremony_manager.make_contribution(ceremony.id, "bob", make_contribution("b"))

        stored = ceremony_manager._ceremonies[ceremony.id]
        stored.contributions[0] = stored.contributions[0].model_copy(
            update={"contribution_hash": "0" * 64}
        )

        assert not ceremony_manager.verify_transcript(ceremony.id)


class TestCeremonyQueries:
    """Tests for read-only snapshots."""

    @pytest.mark.asyncio
    async def test_status_is_a_copy(self, ceremony_manager):
        """Mutating a snapshot does not affect the ceremony."""
        ceremony = await _two_party(ceremony_manager)
        snapshot = ceremony_manager.get_ceremony_status(ceremony.id)
        snapshot.participants.append("mallory")

        assert ceremony_manager.get_ceremony_status(ceremony.id).participants == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_active_and_statistics(self, ceremony_manager):
        """Active listing and statistics reflect ceremony states."""
        active = await _two_party(ceremony_manager)
        aborted = await _two_party(ceremony_manager, RelationId.DEAL_VERIFY)
        await ceremony_manager.abort_ceremony(aborted.id, "cancelled")

        assert [c.id for c in ceremony_manager.list_active_ceremonies()] == [active.id]

        stats = ceremony_manager.get_statistics()
        assert stats.active_ceremonies == 1
        assert stats.aborted_ceremonies == 1
        assert stats.completed_ceremonies == 0
        assert stats.total_participants == 4
