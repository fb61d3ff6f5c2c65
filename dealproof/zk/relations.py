"""
Relation Definitions
====================

Declarative constraint specifications for the card-game relations.

Each relation names its ordered public and private inputs (the wire names
used by the circuits) and a list of constraints over a typed witness.
Relations are pure and stateless: they are consumed by the ceremony manager
(to size key material) and by the proof manager and backends (to check
witnesses before and during proving).

Relations:
    - cardCommitment: a hidden card value is bound to a public commitment
    - dealVerify: a dealt card is bound to its commitment and deck position
    - shuffleVerify: two 8-card samples hash to the claimed values
    - deckGeneration: a deck was derived deterministically from a seed

Version: 0.1.0
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from dealproof.zk.errors import UnknownRelationError, ValidationError
from dealproof.zk.hashing import DECK_SIZE, FIELD_ORDER, derive_deck, field_hash

SHUFFLE_SAMPLE_SIZE = 8

FieldElement = Annotated[int, Field(ge=0, lt=FIELD_ORDER)]


class RelationId(str, Enum):
    """Identifiers of the supported relations (circuit names)."""

    CARD_COMMITMENT = "cardCommitment"
    DEAL_VERIFY = "dealVerify"
    SHUFFLE_VERIFY = "shuffleVerify"
    DECK_GENERATION = "deckGeneration"


class ConstraintType(str, Enum):
    """Kinds of constraints a relation imposes."""

    RANGE = "range"
    EQUALITY = "equality"
    COMMITMENT = "commitment"
    PERMUTATION = "permutation"


# =============================================================================
# Witnesses
# =============================================================================


class BaseWitness(BaseModel):
    """Full public and private assignment for one relation instance."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    relation: str

    @property
    def relation_id(self) -> RelationId:
        return RelationId(self.relation)

    def public_inputs(self) -> list[int]:
        """Public inputs in the relation's fixed order."""
        relation = get_relation(self.relation_id)
        values = self.model_dump(by_alias=True)
        return [values[name] for name in relation.public_inputs]

    def circuit_inputs(self) -> dict[str, Any]:
        """All signals keyed by wire name, as decimal strings."""
        values = self.model_dump(by_alias=True, exclude={"relation"})
        return {
            name: [str(v) for v in value] if isinstance(value, list) else str(value)
            for name, value in values.items()
        }


class CardCommitmentWitness(BaseWitness):
    """Witness for cardCommitment."""

    relation: Literal["cardCommitment"] = "cardCommitment"

    commitment: FieldElement
    card_value: FieldElement = Field(..., alias="cardValue")
    nonce: FieldElement

    @classmethod
    def build(cls, card_value: int, nonce: int) -> "CardCommitmentWitness":
        """Build a witness whose commitment opens to card_value."""
        return cls(
            commitment=field_hash(card_value, nonce),
            card_value=card_value,
            nonce=nonce,
        )


class DealVerifyWitness(BaseWitness):
    """Witness for dealVerify."""

    relation: Literal["dealVerify"] = "dealVerify"

    deck_commitment: FieldElement = Field(..., alias="deckCommitment")
    card_commitment: FieldElement = Field(..., alias="cardCommitment")
    position: FieldElement
    card_value: FieldElement = Field(..., alias="cardValue")
    card_nonce: FieldElement = Field(..., alias="cardNonce")
    deck_seed: FieldElement = Field(..., alias="deckSeed")

    @classmethod
    def build(
        cls,
        card_value: int,
        position: int,
        card_nonce: int,
        deck_seed: int,
    ) -> "DealVerifyWitness":
        """Build a witness binding card_value to position under deck_seed."""
        return cls(
            deck_commitment=field_hash(card_value, position, deck_seed),
            card_commitment=field_hash(card_value, card_nonce),
            position=position,
            card_value=card_value,
            card_nonce=card_nonce,
            deck_seed=deck_seed,
        )


SampleCards = Annotated[
    list[FieldElement],
    Field(min_length=SHUFFLE_SAMPLE_SIZE, max_length=SHUFFLE_SAMPLE_SIZE),
]


class ShuffleVerifyWitness(BaseWitness):
    """Witness for shuffleVerify over an 8-card sample."""

    relation: Literal["shuffleVerify"] = "shuffleVerify"

    original_hash: FieldElement = Field(..., alias="originalHash")
    shuffled_hash: FieldElement = Field(..., alias="shuffledHash")
    original_cards: SampleCards = Field(..., alias="originalCards")
    shuffled_cards: SampleCards = Field(..., alias="shuffledCards")
    permutation: SampleCards

    @classmethod
    def build(
        cls,
        original_cards: list[int],
        shuffled_cards: list[int],
        permutation: list[int],
    ) -> "ShuffleVerifyWitness":
        """Build a witness whose hashes match the given samples."""
        return cls(
            original_hash=field_hash(*original_cards),
            shuffled_hash=field_hash(*shuffled_cards),
            original_cards=original_cards,
            shuffled_cards=shuffled_cards,
            permutation=permutation,
        )


class DeckGenerationWitness(BaseWitness):
    """Witness for deckGeneration."""

    relation: Literal["deckGeneration"] = "deckGeneration"

    seed_commitment: FieldElement = Field(..., alias="seedCommitment")
    deck_hash: FieldElement = Field(..., alias="deckHash")
    seed: FieldElement
    deck: Annotated[list[FieldElement], Field(min_length=DECK_SIZE, max_length=DECK_SIZE)]

    @classmethod
    def build(cls, seed: int) -> "DeckGenerationWitness":
        """Build a witness for the deck derived from seed."""
        deck = derive_deck(seed)
        return cls(
            seed_commitment=field_hash(seed),
            deck_hash=field_hash(*deck),
            seed=seed,
            deck=deck,
        )


Witness = Annotated[
    Union[
        CardCommitmentWitness,
        DealVerifyWitness,
        ShuffleVerifyWitness,
        DeckGenerationWitness,
    ],
    Field(discriminator="relation"),
]

_witness_adapter: TypeAdapter[Witness] = TypeAdapter(Witness)


def parse_witness(data: dict[str, Any]) -> BaseWitness:
    """
    Parse a witness from wire data, dispatching on its ``relation`` tag.

    Raises:
        ValidationError: If the data does not describe a well-formed witness
    """
    try:
        return _witness_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed witness: {e}") from e


# =============================================================================
# Relations
# =============================================================================


@dataclass(frozen=True)
class Constraint:
    """A single named constraint over a witness."""

    constraint_type: ConstraintType
    description: str
    holds: Callable[[Any], bool]


@dataclass(frozen=True)
class Relation:
    """A relation: ordered input schemas plus constraints."""

    relation_id: RelationId
    description: str
    public_inputs: tuple[str, ...]
    private_inputs: tuple[str, ...]
    constraints: tuple[Constraint, ...]
    witness_type: type[BaseWitness]

    @property
    def n_public(self) -> int:
        return len(self.public_inputs)

    def check(self, witness: BaseWitness) -> list[str]:
        """
        Evaluate every constraint against the witness.

        Returns:
            Descriptions of the violated constraints (empty if satisfied)

        Raises:
            ValidationError: If the witness belongs to another relation
        """
        if not isinstance(witness, self.witness_type):
            raise ValidationError(
                f"Witness for {witness.relation} cannot be checked "
                f"against {self.relation_id.value}"
            )
        return [c.description for c in self.constraints if not c.holds(witness)]

    def is_satisfied(self, witness: BaseWitness) -> bool:
        return not self.check(witness)


def _card_in_range(value: int) -> bool:
    return 0 <= value < DECK_SIZE


CARD_COMMITMENT = Relation(
    relation_id=RelationId.CARD_COMMITMENT,
    description="Commitment to a card without revealing it",
    public_inputs=("commitment",),
    private_inputs=("cardValue", "nonce"),
    constraints=(
        Constraint(
            ConstraintType.RANGE,
            "cardValue is in [0, 52)",
            lambda w: _card_in_range(w.card_value),
        ),
        Constraint(
            ConstraintType.COMMITMENT,
            "commitment = Hash(cardValue, nonce)",
            lambda w: w.commitment == field_hash(w.card_value, w.nonce),
        ),
    ),
    witness_type=CardCommitmentWitness,
)

DEAL_VERIFY = Relation(
    relation_id=RelationId.DEAL_VERIFY,
    description="Dealt card is bound to its commitment and deck position",
    public_inputs=("deckCommitment", "cardCommitment", "position"),
    private_inputs=("cardValue", "cardNonce", "deckSeed"),
    constraints=(
        Constraint(
            ConstraintType.RANGE,
            "cardValue is in [0, 52)",
            lambda w: _card_in_range(w.card_value),
        ),
        Constraint(
            ConstraintType.RANGE,
            "position is in [0, 52)",
            lambda w: _card_in_range(w.position),
        ),
        Constraint(
            ConstraintType.COMMITMENT,
            "cardCommitment = Hash(cardValue, cardNonce)",
            lambda w: w.card_commitment == field_hash(w.card_value, w.card_nonce),
        ),
        Constraint(
            ConstraintType.COMMITMENT,
            "deckCommitment = Hash(cardValue, position, deckSeed)",
            lambda w: w.deck_commitment == field_hash(w.card_value, w.position, w.deck_seed),
        ),
    ),
    witness_type=DealVerifyWitness,
)

# Shuffled cards are not tied to originalCards[permutation[i]]; the relation
# only checks ranges and the two sample hashes.
SHUFFLE_VERIFY = Relation(
    relation_id=RelationId.SHUFFLE_VERIFY,
    description="Two 8-card samples hash to the claimed shuffle values",
    public_inputs=("originalHash", "shuffledHash"),
    private_inputs=("originalCards", "shuffledCards", "permutation"),
    constraints=(
        Constraint(
            ConstraintType.RANGE,
            "permutation entries are in [0, 8)",
            lambda w: all(0 <= p < SHUFFLE_SAMPLE_SIZE for p in w.permutation),
        ),
        Constraint(
            ConstraintType.RANGE,
            "shuffledCards entries are in [0, 52)",
            lambda w: all(_card_in_range(c) for c in w.shuffled_cards),
        ),
        Constraint(
            ConstraintType.COMMITMENT,
            "originalHash = Hash(originalCards)",
            lambda w: w.original_hash == field_hash(*w.original_cards),
        ),
        Constraint(
            ConstraintType.COMMITMENT,
            "shuffledHash = Hash(shuffledCards)",
            lambda w: w.shuffled_hash == field_hash(*w.shuffled_cards),
        ),
    ),
    witness_type=ShuffleVerifyWitness,
)

DECK_GENERATION = Relation(
    relation_id=RelationId.DECK_GENERATION,
    description="A 52-card deck was derived deterministically from a seed",
    public_inputs=("seedCommitment", "deckHash"),
    private_inputs=("seed", "deck"),
    constraints=(
        Constraint(
            ConstraintType.RANGE,
            "deck entries are in [0, 52)",
            lambda w: all(_card_in_range(c) for c in w.deck),
        ),
        Constraint(
            ConstraintType.PERMUTATION,
            "deck has no duplicate cards",
            lambda w: len(set(w.deck)) == DECK_SIZE,
        ),
        Constraint(
            ConstraintType.EQUALITY,
            "deck = derive(seed)",
            lambda w: w.deck == derive_deck(w.seed),
        ),
        Constraint(
            ConstraintType.COMMITMENT,
            "seedCommitment = Hash(seed)",
            lambda w: w.seed_commitment == field_hash(w.seed),
        ),
        Constraint(
            ConstraintType.COMMITMENT,
            "deckHash = Hash(deck)",
            lambda w: w.deck_hash == field_hash(*w.deck),
        ),
    ),
    witness_type=DeckGenerationWitness,
)

RELATIONS: dict[RelationId, Relation] = {
    relation.relation_id: relation
    for relation in (CARD_COMMITMENT, DEAL_VERIFY, SHUFFLE_VERIFY, DECK_GENERATION)
}


def get_relation(relation_id: RelationId | str) -> Relation:
    """
    Look up a relation by id or circuit name.

    Raises:
        UnknownRelationError: If no such relation is defined
    """
    try:
        return RELATIONS[RelationId(relation_id)]
    except (ValueError, KeyError):
        raise UnknownRelationError(f"Unknown relation: {relation_id}") from None
