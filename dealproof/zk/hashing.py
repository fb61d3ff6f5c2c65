"""
Field Hashing
=============

Hash primitive shared by every relation.

Elements are BN254 scalar field elements. ``field_hash`` absorbs an ordered
sequence of elements (32-byte big-endian each, prefixed with the arity) with
SHA-256 and reduces the digest mod the field order, so the output is itself
a field element.

Version: 0.1.0
"""

import hashlib
import random

# BN254 scalar field order
FIELD_ORDER = 21888242871839275222246405745257275088548364400416034343698204186575808495617

DECK_SIZE = 52


def is_field_element(value: object) -> bool:
    """Check that value is an int in [0, FIELD_ORDER)."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < FIELD_ORDER


def to_field(value: int | str | bytes) -> int:
    """
    Map a value to a field element.

    Integers must already lie in the field. Strings and bytes are hashed with
    SHA-256 and reduced mod the field order.

    Raises:
        ValueError: If an integer lies outside the field
    """
    if isinstance(value, int) and not isinstance(value, bool):
        if not is_field_element(value):
            raise ValueError(f"{value} is not a field element")
        return value

    data = value.encode() if isinstance(value, str) else bytes(value)
    digest = hashlib.sha256(data).digest()
    return int.from_bytes(digest, "big") % FIELD_ORDER


def field_hash(*elements: int) -> int:
    """
    Hash an ordered sequence of field elements to a field element.

    Raises:
        ValueError: If no elements are given or any element is outside the field
    """
    if not elements:
        raise ValueError("field_hash requires at least one element")

    hasher = hashlib.sha256()
    hasher.update(len(elements).to_bytes(2, "big"))
    for element in elements:
        if not is_field_element(element):
            raise ValueError(f"{element!r} is not a field element")
        hasher.update(element.to_bytes(32, "big"))

    return int.from_bytes(hasher.digest(), "big") % FIELD_ORDER


def derive_deck(seed: int) -> list[int]:
    """Deterministically derive a shuffled 52-card deck from a field-element seed."""
    deck = list(range(DECK_SIZE))
    random.Random(seed).shuffle(deck)
    return deck
