"""
Unit Tests for Logging
======================

Version: 0.1.0
"""

import structlog

from dealproof.logging import REDACTED, log_context, redact_private_inputs


class TestRedaction:
    """Tests for private input redaction."""

    def test_private_signals_redacted(self):
        """Witness values never survive the processor."""
        event = redact_private_inputs(
            None,
            "info",
            {
                "event": "witness_built",
                "relation": "dealVerify",
                "cardValue": 7,
                "deck_seed": 99,
                "position": 3,
            },
        )

        assert event["cardValue"] == REDACTED
        assert event["deck_seed"] == REDACTED
        assert event["position"] == 3
        assert event["relation"] == "dealVerify"

    def test_nested_values_redacted(self):
        """Nested dicts are redacted too."""
        event = redact_private_inputs(
            None,
            "info",
            {"event": "contribution_received", "data": {"tau": "x", "participant": "a"}},
        )

        assert event["data"] == {"tau": REDACTED, "participant": "a"}


class TestLogContext:
    """Tests for scoped context binding."""

    def test_bindings_restored(self):
        """Context is bound inside the block only."""
        structlog.contextvars.clear_contextvars()

        with log_context(game_id="g1"):
            assert structlog.contextvars.get_contextvars() == {"game_id": "g1"}

        assert structlog.contextvars.get_contextvars() == {}
