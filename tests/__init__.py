"""
DealProof Test Suite
====================

Test organization:
- tests/unit/          - Unit tests (mock backend, faked snarkjs CLI)

Run tests:
    pytest                          # All tests
    pytest tests/unit/test_engine.py
"""
