"""
DealProof
=========

Zero-knowledge proof orchestration for verifiable card dealing.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - zk: Relations, trusted setup ceremonies, proof generation and verification

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "DealProof Team"

from dealproof.config import settings
from dealproof.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
