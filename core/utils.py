"""
Consent Ledger Utility Functions
================================
Logging setup, hashing and identifier generation shared by the ledger
components.
"""

import hashlib
import json
import logging
import uuid
from typing import Dict, Optional, Union

import structlog


# =============================================================================
# Logging Setup
# =============================================================================


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
) -> structlog.BoundLogger:
    """
    Configure structured logging for the ledger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format (json, console).
        log_file: Optional file path for log output.

    Returns:
        Configured logger instance.
    """
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure standard logging
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        handlers=[
            logging.StreamHandler(),
            *(
                [logging.FileHandler(log_file)]
                if log_file
                else []
            ),
        ],
        force=True,
    )

    return structlog.get_logger()


# =============================================================================
# Hashing and Integrity
# =============================================================================


def compute_hash(data: Union[str, bytes, Dict], algorithm: str = "sha256") -> str:
    """
    Compute cryptographic hash of data.

    Args:
        data: Data to hash (string, bytes, or dictionary).
        algorithm: Hash algorithm (sha256, sha512, ...).

    Returns:
        Hexadecimal hash string.
    """
    if isinstance(data, dict):
        data = json.dumps(data, sort_keys=True, separators=(",", ":"))
    if isinstance(data, str):
        data = data.encode("utf-8")

    hasher = hashlib.new(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


def verify_hash(data: Union[str, bytes, Dict], expected_hash: str, algorithm: str = "sha256") -> bool:
    """Verify data integrity against expected hash."""
    return compute_hash(data, algorithm) == expected_hash


def genesis_hash(algorithm: str = "sha256") -> str:
    """All-zero anchor for the first entry of a chain, one digest wide."""
    return "0" * (hashlib.new(algorithm).digest_size * 2)


# =============================================================================
# ID Generation
# =============================================================================


def generate_id(prefix: str = "") -> str:
    """
    Generate a collision-resistant identifier.

    Args:
        prefix: Optional prefix for the ID (e.g. 'con').

    Returns:
        Unique identifier string.
    """
    random_part = uuid.uuid4().hex
    if prefix:
        return f"{prefix}-{random_part}"
    return random_part
