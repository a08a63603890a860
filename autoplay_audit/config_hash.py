"""Canonical hashing for wheel models and audit configuration.

This module provides the shared hash functions used by:
- SegmentSet.fingerprint() (pooling guard for aggregators and the Redis store)
- scripts/audit_autoplay.py (report header)

Hashes MUST be computed identically in every location, so everything goes
through the same canonical JSON encoding.
"""
import hashlib
import json
from typing import Any

from autoplay_audit.config import settings


def canonical_hash(snapshot: Any) -> str:
    """Return 16-char hex sha256 of the canonical JSON of ``snapshot``."""
    canonical = json.dumps(snapshot, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


def get_config_hash(
    confidence_level: float | None = None,
    min_expected_count: float | None = None,
) -> str:
    """
    Hash of the settings that change an audit verdict.

    ``confidence_level`` and ``min_expected_count`` override the configured
    values when a run uses its own thresholds, so the hash describes the run.
    Two audit runs with the same config hash, model fingerprint and seed
    are directly comparable.
    """
    config_snapshot = {
        "confidence_level": (
            confidence_level if confidence_level is not None else settings.confidence_level
        ),
        "min_expected_count": (
            min_expected_count if min_expected_count is not None else settings.min_expected_count
        ),
        "settlement_timeout_seconds": settings.settlement_timeout_seconds,
        "min_bet": settings.min_bet,
        "max_bet": settings.max_bet,
        "allowed_bets": list(settings.allowed_bets),
    }
    return canonical_hash(config_snapshot)
