"""Archive identifier generation."""

from __future__ import annotations

import hashlib
import logging
import os
import time

logger = logging.getLogger(__name__)

SEED_BYTES = 32


def generate_id(name: str) -> str:
    """Return an unguessable hex identifier for an archive.

    The digest covers 32 random bytes, the caller-supplied name and the
    current time in nanoseconds, so two calls never share an ID even for
    the same name.

    Args:
        name: Discriminator such as the source path or upload name

    Returns:
        128-character SHA-512 hex digest, or an empty string when the
        system randomness source is unavailable
    """
    try:
        seed = os.urandom(SEED_BYTES)
    except (OSError, NotImplementedError) as e:
        logger.error(f"Randomness source unavailable: {e}")
        return ""

    digest = hashlib.sha512()
    digest.update(seed)
    digest.update(name.encode("utf-8"))
    digest.update(str(time.time_ns()).encode("ascii"))
    return digest.hexdigest()
