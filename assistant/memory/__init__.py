"""Session memory: chat transcripts with a TTL.

This package is dependency-light at import time. Postgres drivers are imported
lazily inside functions so the assistant can run on the in-memory store.
"""

from __future__ import annotations
