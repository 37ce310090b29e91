"""
Reference-image library seeder.

Builds a per-product-family image library for visual matching: candidate
URLs come from seed manifests or image search, pass through validation,
content-hash dedup and embedding, and land in a SQLite catalog whose family
readiness is tracked over a durable ingest queue.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]
