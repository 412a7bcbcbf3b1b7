"""
Address matching core for the ABR geocoder.

This package provides:
- Match-state models (Query, MatchLevel, LookupRecord)
- Japanese numeral and glyph-variant normalization
- Lookup store access (asyncpg, in-memory)
- Level-specific finders and the staged matching pipeline
"""

__version__ = "0.1.0"

__all__ = [
    "models",
    "errors",
    "config",
    "database",
    "normalizer",
    "lookup_store",
    "finders",
    "pipeline",
]
