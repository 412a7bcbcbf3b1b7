"""
ABR geocoder service.

This package provides:
- Address file input and CSV / JSON Lines output
- Dataset ingestion into the lookup store
- CKAN catalog client for dataset updates
- The abr-geocoder command line
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "logging_utils",
    "dataset",
    "readers",
    "formatters",
    "ingestion",
    "catalog",
    "runner",
    "main",
]
