"""
Error taxonomy for the matching core.

A finder that finds nothing is not an error: the query passes through
unchanged. Everything below is fatal to a run.
"""


class GeocoderError(Exception):
    """Base error for the geocoder."""


class ContractViolation(GeocoderError):
    """Raised when a finder is invoked without its required parent fields.

    Signals a pipeline wiring bug, never a data condition.
    """

    def __init__(self, finder: str, missing: list[str]):
        self.finder = finder
        self.missing = missing
        super().__init__(
            f"{finder} invoked without required fields: {', '.join(missing)}"
        )


class StoreFailure(GeocoderError):
    """Raised when the lookup store is unreachable or returns a malformed result."""


class DatasetError(GeocoderError):
    """Raised when a dataset file cannot be interpreted."""


class CatalogError(GeocoderError):
    """Raised when the dataset catalog is unreachable or malformed."""


__all__ = [
    "GeocoderError",
    "ContractViolation",
    "StoreFailure",
    "DatasetError",
    "CatalogError",
]
