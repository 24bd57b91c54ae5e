"""Error taxonomy shared by the store, the backends and the HTTP layer."""


class CatalogError(Exception):
    """Base class for catalog errors. ``status_code`` is the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CatalogError):
    """Missing or invalid product field."""

    status_code = 400


class NotFoundError(CatalogError):
    """No product with the given id."""

    status_code = 404


class BackendError(CatalogError):
    """Storage unreachable, unreadable or rejected the write."""

    status_code = 500


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass
