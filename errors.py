"""
Error types shared by the catalog, filter and builds layers.

Each carries the HTTP status it is rendered with by the API.
"""


class CatalogError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidQuery(CatalogError):
    """Malformed parameter, unsafe field path or bad filter/body."""
    status_code = 400


class BuildNotFound(CatalogError):
    status_code = 404


class BuildConflict(CatalogError):
    status_code = 409
