"""Error taxonomy shared by the room registry, blob store and routers.

Services raise these; routers translate them into HTTP status codes or
WebSocket ``error`` frames.
"""


class RelayError(Exception):
    """Base class for errors surfaced to clients."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RelayError):
    """Missing or malformed client input (missing file, missing room id, ...)."""

    status_code = 400


class NotFoundError(RelayError):
    """Unknown room, file record, blob or saved text."""

    status_code = 404


class StorageError(RelayError):
    """Filesystem failure while writing or unlinking a blob."""

    status_code = 500
