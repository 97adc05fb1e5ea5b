class SheetpipeError(Exception):
    """Base class for domain errors that map to a structured API failure."""
    status_code = 400
    code = "domain_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SheetNotFound(SheetpipeError):
    status_code = 404
    code = "sheet_not_found"

    def __init__(self, message: str = "Sheet not found or unauthorized"):
        super().__init__(message)


class EventNotFound(SheetpipeError):
    status_code = 404
    code = "event_not_found"


class UnauthorizedError(SheetpipeError):
    status_code = 401
    code = "unauthorized"


class UnsupportedExportFormat(SheetpipeError):
    code = "unsupported_format"

    def __init__(self, fmt: str):
        super().__init__(f'Invalid format "{fmt}". Must be "json" or "csv"')


class EnrichmentError(Exception):
    """Raised by an enricher when the external backend cannot produce content."""


class PermanentEventError(Exception):
    """Handler failure that retrying cannot fix. The event is failed at once."""


class InvalidEventPayload(PermanentEventError, ValueError):
    pass
