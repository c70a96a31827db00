"""Errors raised by the import pipeline."""

NO_SESSIONS_MESSAGE = "No valid sessions found. Please check the file format."


class ImportFailedError(Exception):
    """Nothing could be imported from the upload."""

    def __init__(self, error: str = NO_SESSIONS_MESSAGE, message: str = "Import failed - no sessions found"):
        super().__init__(error)
        self.error = error
        self.message = message


class JsonStreamError(ValueError):
    """The uploaded document is not well-formed JSON."""
