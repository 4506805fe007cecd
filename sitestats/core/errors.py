class SitestatsError(Exception):
    """Base class for errors raised by the ingestion core."""


class SourceFetchError(SitestatsError):
    """The remote batch for a source could not be obtained."""

    def __init__(self, host: str, message: str):
        super().__init__(f"{host}: {message}")
        self.host = host


class PayloadError(SitestatsError):
    """The remote batch was fetched but does not match the payload contract."""
