import enum


class ErrorKind(enum.Enum):
    """Reasons a scrape of the Spark REST API can fail."""

    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    BAD_STATUS = "bad_status"
    MALFORMED_RESPONSE = "malformed_response"


class SparkExporterError(Exception):
    """Base class for all exporter errors."""


class ConfigError(SparkExporterError):
    """Invalid startup configuration. Fatal."""


class ScrapeError(SparkExporterError):

    def __init__(self, kind, message):
        super().__init__(message)
        self.kind = kind


class FetchError(ScrapeError):
    """The upstream request did not produce a usable response."""

    def __init__(self, kind, uri, message, status_code=None):
        super().__init__(kind, "{} ({})".format(message, uri))
        self.uri = uri
        self.status_code = status_code


class DecodeError(ScrapeError):
    """The upstream response does not match the expected schema."""

    def __init__(self, message):
        super().__init__(ErrorKind.MALFORMED_RESPONSE, message)
