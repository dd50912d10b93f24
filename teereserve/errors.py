"""Domain errors. Each carries the HTTP status the API answers with."""


class TeeReserveError(Exception):
    """Base class for all TeeReserve domain exceptions."""

    status_code = 500

    def __init__(self, message):
        self.message = message
        super().__init__(message)


class ValidationError(TeeReserveError):
    status_code = 400


class PriceNotFound(TeeReserveError):
    status_code = 404


class NotFoundError(TeeReserveError):
    status_code = 404


class TeeTimeBlocked(TeeReserveError):
    status_code = 409


class ProviderError(TeeReserveError):
    status_code = 502


class UpstreamReadError(TeeReserveError):
    """A collection in the document store could not be read."""

    status_code = 503
