class VitalsError(Exception):
    pass


class InvalidSample(VitalsError, ValueError):
    """Local sample is negative, NaN or infinite."""


class InvalidDistribution(VitalsError, ValueError):
    """Field distribution fractions are negative or sum above 1.0."""


class DistributionAlreadyAttached(VitalsError):
    pass


class FieldDataError(VitalsError):
    pass


class FieldDataUnavailable(FieldDataError):
    """Neither page-level nor origin-level field data exists for the URL."""

    def __init__(self, url: str, form_factor: str):
        self.url = url
        self.form_factor = form_factor
        super().__init__(f"No field data for {url} ({form_factor})")


class FieldDataTransportError(FieldDataError):
    """Timeout, unexpected HTTP status or malformed payload from the field-data API."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
