class PicqerApiError(Exception):
    """Base class for errors raised while talking to the Picqer API."""


class RateLimitExceeded(PicqerApiError):
    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(
            f"Rate limit still exceeded for {url} after {attempts} attempts"
        )
        self.url = url
        self.attempts = attempts


class TransportError(PicqerApiError):
    pass
