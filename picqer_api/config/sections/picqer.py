from picqer_api.config.serializable import Serializable


class Picqer(Serializable):
    _required = ("token", "base_url")

    token: str = ""
    base_url: str = ""
    requests_per_minute: int = 30
    rate_limit_cooldown_seconds: float = 20.0
    max_rate_limit_retries: int = 5
    max_transport_attempts: int = 5
    page_size: int = 100
    timeout_seconds: float = 30.0
