from .datetime import (
    EPOCH_ZERO,
    coerce_datetime,
    epoch_ms,
    format_api_datetime,
    is_epoch_zero,
    parse_datetime,
)

__all__ = [
    "EPOCH_ZERO",
    "coerce_datetime",
    "epoch_ms",
    "format_api_datetime",
    "is_epoch_zero",
    "parse_datetime",
]
