from .config import ClientConfig
from .exceptions import (
    ChannelConnectionError,
    EyeSpyError,
    NetworkError,
    NotFoundError,
    UploadError,
)

__all__ = [
    "ClientConfig",
    "ChannelConnectionError",
    "EyeSpyError",
    "NetworkError",
    "NotFoundError",
    "UploadError",
]
