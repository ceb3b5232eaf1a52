"""EyeSpy face search client."""

from .api import EyeSpyClient, FaceRecord, FaceResultBundle
from .common import ClientConfig, EyeSpyError, NetworkError, NotFoundError, UploadError
from .realtime import GLOBAL, RealtimeConnection
from .reconciliation import CollectionSync, FaceCollection

__all__ = [
    "ClientConfig",
    "CollectionSync",
    "EyeSpyClient",
    "EyeSpyError",
    "FaceCollection",
    "FaceRecord",
    "FaceResultBundle",
    "GLOBAL",
    "NetworkError",
    "NotFoundError",
    "RealtimeConnection",
    "UploadError",
]
