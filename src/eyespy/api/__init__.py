from .cache import ResponseCache
from .client import EyeSpyClient, normalize_result
from .schemas import (
    TERMINAL_STATUSES,
    FaceListPage,
    FaceRecord,
    FaceResultBundle,
    Match,
    PaginationCursor,
    ProcessingDetails,
    ProcessingStatus,
    Profile,
    UploadResponse,
    is_terminal,
)

__all__ = [
    "EyeSpyClient",
    "FaceListPage",
    "FaceRecord",
    "FaceResultBundle",
    "Match",
    "PaginationCursor",
    "ProcessingDetails",
    "ProcessingStatus",
    "Profile",
    "ResponseCache",
    "TERMINAL_STATUSES",
    "UploadResponse",
    "is_terminal",
    "normalize_result",
]
