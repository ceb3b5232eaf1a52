class EyeSpyError(Exception):
    """Base class for all EyeSpy client errors."""
    pass


class NetworkError(EyeSpyError):
    """Raised on transport failures, timeouts and unexpected server responses."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(EyeSpyError):
    """Raised when the server reports that a face does not exist."""

    def __init__(self, face_id: str):
        super().__init__(f"Face not found: {face_id}")
        self.face_id = face_id


class UploadError(EyeSpyError):
    """Raised when the server rejects an uploaded image."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ChannelConnectionError(EyeSpyError):
    """Raised when the real-time channel cannot be reached. Never fatal."""
    pass
