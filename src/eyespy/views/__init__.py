from .detail import FaceDetailView
from .upload import UploadView

__all__ = ["FaceDetailView", "UploadView"]
