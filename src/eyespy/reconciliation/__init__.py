from .collection import FaceCollection, display_order
from .sync import CollectionSync

__all__ = ["CollectionSync", "FaceCollection", "display_order"]
