from __future__ import annotations

from pathlib import Path

from loguru import logger

from ..api.client import EyeSpyClient, ImageInput
from ..api.schemas import UploadResponse
from ..common.exceptions import EyeSpyError
from ..reconciliation.sync import CollectionSync

SELECT_IMAGE_MESSAGE = "Please select an image first"
UPLOAD_SUCCESS_MESSAGE = "Face uploaded successfully"
UPLOAD_FAILED_MESSAGE = "Failed to upload face. Please try again."


class UploadView:
    """State behind the upload screen."""

    def __init__(self, client: EyeSpyClient, collection: CollectionSync | None = None):
        self.client = client
        self.collection = collection
        self.selected: ImageInput | None = None
        self.uploading = False
        self.result: UploadResponse | None = None

    def select(self, image: ImageInput) -> None:
        if not isinstance(image, bytes) and not Path(image).is_file():
            raise FileNotFoundError(f"Image not found: {image}")
        self.selected = image

    def upload(self) -> tuple[bool, str]:
        """Upload the selected image.

        Returns:
            (success, message to show the user)
        """
        if self.selected is None:
            return False, SELECT_IMAGE_MESSAGE

        self.uploading = True
        try:
            if self.collection is not None:
                self.result = self.collection.upload(self.selected)
            else:
                self.result = self.client.upload_face(self.selected)
        except EyeSpyError as e:
            logger.error(f"Error uploading face: {e}")
            return False, UPLOAD_FAILED_MESSAGE
        finally:
            self.uploading = False

        self.selected = None
        return True, UPLOAD_SUCCESS_MESSAGE
