from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from ..common.config import ClientConfig
from ..common.exceptions import NetworkError, NotFoundError, UploadError
from .cache import ResponseCache
from .schemas import (
    FaceListPage,
    FaceResultBundle,
    UploadResponse,
    is_terminal,
)

ImageInput = str | os.PathLike[str] | bytes

UPLOAD_FIELD = "face"
UPLOAD_FILENAME = "upload.jpg"
UPLOAD_CONTENT_TYPE = "image/jpeg"


def _server_message(response: httpx.Response) -> str | None:
    """Pull a human readable message out of an error response body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def normalize_result(data: dict[str, Any]) -> dict[str, Any]:
    """Fill defaults into a raw /results payload.

    Missing profile becomes {"full_name": "Unknown", "bio_text": None},
    missing match lists become empty and matches without a url or thumbnail
    are dropped. processing_details is derived from the face status when the
    server omits it.
    """
    data = dict(data)

    profile = data.get("profile")
    if not isinstance(profile, dict):
        data["profile"] = {"full_name": "Unknown", "bio_text": None}

    matches = data.get("top_matches")
    if not isinstance(matches, list):
        matches = []
    data["top_matches"] = [
        match
        for match in matches
        if isinstance(match, dict) and match.get("url") and match.get("thumbnail_base64")
    ]

    if not isinstance(data.get("processing_details"), dict):
        face_info = data.get("face_info")
        if not isinstance(face_info, dict):
            face_info = {}
        status = face_info.get("processing_status") or face_info.get("status")
        complete = status is None or is_terminal(status)
        data["processing_details"] = {
            "complete": complete,
            "stage": None if complete else status,
            "message": face_info.get("status_message"),
            "completion_time": face_info.get("upload_timestamp") if complete else None,
        }
    return data


class EyeSpyClient:
    """HTTP client for the EyeSpy REST API.

    Every call is a one-shot request without retries; retry policy belongs to
    the caller.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.config: ClientConfig = config or ClientConfig()
        self._http = httpx.Client(
            base_url=self.config.api_url.rstrip("/"),
            timeout=self.config.request_timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self.cache: ResponseCache[FaceListPage] = ResponseCache(ttl=self.config.cache_ttl)

    def __enter__(self) -> EyeSpyClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"{operation}: request timed out: {e}")
            raise NetworkError(f"{operation} timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"{operation}: transport error: {e}")
            raise NetworkError(f"{operation} failed: {e}") from e

    @staticmethod
    def _json(operation: str, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{operation}: invalid JSON in response: {e}")
            raise NetworkError(f"{operation} returned invalid JSON", response.status_code) from e

    @staticmethod
    def _raise_for_status(operation: str, response: httpx.Response, face_id: str | None = None):
        if response.is_success:
            return
        if response.status_code == 404 and face_id is not None:
            logger.warning(f"{operation}: face {face_id} not found")
            raise NotFoundError(face_id)
        message = _server_message(response) or response.reason_phrase
        logger.error(f"{operation}: HTTP {response.status_code}: {message}")
        raise NetworkError(f"{operation} failed: {message}", response.status_code)

    def list_faces(self, limit: int = 20, offset: int = 0, use_cache: bool = True) -> FaceListPage:
        """Fetch one page of faces.

        Args:
            limit: Page size (non-negative)
            offset: Number of faces to skip (non-negative)
            use_cache: Serve a fresh cached page for the same (limit, offset)

        Returns:
            FaceListPage with faces and the server-side total count
        """
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be non-negative")

        key = (limit, offset)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.trace(f"list_faces: cache hit for {key}")
                return cached

        response = self._request(
            "list_faces", "GET", "/faces", params={"limit": limit, "offset": offset}
        )
        self._raise_for_status("list_faces", response)
        try:
            page = FaceListPage.model_validate(self._json("list_faces", response))
        except ValidationError as e:
            logger.error(f"list_faces: malformed response: {e}")
            raise NetworkError("list_faces returned a malformed response") from e

        self.cache.put(key, page)
        logger.debug(f"Fetched {len(page.faces)} faces (offset={offset}, total={page.total_count})")
        return page

    def get_face_result(self, face_id: str) -> FaceResultBundle:
        """Fetch the full result bundle for one face, with defaults filled in."""
        response = self._request("get_face_result", "GET", f"/results/{face_id}")
        self._raise_for_status("get_face_result", response, face_id=face_id)
        data = self._json("get_face_result", response)
        if not isinstance(data, dict):
            raise NetworkError("get_face_result returned a malformed response")
        try:
            return FaceResultBundle.model_validate(normalize_result(data))
        except ValidationError as e:
            logger.error(f"get_face_result: malformed response for {face_id}: {e}")
            raise NetworkError("get_face_result returned a malformed response") from e

    def upload_face(self, image: ImageInput) -> UploadResponse:
        """Upload a face image as multipart field 'face'.

        Args:
            image: Path to a JPEG file or the raw image bytes

        Raises:
            UploadError: The server rejected the image (carries its message)
            NetworkError: Transport failure or an error without a message
        """
        content = image if isinstance(image, bytes) else Path(image).read_bytes()
        files = {UPLOAD_FIELD: (UPLOAD_FILENAME, content, UPLOAD_CONTENT_TYPE)}

        response = self._request("upload_face", "POST", "/upload_face", files=files)
        if not response.is_success:
            message = _server_message(response)
            if message:
                logger.error(f"upload_face: rejected by server: {message}")
                raise UploadError(message)
            self._raise_for_status("upload_face", response)

        try:
            result = UploadResponse.model_validate(self._json("upload_face", response))
        except ValidationError as e:
            logger.error(f"upload_face: malformed response: {e}")
            raise NetworkError("upload_face returned a malformed response") from e

        if not result.ok:
            message = result.message or "Unknown error"
            logger.error(f"upload_face: upload failed: {message}")
            raise UploadError(message)

        self.cache.invalidate()
        logger.info(f"Uploaded face ({len(content)} bytes), face_id={result.face_id}")
        return result

    def delete_face(self, face_id: str) -> dict[str, Any]:
        """Delete a face and all of its related data on the server."""
        response = self._request("delete_face", "DELETE", f"/faces/{face_id}")
        self._raise_for_status("delete_face", response, face_id=face_id)
        self.cache.invalidate()
        logger.info(f"Deleted face {face_id}")
        if not response.content:
            return {}
        ack = self._json("delete_face", response)
        return ack if isinstance(ack, dict) else {"result": ack}
