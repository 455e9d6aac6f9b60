"""File upload service used by file fields."""

import logging
import mimetypes
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import requests
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .config import UploadConfig
from .consts import CLOUDINARY_UPLOAD_URL, UPLOAD_MAX_RETRIES, UPLOAD_RETRY_DELAY
from .errors import UploadError
from .utils import folder_slug, retry, sanitize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadFile:
    """A blob waiting to be uploaded."""

    name: str
    content: bytes
    content_type: str = ""

    @property
    def mime_type(self) -> str:
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(self.name)
        return guessed or "application/octet-stream"


class UploadedFile(BaseModel):
    """Descriptor recorded for a file field after a successful upload."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    url: str
    original_name: str
    resource_type: str = "raw"
    folder_path: str = ""
    public_id: Optional[str] = None
    format: Optional[str] = None
    size: Optional[int] = None
    file_type: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class UploadService(Protocol):
    def upload(self, file: UploadFile, folder: str) -> UploadedFile: ...


def detect_file_category(file: UploadFile, is_payment: bool = False) -> str:
    mime = file.mime_type
    name = file.name.lower()

    if mime.startswith("image/"):
        return "images"
    if mime == "application/pdf":
        return "proofs" if is_payment else "documents"
    if "spreadsheet" in mime or "ms-excel" in mime or name.endswith((".xls", ".xlsx", ".csv")):
        return "spreadsheets"
    if "word" in mime or "document" in mime or name.endswith((".doc", ".docx")):
        return "documents"
    return "files"


def generate_folder_path(
    root: str,
    title: str | None = None,
    *,
    registration_id: str | None = None,
    payment: bool = False,
) -> str:
    """Folder for an activity/form upload.

    Examples:
        >>> generate_folder_path("hitam_ai", "AI Hackathon", payment=True)
        'hitam_ai/upcoming-activities/ai-hackathon/registrations/payment_proofs'
        >>> generate_folder_path("hitam_ai", "AI Hackathon", registration_id="field_1")
        'hitam_ai/upcoming-activities/ai-hackathon/registrations/field_1'
    """
    base = f"{root}/upcoming-activities/{folder_slug(title) or 'general'}/registrations"
    if payment:
        return f"{base}/payment_proofs"
    if registration_id:
        return f"{base}/{registration_id}"
    return f"{base}/user_uploads"


class CloudinaryUploader:
    """Unsigned Cloudinary uploads with upload-preset fallback."""

    def __init__(self, config: UploadConfig):
        if not config.cloud_name:
            raise UploadError("Cloudinary cloud name is missing")

        self.url = CLOUDINARY_UPLOAD_URL.format(cloud_name=config.cloud_name)
        self.presets: List[str] = [config.upload_preset] + [
            p for p in config.fallback_presets if p != config.upload_preset
        ]
        self.root_folder = config.root_folder
        self.timeout = config.timeout

        logger.debug(
            f"CloudinaryUploader initialized: cloud={sanitize(config.cloud_name)}, "
            f"presets={len(self.presets)}, timeout={self.timeout}"
        )

    def _target_folder(self, folder: str) -> str:
        folder = folder.strip("/")
        if folder == self.root_folder or folder.startswith(f"{self.root_folder}/"):
            return folder
        return f"{self.root_folder}/{folder}" if folder else self.root_folder

    @retry(
        times=UPLOAD_MAX_RETRIES,
        initial_delay=UPLOAD_RETRY_DELAY,
        backoff="exponential",
        exceptions=(requests.ConnectionError, requests.Timeout),
    )
    def _post(self, file: UploadFile, preset: str, folder: str) -> requests.Response:
        return requests.post(
            self.url,
            data={"upload_preset": preset, "folder": folder},
            files={"file": (file.name, file.content, file.mime_type)},
            timeout=self.timeout,
        )

    def upload(self, file: UploadFile, folder: str) -> UploadedFile:
        """Upload one file, trying fallback presets when the preset is rejected.

        Raises:
            UploadError: If every preset fails or the network is unreachable
        """
        if not file.content:
            raise UploadError(f"File is empty: {file.name}")

        target = self._target_folder(folder)
        last_error = ""

        for preset in self.presets:
            try:
                response = self._post(file, preset, target)
            except requests.RequestException as e:
                logger.error(f"Upload of {file.name} failed: {e}")
                raise UploadError(f"Upload failed: {file.name}") from e

            if response.ok:
                if preset != self.presets[0]:
                    logger.info(f"Uploaded {file.name} using fallback preset {preset!r}")
                try:
                    data = response.json()
                except ValueError as e:
                    raise UploadError(f"Invalid upload response for {file.name}") from e
                return self._to_descriptor(data, file, target)

            last_error = self._error_message(response)
            if response.status_code != 400 and "not found" not in last_error.lower():
                break
            logger.warning(f"Upload preset {preset!r} rejected ({response.status_code}), trying next")

        raise UploadError(f"Upload failed: {last_error or 'no upload preset accepted'}")

    def upload_many(self, files: List[UploadFile], folder: str) -> List[UploadedFile]:
        return [self.upload(f, folder) for f in files]

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            return str(response.json().get("error", {}).get("message", ""))
        except ValueError:
            return response.reason or ""

    @staticmethod
    def _to_descriptor(data: Dict[str, Any], file: UploadFile, folder: str) -> UploadedFile:
        url = data.get("secure_url") or data.get("url")
        if not url:
            raise UploadError("Invalid upload response: missing 'secure_url'")

        return UploadedFile(
            url=url,
            original_name=file.name,
            resource_type=data.get("resource_type") or "raw",
            folder_path=folder,
            public_id=data.get("public_id"),
            format=data.get("format"),
            size=data.get("bytes", len(file.content)),
            file_type=detect_file_category(file, is_payment="payment_proofs" in folder),
        )
