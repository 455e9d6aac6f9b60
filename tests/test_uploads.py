"""Cloudinary upload service tests"""

from unittest.mock import Mock, patch

import pytest
import requests

from formflow.config import UploadConfig
from formflow.errors import UploadError
from formflow.uploads import (
    CloudinaryUploader,
    UploadFile,
    detect_file_category,
    generate_folder_path,
)


def _response(status_code=200, json_data=None, reason="OK"):
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    response.json.return_value = json_data or {}
    return response


@pytest.fixture
def uploader():
    config = UploadConfig(cloud_name="demo", upload_preset="unsigned", fallback_presets=["ml_default"])
    return CloudinaryUploader(config)


@pytest.fixture
def pdf():
    return UploadFile(name="resume.pdf", content=b"%PDF-1.4")


class TestFolders:
    def test_generate_folder_path(self):
        assert (
            generate_folder_path("hitam_ai", "AI Hackathon", payment=True)
            == "hitam_ai/upcoming-activities/ai-hackathon/registrations/payment_proofs"
        )
        assert (
            generate_folder_path("hitam_ai", "AI Hackathon", registration_id="field_1")
            == "hitam_ai/upcoming-activities/ai-hackathon/registrations/field_1"
        )
        assert (
            generate_folder_path("hitam_ai", None)
            == "hitam_ai/upcoming-activities/general/registrations/user_uploads"
        )

    def test_detect_file_category(self, pdf):
        assert detect_file_category(pdf) == "documents"
        assert detect_file_category(pdf, is_payment=True) == "proofs"
        assert detect_file_category(UploadFile("a.png", b"x")) == "images"
        assert detect_file_category(UploadFile("a.csv", b"x")) == "spreadsheets"
        assert detect_file_category(UploadFile("a.bin", b"x")) == "files"


class TestCloudinaryUploader:
    def test_requires_cloud_name(self):
        with pytest.raises(UploadError):
            CloudinaryUploader(UploadConfig())

    def test_upload_success(self, uploader, pdf):
        data = {
            "secure_url": "https://res.cloudinary.com/demo/raw/upload/resume.pdf",
            "public_id": "hitam_ai/x/resume",
            "resource_type": "raw",
            "format": "pdf",
            "bytes": 8,
        }
        with patch("formflow.uploads.requests.post", return_value=_response(json_data=data)) as post:
            descriptor = uploader.upload(pdf, "hitam_ai/upcoming-activities/x/registrations/cv")

        assert descriptor.url == data["secure_url"]
        assert descriptor.original_name == "resume.pdf"
        assert descriptor.folder_path == "hitam_ai/upcoming-activities/x/registrations/cv"
        assert descriptor.file_type == "documents"
        assert descriptor.size == 8
        assert post.call_args.kwargs["data"] == {
            "upload_preset": "unsigned",
            "folder": "hitam_ai/upcoming-activities/x/registrations/cv",
        }
        assert post.call_args.args[0] == "https://api.cloudinary.com/v1_1/demo/auto/upload"

    def test_folder_gets_root_prefix(self, uploader, pdf):
        data = {"secure_url": "https://cdn/x.pdf"}
        with patch("formflow.uploads.requests.post", return_value=_response(json_data=data)) as post:
            descriptor = uploader.upload(pdf, "misc")
        assert post.call_args.kwargs["data"]["folder"] == "hitam_ai/misc"
        assert descriptor.folder_path == "hitam_ai/misc"

    def test_falls_back_to_next_preset(self, uploader, pdf):
        rejected = _response(400, {"error": {"message": "Upload preset not found"}}, "Bad Request")
        accepted = _response(json_data={"secure_url": "https://cdn/x.pdf"})

        with patch("formflow.uploads.requests.post", side_effect=[rejected, accepted]) as post:
            descriptor = uploader.upload(pdf, "hitam_ai")

        assert descriptor.url == "https://cdn/x.pdf"
        presets = [c.kwargs["data"]["upload_preset"] for c in post.call_args_list]
        assert presets == ["unsigned", "ml_default"]

    def test_all_presets_rejected(self, uploader, pdf):
        rejected = _response(400, {"error": {"message": "Upload preset not found"}}, "Bad Request")
        with patch("formflow.uploads.requests.post", return_value=rejected):
            with pytest.raises(UploadError, match="Upload preset not found"):
                uploader.upload(pdf, "hitam_ai")

    def test_server_error_does_not_try_other_presets(self, uploader, pdf):
        failed = _response(500, {"error": {"message": "Internal"}}, "Server Error")
        with patch("formflow.uploads.requests.post", return_value=failed) as post:
            with pytest.raises(UploadError):
                uploader.upload(pdf, "hitam_ai")
        assert post.call_count == 1

    def test_network_error_is_retried_then_wrapped(self, uploader, pdf):
        with patch("formflow.utils.time.sleep"):
            with patch(
                "formflow.uploads.requests.post", side_effect=requests.ConnectionError("refused")
            ) as post:
                with pytest.raises(UploadError, match="resume.pdf"):
                    uploader.upload(pdf, "hitam_ai")
        assert post.call_count == 3

    def test_missing_url_in_response(self, uploader, pdf):
        with patch("formflow.uploads.requests.post", return_value=_response(json_data={"public_id": "x"})):
            with pytest.raises(UploadError, match="secure_url"):
                uploader.upload(pdf, "hitam_ai")

    def test_empty_file(self, uploader):
        with pytest.raises(UploadError, match="empty"):
            uploader.upload(UploadFile("a.txt", b""), "hitam_ai")
