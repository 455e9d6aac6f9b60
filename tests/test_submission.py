"""Submission pipeline tests"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from conftest import make_definition
from formflow.enums import SubmissionStatus, UniquenessPolicy
from formflow.errors import PersistenceError, SubmissionRejected
from formflow.storages.memory import MemoryStore
from formflow.submission import SubmissionPipeline, SubmissionScope, submission_status
from formflow.uploads import UploadedFile


@pytest.fixture
def definition():
    return make_definition(
        [
            {
                "id": "s1",
                "fields": [
                    {"id": "f1", "label": "Full Name", "required": True},
                    {"id": "f2", "label": "  Email!! ", "type": "email", "required": True, "isUnique": True},
                    {"id": "f3", "label": "Welcome", "type": "label"},
                    {"id": "f4", "label": "Interests", "type": "checkbox", "options": ["AI", "Web"]},
                ],
            },
            {
                "id": "s2",
                "fields": [{"id": "f5", "label": "Payment Proof", "type": "file", "required": True}],
            },
        ]
    )


@pytest.fixture
def answers():
    return {"f1": "Ada Lovelace", "f2": "ada@example.com", "f4": ["AI"]}


@pytest.fixture
def uploads():
    return {"f5": [UploadedFile(url="https://cdn/x.png", original_name="x.png", file_type="images")]}


class TestSubmissionScope:
    def test_form_collection(self):
        scope = SubmissionScope.form("abc")
        assert scope.collection == "forms/abc/submissions"
        assert not scope.writes_global
        assert not scope.payment_exempt

    def test_activity_collection(self):
        scope = SubmissionScope.activity("42", "Hackathon", is_paid=False)
        assert scope.collection == "activities/42/registrations"
        assert scope.writes_global
        assert scope.payment_exempt


def test_submission_status():
    assert submission_status(["full_name"], []) == SubmissionStatus.CONFIRMED
    assert submission_status(["upi_reference"], []) == SubmissionStatus.PENDING_PAYMENT
    assert submission_status([], ["payment_proof"]) == SubmissionStatus.PENDING_PAYMENT


class TestBuildPayload:
    def test_slug_keys_and_extras(self, definition, answers, uploads):
        pipeline = SubmissionPipeline(definition, SubmissionScope.form("form_1", "Signup"), MemoryStore())
        payload = pipeline.build_payload(
            answers, uploads, submitted_at=datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        )

        assert payload["full_name"] == "Ada Lovelace"
        assert payload["email"] == "ada@example.com"
        assert payload["interests"] == ["AI"]
        assert "welcome" not in payload
        assert payload["files"]["payment_proof"][0]["url"] == "https://cdn/x.png"
        assert payload["files"]["payment_proof"][0]["originalName"] == "x.png"
        assert payload["form_id"] == "form_1"
        assert payload["form_title"] == "Signup"
        assert payload["submitted_at"] == "2025-01-02T03:04:05+00:00"
        assert payload["status"] == "pending_payment"
        assert payload["field_mapping"] == {
            "f1": "Full Name",
            "f2": "  Email!! ",
            "f4": "Interests",
            "f5": "Payment Proof",
        }

    def test_activity_prefix(self, definition, answers):
        pipeline = SubmissionPipeline(definition, SubmissionScope.activity("7"), MemoryStore())
        payload = pipeline.build_payload(answers)

        assert payload["activity_id"] == "7"
        assert payload["activity_title"] == "Test Form"
        assert payload["status"] == "confirmed"
        assert "form_id" not in payload

    def test_hidden_answers_are_kept(self):
        definition = make_definition(
            [
                {
                    "id": "s",
                    "fields": [
                        {"id": "a", "label": "Go", "conditionalMapping": {"yes": ["s3"]}},
                    ],
                },
                {"id": "s2", "fields": [{"id": "b", "label": "Skipped"}]},
                {"id": "s3", "fields": []},
            ]
        )
        pipeline = SubmissionPipeline(definition, SubmissionScope.form("f"), MemoryStore())
        payload = pipeline.build_payload({"a": "yes", "b": "left over"})
        assert payload["skipped"] == "left over"


class TestSubmit:
    def test_writes_form_submission(self, definition, answers, uploads):
        store = MemoryStore()
        pipeline = SubmissionPipeline(definition, SubmissionScope.form("form_1"), store)

        result = asyncio.run(pipeline.submit(answers, uploads))

        assert result.collection == "forms/form_1/submissions"
        assert result.global_id is None
        assert result.status == SubmissionStatus.PENDING_PAYMENT
        saved = store.list_submissions("forms/form_1/submissions")
        assert len(saved) == 1
        assert saved[0]["full_name"] == "Ada Lovelace"
        assert store.list_submissions("allRegistrations") == []

    def test_registration_dual_write(self, definition, answers, uploads):
        store = MemoryStore()
        pipeline = SubmissionPipeline(definition, SubmissionScope.activity("a1", "Workshop"), store)

        result = asyncio.run(pipeline.submit(answers, uploads))

        assert result.global_id is not None
        assert len(store.list_submissions("activities/a1/registrations")) == 1
        assert store.list_submissions("allRegistrations")[0]["activity_title"] == "Workshop"

    def test_unpaid_activity_skips_payment_field(self, definition, answers):
        store = MemoryStore()
        pipeline = SubmissionPipeline(
            definition, SubmissionScope.activity("a1", is_paid=False), store
        )
        result = asyncio.run(pipeline.submit(answers, {}))
        assert result.status == SubmissionStatus.CONFIRMED

    def test_rejects_with_aggregated_errors(self, definition):
        store = MemoryStore()
        pipeline = SubmissionPipeline(definition, SubmissionScope.form("form_1"), store)

        with pytest.raises(SubmissionRejected) as exc_info:
            asyncio.run(pipeline.submit({"f1": "", "f2": "bad"}, {}))

        errors = exc_info.value.errors
        assert [(e.field, e.message) for e in errors] == [
            ("Full Name", "Full Name is required"),
            ("  Email!! ", "Invalid email format"),
            ("Payment Proof", "Payment Proof is required"),
        ]
        assert store.list_submissions("forms/form_1/submissions") == []

    def test_rejects_duplicate(self, definition, answers, uploads):
        store = MemoryStore()
        store.create_submission("forms/form_1/submissions", {"email": "ada@example.com"})
        pipeline = SubmissionPipeline(definition, SubmissionScope.form("form_1"), store)

        with pytest.raises(SubmissionRejected) as exc_info:
            asyncio.run(pipeline.submit(answers, uploads))

        assert exc_info.value.errors[0].field_id == "f2"
        assert len(store.list_submissions("forms/form_1/submissions")) == 1

    def test_fail_closed_rejects_when_store_unreachable(self, definition, answers, uploads):
        store = Mock()
        store.query_by_key.side_effect = PersistenceError("offline")
        pipeline = SubmissionPipeline(
            definition,
            SubmissionScope.form("form_1"),
            store,
            policy=UniquenessPolicy.FAIL_CLOSED,
        )

        with pytest.raises(SubmissionRejected):
            asyncio.run(pipeline.submit(answers, uploads))
        store.create_submission.assert_not_called()

    def test_scoped_write_failure_raises(self, definition, answers, uploads):
        store = Mock()
        store.query_by_key.return_value = []
        store.create_submission.side_effect = RuntimeError("disk full")
        pipeline = SubmissionPipeline(definition, SubmissionScope.form("form_1"), store)

        with pytest.raises(PersistenceError, match="disk full"):
            asyncio.run(pipeline.submit(answers, uploads))

    def test_global_write_failure_is_swallowed(self, definition, answers, uploads):
        store = Mock()
        store.query_by_key.return_value = []
        store.create_submission.side_effect = ["scoped-1", RuntimeError("quota")]
        pipeline = SubmissionPipeline(definition, SubmissionScope.activity("a1"), store)

        result = asyncio.run(pipeline.submit(answers, uploads))

        assert result.submission_id == "scoped-1"
        assert result.global_id is None
        assert store.create_submission.call_count == 2
