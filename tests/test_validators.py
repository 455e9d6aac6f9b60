"""Field validator tests"""

import asyncio
from unittest.mock import Mock

import pytest

from conftest import make_definition
from formflow.enums import FieldStatus, UniquenessPolicy
from formflow.errors import PersistenceError
from formflow.storages.memory import MemoryStore
from formflow.uploads import UploadedFile
from formflow.validators import (
    check_uniqueness,
    collect_errors,
    field_status,
    validate,
    validate_email,
    validate_phone,
)


@pytest.fixture
def fields():
    definition = make_definition(
        [
            {
                "id": "s",
                "fields": [
                    {"id": "name", "label": "Full Name", "required": True},
                    {"id": "tags", "label": "Tags", "type": "checkbox", "required": True, "options": ["a"]},
                    {"id": "cv", "label": "CV", "type": "file", "required": True},
                    {"id": "mail", "label": "Email", "type": "email", "emailDomain": "hitam"},
                    {"id": "phone", "label": "Phone", "type": "phone", "phonePattern": "india"},
                    {"id": "proof", "label": "Payment Screenshot", "type": "file", "required": True},
                    {"id": "note", "label": "Read this", "type": "label", "required": True},
                ],
            }
        ]
    )
    return {f.id: f for _, f in definition.iter_fields()}


class TestRequired:
    @pytest.mark.parametrize("value", ["", None, [], "   "])
    def test_blank_values_fail(self, fields, value):
        result = validate(fields["name"], {"name": value})
        assert not result.ok
        assert result.message == "Full Name is required"

    @pytest.mark.parametrize("value", ["Ada", 0, ["a"], False])
    def test_other_values_pass(self, fields, value):
        assert validate(fields["name"], {"name": value}).ok

    def test_empty_checkbox_fails(self, fields):
        assert not validate(fields["tags"], {"tags": []}).ok
        assert validate(fields["tags"], {"tags": ["a"]}).ok

    def test_file_needs_uploads(self, fields):
        assert not validate(fields["cv"], {}, {}).ok
        assert not validate(fields["cv"], {}, {"cv": []}).ok

        uploaded = {"cv": [UploadedFile(url="https://x/cv.pdf", original_name="cv.pdf")]}
        assert validate(fields["cv"], {}, uploaded).ok

    def test_presentational_always_passes(self, fields):
        assert validate(fields["note"], {}).ok

    def test_payment_exempt(self, fields):
        assert not validate(fields["proof"], {}, {}).ok
        assert validate(fields["proof"], {}, {}, payment_exempt=True).ok


class TestEmail:
    def test_hitam_domain(self):
        assert validate_email("a@hitam.org", "hitam").ok
        result = validate_email("a@gmail.com", "hitam")
        assert not result.ok
        assert result.message == "Only @hitam.org emails are allowed"

    def test_any_domain(self):
        assert validate_email("a@gmail.com").ok
        assert validate_email("a@gmail.com", "").ok

    def test_bad_format(self):
        assert validate_email("not-an-email").message == "Invalid email format"

    def test_blank_optional_email_passes(self, fields):
        assert validate(fields["mail"], {"mail": ""}).ok
        assert not validate(fields["mail"], {"mail": "a@gmail.com"}).ok


class TestPhone:
    def test_india(self):
        assert validate_phone("9876543210", "india").ok
        result = validate_phone("987654321", "india")
        assert not result.ok
        assert result.message == "Indian phone number must be exactly 10 digits"

    def test_international(self):
        assert validate_phone("+19876543210", "international").ok
        result = validate_phone("19876543210", "international")
        assert result.message == "International format must start with +"
        assert not validate_phone("+1987", "international").ok

    def test_any_pattern(self):
        assert validate_phone("(987) 654-3210").ok
        assert validate_phone("12345").message == "Phone number must have at least 10 digits"

    def test_field_uses_pattern(self, fields):
        assert validate(fields["phone"], {"phone": "98765 43210"}).ok
        assert not validate(fields["phone"], {"phone": "+44 98765 43210"}).ok


def test_field_status(fields):
    assert field_status(fields["mail"], {"mail": ""}) == FieldStatus.EMPTY
    assert field_status(fields["mail"], {"mail": "a@hitam.org"}) == FieldStatus.VALID
    assert field_status(fields["mail"], {"mail": "a@gmail.com"}) == FieldStatus.ERROR
    assert (
        field_status(fields["mail"], {"mail": "a@hitam.org"}, unique_errors={"mail": "taken"})
        == FieldStatus.ERROR
    )


def test_collect_errors(fields):
    errors = collect_errors(fields.values(), {"name": "", "tags": ["a"], "mail": "x@y.com"}, {})
    assert [(e.field_id, e.message) for e in errors] == [
        ("name", "Full Name is required"),
        ("cv", "CV is required"),
        ("mail", "Only @hitam.org emails are allowed"),
        ("proof", "Payment Screenshot is required"),
    ]


class TestCheckUniqueness:
    def test_unique_value(self, fields):
        store = MemoryStore()
        result = asyncio.run(
            check_uniqueness(fields["name"], "Ada", store=store, collection="forms/f/submissions")
        )
        assert result.ok

    def test_duplicate_value(self, fields):
        store = MemoryStore()
        store.create_submission("forms/f/submissions", {"full_name": "Ada"})

        result = asyncio.run(
            check_uniqueness(fields["name"], "  Ada ", store=store, collection="forms/f/submissions")
        )
        assert not result.ok
        assert result.message == "This Full Name is already registered."

    def test_other_collection_does_not_count(self, fields):
        store = MemoryStore()
        store.create_submission("forms/other/submissions", {"full_name": "Ada"})

        result = asyncio.run(
            check_uniqueness(fields["name"], "Ada", store=store, collection="forms/f/submissions")
        )
        assert result.ok

    def test_blank_value_skips_query(self, fields):
        store = Mock()
        result = asyncio.run(check_uniqueness(fields["name"], "  ", store=store, collection="c"))
        assert result.ok
        store.query_by_key.assert_not_called()

    def test_fail_open(self, fields):
        store = Mock()
        store.query_by_key.side_effect = PersistenceError("offline")

        result = asyncio.run(check_uniqueness(fields["name"], "Ada", store=store, collection="c"))
        assert result.ok

    def test_fail_closed(self, fields):
        store = Mock()
        store.query_by_key.side_effect = PersistenceError("offline")

        result = asyncio.run(
            check_uniqueness(
                fields["name"],
                "Ada",
                store=store,
                collection="c",
                policy=UniquenessPolicy.FAIL_CLOSED,
            )
        )
        assert not result.ok
        assert result.message == "Could not verify Full Name. Please try again."
