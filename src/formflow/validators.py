"""Field validation.

Everything here is a pure function of a field definition and the current
answers, except ``check_uniqueness`` which queries the submission store.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from .consts import (
    EMAIL_PATTERN,
    HITAM_EMAIL_SUFFIX,
    INDIA_PHONE_DIGITS,
    PAYMENT_MARKERS,
    PHONE_MIN_DIGITS,
)
from .definition import Field
from .enums import EmailDomain, FieldStatus, FieldType, PhonePattern, UniquenessPolicy
from .utils import is_blank, slugify

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(EMAIL_PATTERN)


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    message: Optional[str] = None

    @classmethod
    def passed(cls) -> "ValidationResult":
        return cls(True)

    @classmethod
    def failed(cls, message: str) -> "ValidationResult":
        return cls(False, message)


@dataclass(frozen=True)
class FieldError:
    """One entry of an aggregated failure list, keyed by field label."""

    field: str
    message: str
    field_id: Optional[str] = None


def validate_email(email: str, email_domain: EmailDomain | str | None = None) -> ValidationResult:
    if not _EMAIL_RE.match(email):
        return ValidationResult.failed("Invalid email format")

    if EmailDomain(email_domain or EmailDomain.ANY) == EmailDomain.HITAM:
        if not email.lower().endswith(HITAM_EMAIL_SUFFIX):
            return ValidationResult.failed(f"Only {HITAM_EMAIL_SUFFIX} emails are allowed")

    return ValidationResult.passed()


def validate_phone(phone: str, phone_pattern: PhonePattern | str | None = None) -> ValidationResult:
    digits = re.sub(r"\D", "", phone)
    pattern = PhonePattern(phone_pattern or PhonePattern.ANY)

    if pattern == PhonePattern.INDIA:
        if len(digits) != INDIA_PHONE_DIGITS:
            return ValidationResult.failed(
                f"Indian phone number must be exactly {INDIA_PHONE_DIGITS} digits"
            )
    elif pattern == PhonePattern.INTERNATIONAL:
        if not phone.startswith("+"):
            return ValidationResult.failed("International format must start with +")
        if len(digits) < PHONE_MIN_DIGITS:
            return ValidationResult.failed(
                f"International phone must have at least {PHONE_MIN_DIGITS} digits"
            )
    elif len(digits) < PHONE_MIN_DIGITS:
        return ValidationResult.failed(f"Phone number must have at least {PHONE_MIN_DIGITS} digits")

    return ValidationResult.passed()


def is_payment_field(field: Field) -> bool:
    label = (field.label or "").lower()
    return any(marker in label for marker in PAYMENT_MARKERS)


def is_missing(field: Field, answers: Mapping[str, Any], uploaded_files: Mapping[str, List] | None = None) -> bool:
    if field.type == FieldType.FILE:
        return not (uploaded_files or {}).get(field.id)
    return is_blank(answers.get(field.id))


def validate(
    field: Field,
    answers: Mapping[str, Any],
    uploaded_files: Mapping[str, List] | None = None,
    *,
    payment_exempt: bool = False,
) -> ValidationResult:
    """Run the required and format checks for one field.

    Presentational fields always pass. Blank strings only ever meet the
    required check. When ``payment_exempt`` is set (unpaid activities),
    payment/UPI fields are skipped entirely.
    """
    if field.is_presentational:
        return ValidationResult.passed()

    if payment_exempt and is_payment_field(field):
        return ValidationResult.passed()

    if field.required and is_missing(field, answers, uploaded_files):
        return ValidationResult.failed(f"{field.label} is required")

    value = answers.get(field.id)
    if not isinstance(value, str) or not value.strip():
        return ValidationResult.passed()

    if field.type == FieldType.EMAIL:
        return validate_email(value, field.email_domain)
    if field.type == FieldType.PHONE:
        return validate_phone(value, field.phone_pattern)

    return ValidationResult.passed()


def field_status(
    field: Field,
    answers: Mapping[str, Any],
    uploaded_files: Mapping[str, List] | None = None,
    unique_errors: Mapping[str, str] | None = None,
    *,
    payment_exempt: bool = False,
) -> FieldStatus:
    """Styling hint for a field: error, valid or empty."""
    result = validate(field, answers, uploaded_files, payment_exempt=payment_exempt)
    if not result.ok or (unique_errors or {}).get(field.id):
        return FieldStatus.ERROR
    if is_missing(field, answers, uploaded_files):
        return FieldStatus.EMPTY
    return FieldStatus.VALID


def unique_message(field: Field) -> str:
    return f"This {field.label} is already registered."


async def check_uniqueness(
    field: Field,
    value: Any,
    *,
    store,
    collection: str,
    policy: UniquenessPolicy = UniquenessPolicy.FAIL_OPEN,
) -> ValidationResult:
    """Ask the store whether a submission in ``collection`` already holds ``value``.

    The query runs in a worker thread so the event loop keeps serving other
    fields. Store failures are resolved by ``policy``: fail-open treats the
    value as unique, fail-closed reports it as unverifiable.
    """
    if not isinstance(value, str) or not value.strip():
        return ValidationResult.passed()

    key = slugify(field.label)
    needle = value.strip()

    try:
        matches = await asyncio.to_thread(store.query_by_key, collection, key, needle)
    except Exception as e:
        logger.warning(f"Uniqueness check for {key!r} in {collection} failed: {e}")
        if policy == UniquenessPolicy.FAIL_CLOSED:
            return ValidationResult.failed(f"Could not verify {field.label}. Please try again.")
        return ValidationResult.passed()

    if matches:
        logger.info(f"Duplicate value for {key!r} in {collection}")
        return ValidationResult.failed(unique_message(field))
    return ValidationResult.passed()


def collect_errors(
    fields,
    answers: Mapping[str, Any],
    uploaded_files: Mapping[str, List] | None = None,
    *,
    payment_exempt: bool = False,
) -> List[FieldError]:
    errors: List[FieldError] = []
    for field in fields:
        result = validate(field, answers, uploaded_files, payment_exempt=payment_exempt)
        if not result.ok:
            errors.append(FieldError(field=field.label, message=result.message, field_id=field.id))
    return errors
