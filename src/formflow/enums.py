"""Enumeration type definitions"""

from enum import Enum


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    NUMBER = "number"
    PHONE = "phone"
    DATE = "date"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    FILE = "file"
    RATING = "rating"
    LABEL = "label"
    IMAGE = "image"
    LINK = "link"


class Condition(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"


class NavigationType(str, Enum):
    NEXT = "next"
    SUBMIT = "submit"


class EmailDomain(str, Enum):
    HITAM = "hitam"
    ANY = "any"


class PhonePattern(str, Enum):
    INDIA = "india"
    INTERNATIONAL = "international"
    ANY = "any"


class ScopeKind(str, Enum):
    """Which call site a session belongs to"""

    FORM = "form"
    ACTIVITY = "activity"


class SubmissionStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING_PAYMENT = "pending_payment"


class UniquenessPolicy(str, Enum):
    """What a uniqueness check concludes when the store query fails"""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class FieldStatus(str, Enum):
    ERROR = "error"
    VALID = "valid"
    EMPTY = "empty"


class NavigationAction(str, Enum):
    MOVED = "moved"
    BLOCKED = "blocked"
    SUBMITTED = "submitted"
    REJECTED = "rejected"
    FAILED = "failed"


class StoreType(str, Enum):
    MEMORY = "memory"
    DB = "db"
