"""Declarative form definition model.

Definitions arrive from the document store as camelCase JSON documents
(the same shape the admin builder writes). They are parsed into immutable
pydantic models; nothing in this module has behaviour beyond construction
and normalisation.
"""

from __future__ import annotations

import copy
import logging
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field as ModelField, field_validator
from pydantic import ValidationError as ModelValidationError
from pydantic.alias_generators import to_camel

from .consts import (
    DEFAULT_REGISTRATION_DESCRIPTION,
    DEFAULT_REGISTRATION_TITLE,
    PRESENTATIONAL_TYPES,
    RESERVED_PAYLOAD_KEYS,
    SUBMIT_SENTINEL,
)
from .enums import Condition, EmailDomain, FieldType, NavigationType, PhonePattern, ScopeKind
from .errors import DefinitionError
from .utils import slugify

logger = logging.getLogger(__name__)


def _coerce_id(v: Any) -> Any:
    # builder documents use millisecond timestamps as ids
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(int(v))
    return v


DocumentId = Annotated[str, BeforeValidator(_coerce_id)]


class _DefinitionModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="allow",
    )


class Option(_DefinitionModel):
    id: DocumentId
    label: str


class VisibilityRule(_DefinitionModel):
    enabled: bool = False
    field_id: Optional[DocumentId] = None
    condition: Condition = Condition.EQUALS
    value: Any = ""


class Navigation(_DefinitionModel):
    type: NavigationType = NavigationType.NEXT

    @field_validator("type", mode="before")
    @classmethod
    def unknown_type_means_next(cls, v: Any) -> Any:
        if v in (NavigationType.SUBMIT, NavigationType.SUBMIT.value):
            return NavigationType.SUBMIT
        return NavigationType.NEXT


class Field(_DefinitionModel):
    id: DocumentId
    label: str = ""
    type: FieldType = FieldType.TEXT
    required: bool = False
    options: List[Option] = ModelField(default_factory=list)
    conditional: Optional[VisibilityRule] = None
    conditional_mapping: Dict[str, List[str]] = ModelField(default_factory=dict)
    is_unique: bool = False
    email_domain: EmailDomain = EmailDomain.ANY
    phone_pattern: PhonePattern = PhonePattern.ANY

    @field_validator("type", mode="before")
    @classmethod
    def unknown_type_means_text(cls, v: Any) -> Any:
        if isinstance(v, str) and v in FieldType._value2member_map_:
            return v
        logger.debug(f"Unknown field type {v!r}, rendering as text")
        return FieldType.TEXT

    @field_validator("options", mode="before")
    @classmethod
    def coerce_string_options(cls, v: Any) -> Any:
        if v is None:
            return []
        return [{"id": opt, "label": opt} if isinstance(opt, str) else opt for opt in v]

    @field_validator("conditional_mapping", mode="before")
    @classmethod
    def coerce_mapping(cls, v: Any) -> Any:
        if not v:
            return {}
        mapping = {}
        for option_value, targets in v.items():
            if targets is None:
                continue
            if not isinstance(targets, (list, tuple)):
                targets = [targets]
            mapping[str(option_value)] = [str(_coerce_id(t)) for t in targets if t not in (None, "")]
        return mapping

    @field_validator("email_domain", "phone_pattern", mode="before")
    @classmethod
    def blank_means_any(cls, v: Any) -> Any:
        return v or "any"

    @property
    def is_presentational(self) -> bool:
        return self.type.value in PRESENTATIONAL_TYPES

    def targets_for(self, value: Any) -> List[str]:
        """Union of mapped targets for an answer (every selected value for checkboxes)."""
        if not self.conditional_mapping:
            return []
        values = value if isinstance(value, (list, tuple)) else [value]
        targets: List[str] = []
        for v in values:
            if v in (None, ""):
                continue
            for target in self.conditional_mapping.get(str(v), []):
                if target not in targets:
                    targets.append(target)
        return targets

    def submits_on(self, value: Any) -> bool:
        return SUBMIT_SENTINEL in self.targets_for(value)


class Section(_DefinitionModel):
    id: DocumentId
    title: str = ""
    description: str = ""
    fields: List[Field] = ModelField(default_factory=list)
    conditional: Optional[VisibilityRule] = None
    navigation: Optional[Navigation] = None
    skip_validation: bool = False

    @field_validator("fields", mode="before")
    @classmethod
    def none_means_empty(cls, v: Any) -> Any:
        return v or []

    @property
    def submits(self) -> bool:
        return self.navigation is not None and self.navigation.type == NavigationType.SUBMIT

    def get_field(self, field_id: str) -> Optional[Field]:
        return next((f for f in self.fields if f.id == field_id), None)


class FormDefinition(_DefinitionModel):
    id: DocumentId = ""
    title: str = ""
    description: str = ""
    sections: List[Section] = ModelField(default_factory=list)

    def iter_fields(self):
        for section in self.sections:
            for field in section.fields:
                yield section, field

    def get_field(self, field_id: str) -> Optional[Field]:
        return next((f for _, f in self.iter_fields() if f.id == field_id), None)

    def section_of(self, field_id: str) -> Optional[Section]:
        return next((s for s, f in self.iter_fields() if f.id == field_id), None)

    def section_index(self, section_id: str) -> int:
        return next((i for i, s in enumerate(self.sections) if s.id == section_id), -1)

    def initial_answers(self) -> Dict[str, Any]:
        answers: Dict[str, Any] = {}
        for _, field in self.iter_fields():
            if field.is_presentational or field.type == FieldType.FILE:
                continue
            answers[field.id] = [] if field.type == FieldType.CHECKBOX else ""
        return answers


def default_sections() -> List[Dict[str, Any]]:
    """Fallback registration form used when an activity has no form configured."""
    return [
        {
            "id": "registration",
            "title": DEFAULT_REGISTRATION_TITLE,
            "description": DEFAULT_REGISTRATION_DESCRIPTION,
            "fields": [
                {"id": "field_full_name", "type": "text", "label": "Full Name", "required": True},
                {"id": "field_email", "type": "email", "label": "Email", "required": True},
            ],
        }
    ]


def normalize_document(document: Dict[str, Any], kind: ScopeKind = ScopeKind.FORM) -> Dict[str, Any]:
    """Return a sectioned copy of a stored definition document.

    Accepts both the generic-form spelling (``sections``/``fields``) and the
    activity spelling (``formSections``/``formSchema``/``formTitle``). A flat
    legacy field list becomes one synthetic section. Already-sectioned
    documents pass through, so the function is idempotent. The input is
    never mutated.
    """
    doc = copy.deepcopy(document)

    activity_sections = doc.pop("formSections", None)
    sections = doc.get("sections") or activity_sections
    title = doc.get("title") or doc.get("formTitle") or ""
    description = doc.get("description") or doc.get("formDescription") or ""

    if not sections:
        legacy_fields = doc.get("fields") or doc.get("formSchema")
        if legacy_fields:
            logger.debug(f"Normalizing legacy flat definition {doc.get('id')!r}")
            sections = [
                {
                    "id": f"{doc.get('id') or 'form'}_section",
                    "title": title or DEFAULT_REGISTRATION_TITLE,
                    "description": description,
                    "fields": legacy_fields,
                }
            ]
        elif kind == ScopeKind.ACTIVITY:
            sections = default_sections()
        else:
            sections = []

    for key in ("fields", "formSchema", "formTitle", "formDescription"):
        doc.pop(key, None)

    doc["sections"] = sections
    doc["title"] = title
    doc["description"] = description
    return doc


def parse_definition(document: Dict[str, Any], kind: ScopeKind = ScopeKind.FORM) -> FormDefinition:
    """Normalize and validate a stored document into a FormDefinition."""
    if not isinstance(document, dict):
        raise DefinitionError(f"Form definition must be an object, got {type(document).__name__}")

    try:
        definition = FormDefinition.model_validate(normalize_document(document, kind))
    except ModelValidationError as e:
        error_lines = [f"Form definition {document.get('id')!r} is malformed:"]
        for error in e.errors():
            loc = " -> ".join(str(item) for item in error["loc"])
            error_lines.append(f"  - {loc}: {error['msg']}")
        raise DefinitionError("\n".join(error_lines)) from e

    if not definition.sections:
        raise DefinitionError(f"Form definition {definition.id!r} has no sections")
    return definition


def load_definition(store, form_id: str, kind: ScopeKind = ScopeKind.FORM) -> FormDefinition:
    """Fetch a definition from the store, raising DefinitionError when missing."""
    document = store.get_form_definition(form_id)
    if document is None:
        raise DefinitionError(f"Form not found: {form_id}")

    document = {**document, "id": document.get("id") or form_id}
    definition = parse_definition(document, kind)
    logger.info(
        f"Loaded form {definition.id!r} ({len(definition.sections)} sections, "
        f"{sum(1 for _ in definition.iter_fields())} fields)"
    )
    return definition


def lint_definition(definition: FormDefinition) -> List[str]:
    """Structural warnings for a parsed definition.

    None of these stop a session from running; they flag definitions whose
    runtime behaviour probably differs from what the author intended.
    """
    warnings: List[str] = []

    section_ids = [s.id for s in definition.sections]
    for sid in sorted({s for s in section_ids if section_ids.count(s) > 1}):
        warnings.append(f"Duplicate section id {sid!r}")

    field_ids = [f.id for _, f in definition.iter_fields()]
    for fid in sorted({f for f in field_ids if field_ids.count(f) > 1}):
        warnings.append(f"Duplicate field id {fid!r}")

    slugs: Dict[str, str] = {}
    for index, section in enumerate(definition.sections):
        rule = section.conditional
        if rule is not None and rule.enabled and definition.get_field(rule.field_id or "") is None:
            warnings.append(f"Section {section.id!r} depends on unknown field {rule.field_id!r}")

        for field in section.fields:
            if field.type in (FieldType.SELECT, FieldType.RADIO, FieldType.CHECKBOX) and not field.options:
                warnings.append(f"Field {field.label!r} has no options")

            rule = field.conditional
            if rule is not None and rule.enabled and section.get_field(rule.field_id or "") is None:
                warnings.append(
                    f"Field {field.label!r} depends on {rule.field_id!r} outside its section "
                    "and is always shown"
                )

            for option, targets in field.conditional_mapping.items():
                for target in targets:
                    if target == SUBMIT_SENTINEL:
                        continue
                    target_index = definition.section_index(target)
                    if target_index < 0:
                        warnings.append(f"Option {option!r} of {field.label!r} jumps to unknown section {target!r}")
                    elif target_index <= index:
                        warnings.append(
                            f"Option {option!r} of {field.label!r} jumps backwards to {target!r} "
                            "and ends the walk"
                        )

            if field.is_presentational:
                continue
            slug = slugify(field.label) or field.id
            if slug in RESERVED_PAYLOAD_KEYS:
                warnings.append(
                    f"Field {field.label!r} is stored as {slug!r}, which the submission record overwrites"
                )
            if slug in slugs and slugs[slug] != field.id:
                warnings.append(
                    f"Fields {slugs[slug]!r} and {field.id!r} share the stored key {slug!r}"
                )
            slugs[slug] = field.id

    return warnings
