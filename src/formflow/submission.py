"""Terminal validation and persistence of a completed form."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .consts import (
    ACTIVITY_REGISTRATIONS_COLLECTION,
    FORM_SUBMISSIONS_COLLECTION,
    GLOBAL_REGISTRATIONS_COLLECTION,
    PAYMENT_MARKERS,
)
from .definition import FormDefinition
from .enums import FieldType, ScopeKind, SubmissionStatus, UniquenessPolicy
from .errors import PersistenceError, SubmissionRejected
from .validators import FieldError, check_uniqueness, collect_errors
from .utils import get_now, is_blank, slugify, to_iso
from .visibility import visible_fields, visible_sections

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionScope:
    """Where a session's submissions live.

    Generic forms write to ``forms/{id}/submissions``; activity
    registrations write to ``activities/{id}/registrations`` and are copied
    to the global registrations collection.
    """

    kind: ScopeKind
    scope_id: str
    title: str = ""
    is_paid: bool = True

    @classmethod
    def form(cls, form_id: str, title: str = "") -> "SubmissionScope":
        return cls(ScopeKind.FORM, str(form_id), title)

    @classmethod
    def activity(cls, activity_id: str, title: str = "", is_paid: bool = True) -> "SubmissionScope":
        return cls(ScopeKind.ACTIVITY, str(activity_id), title, is_paid)

    @property
    def collection(self) -> str:
        template = (
            ACTIVITY_REGISTRATIONS_COLLECTION
            if self.kind == ScopeKind.ACTIVITY
            else FORM_SUBMISSIONS_COLLECTION
        )
        return template.format(scope_id=self.scope_id)

    @property
    def payment_exempt(self) -> bool:
        return self.kind == ScopeKind.ACTIVITY and not self.is_paid

    @property
    def writes_global(self) -> bool:
        return self.kind == ScopeKind.ACTIVITY


@dataclass
class SubmissionResult:
    submission_id: str
    collection: str
    status: SubmissionStatus
    payload: Dict[str, Any] = field(default_factory=dict)
    global_id: Optional[str] = None


def submission_status(data_keys, file_keys) -> SubmissionStatus:
    keys = [k.lower() for k in list(data_keys) + list(file_keys)]
    if any(marker in key for key in keys for marker in PAYMENT_MARKERS):
        return SubmissionStatus.PENDING_PAYMENT
    return SubmissionStatus.CONFIRMED


class SubmissionPipeline:
    """Validate, translate and persist answers for one definition.

    Field ids are the session's identity; slug keys derived from labels only
    appear in the document handed to the store.
    """

    def __init__(
        self,
        definition: FormDefinition,
        scope: SubmissionScope,
        store,
        *,
        policy: UniquenessPolicy = UniquenessPolicy.FAIL_OPEN,
        global_collection: str = GLOBAL_REGISTRATIONS_COLLECTION,
    ):
        self.definition = definition
        self.scope = scope
        self.store = store
        self.policy = policy
        self.global_collection = global_collection

    def _visible_fields(self, answers: Mapping[str, Any]):
        for section in visible_sections(self.definition, answers):
            yield from visible_fields(section, answers)

    def validate(
        self, answers: Mapping[str, Any], uploaded_files: Mapping[str, List] | None = None
    ) -> List[FieldError]:
        """Required and format failures across every visible field."""
        return collect_errors(
            self._visible_fields(answers),
            answers,
            uploaded_files,
            payment_exempt=self.scope.payment_exempt,
        )

    async def verify_uniqueness(
        self, answers: Mapping[str, Any], skip_ids=()
    ) -> List[FieldError]:
        """Re-run every uniqueness query; per-field results cached at blur are not trusted."""
        fields = [
            f
            for f in self._visible_fields(answers)
            if f.is_unique
            and f.id not in skip_ids
            and isinstance(answers.get(f.id), str)
            and answers[f.id].strip()
        ]
        if not fields:
            return []

        results = await asyncio.gather(
            *(
                check_uniqueness(
                    f,
                    answers[f.id],
                    store=self.store,
                    collection=self.scope.collection,
                    policy=self.policy,
                )
                for f in fields
            )
        )
        return [
            FieldError(field=f.label, message=r.message, field_id=f.id)
            for f, r in zip(fields, results)
            if not r.ok
        ]

    def build_payload(
        self,
        answers: Mapping[str, Any],
        uploaded_files: Mapping[str, List] | None = None,
        submitted_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Translate id-keyed answers into the label-keyed stored document.

        Two fields sharing a label collapse onto one key; the later field in
        definition order wins.
        """
        field_mapping: Dict[str, str] = {}
        for _, f in self.definition.iter_fields():
            if not f.is_presentational:
                field_mapping[f.id] = f.label

        data: Dict[str, Any] = {}
        for field_id, value in answers.items():
            f = self.definition.get_field(field_id)
            if f is not None and (f.is_presentational or f.type == FieldType.FILE):
                continue
            key = slugify(field_mapping.get(field_id) or field_id)
            if key:
                data[key] = list(value) if isinstance(value, (list, tuple)) else value

        files: Dict[str, List[Dict[str, Any]]] = {}
        for field_id, descriptors in (uploaded_files or {}).items():
            if is_blank(descriptors):
                continue
            key = slugify(field_mapping.get(field_id) or field_id)
            files[key] = [d.to_document() if hasattr(d, "to_document") else dict(d) for d in descriptors]

        prefix = "activity" if self.scope.kind == ScopeKind.ACTIVITY else "form"
        return {
            **data,
            f"{prefix}_id": self.scope.scope_id,
            f"{prefix}_title": self.scope.title or self.definition.title,
            "submitted_at": to_iso(submitted_at or get_now()),
            "files": files,
            "status": submission_status(data.keys(), files.keys()).value,
            "field_mapping": field_mapping,
        }

    async def _write(self, collection: str, payload: Dict[str, Any]) -> str:
        return await asyncio.to_thread(self.store.create_submission, collection, payload)

    async def submit(
        self, answers: Mapping[str, Any], uploaded_files: Mapping[str, List] | None = None
    ) -> SubmissionResult:
        """Run the full pipeline.

        Raises:
            SubmissionRejected: If any required, format or uniqueness check fails
            PersistenceError: If the scoped (authoritative) write fails
        """
        errors = self.validate(answers, uploaded_files)
        errors.extend(
            await self.verify_uniqueness(answers, skip_ids={e.field_id for e in errors})
        )
        if errors:
            logger.info(f"Submission to {self.scope.collection} rejected with {len(errors)} errors")
            raise SubmissionRejected(errors)

        payload = self.build_payload(answers, uploaded_files)
        collection = self.scope.collection

        try:
            submission_id = await self._write(collection, payload)
        except Exception as e:
            logger.error(f"Failed to save submission to {collection}: {e}", exc_info=True)
            raise PersistenceError(f"Error submitting form: {e}") from e

        result = SubmissionResult(
            submission_id=submission_id,
            collection=collection,
            status=SubmissionStatus(payload["status"]),
            payload=payload,
        )

        if self.scope.writes_global:
            try:
                result.global_id = await self._write(self.global_collection, payload)
            except Exception as e:
                logger.warning(f"Could not save to {self.global_collection}: {e}")

        logger.info(
            f"Submission {submission_id} saved to {collection} (status={result.status.value})"
        )
        return result
