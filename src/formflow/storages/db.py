import logging
from typing import Any, Dict, List, Optional

from peewee import PeeweeException

from formflow.errors import DefinitionError, PersistenceError

logger = logging.getLogger(__name__)


class DBStore:
    """SQLite-backed document store built on the peewee models."""

    def get_form_definition(self, form_id: str) -> Optional[Dict[str, Any]]:
        from formflow.models import FormRecord

        try:
            record = FormRecord.get_or_none(FormRecord.form_id == str(form_id))
        except PeeweeException as e:
            raise DefinitionError(f"Failed to load form {form_id}: {e}") from e

        if record is None:
            return None
        return {**record.document, "id": record.form_id}

    def save_form_definition(self, document: Dict[str, Any]) -> str:
        from formflow.models import FormRecord

        form_id = document.get("id")
        if not form_id:
            raise DefinitionError("Form definition is missing an id")
        form_id = str(form_id)
        title = document.get("title") or document.get("formTitle") or ""

        try:
            record = FormRecord.get_or_none(FormRecord.form_id == form_id)
            if record is None:
                FormRecord.create(form_id=form_id, title=title, document=document)
            else:
                record.title = title
                record.document = document
                record.save()
        except PeeweeException as e:
            raise PersistenceError(f"Failed to save form {form_id}: {e}") from e

        logger.info(f"Form definition saved: {form_id}")
        return form_id

    def create_submission(self, collection: str, payload: Dict[str, Any]) -> str:
        from formflow.models import SubmissionRecord

        try:
            record = SubmissionRecord.create(
                collection=collection,
                status=payload.get("status", ""),
                payload=payload,
            )
        except PeeweeException as e:
            raise PersistenceError(f"Failed to write submission to {collection}: {e}") from e

        logger.info(f"Submission saved: {collection}/{record.id}")
        return str(record.id)

    def query_by_key(self, collection: str, key: str, value: Any) -> List[Dict[str, Any]]:
        from formflow.models import SubmissionRecord

        try:
            query = SubmissionRecord.select().where(
                (SubmissionRecord.collection == collection)
                & (SubmissionRecord.payload[key] == value)
            )
            return [{**record.payload, "id": str(record.id)} for record in query]
        except PeeweeException as e:
            raise PersistenceError(f"Failed to query {collection} by {key}: {e}") from e

    def list_submissions(self, collection: str) -> List[Dict[str, Any]]:
        from formflow.models import SubmissionRecord

        query = (
            SubmissionRecord.select()
            .where(SubmissionRecord.collection == collection)
            .order_by(SubmissionRecord.id)
        )
        return [{**record.payload, "id": str(record.id)} for record in query]
