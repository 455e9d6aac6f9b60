import copy
import itertools
import logging
import threading
from typing import Any, Dict, List, Optional

from formflow.errors import DefinitionError

logger = logging.getLogger(__name__)


class MemoryStore:
    """Process-local document store.

    Serves both definitions and submissions. Queries run from worker
    threads, so every access goes through one lock.
    """

    def __init__(self, forms: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self._lock = threading.Lock()
        self._forms: Dict[str, Dict[str, Any]] = {}
        self._collections: Dict[str, List[Dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        for form_id, document in (forms or {}).items():
            self._forms[str(form_id)] = copy.deepcopy(document)

    def get_form_definition(self, form_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._forms.get(str(form_id))
            return copy.deepcopy(document) if document is not None else None

    def save_form_definition(self, document: Dict[str, Any]) -> str:
        form_id = document.get("id")
        if not form_id:
            raise DefinitionError("Form definition is missing an id")
        with self._lock:
            self._forms[str(form_id)] = copy.deepcopy(document)
        logger.info(f"Form definition saved: {form_id}")
        return str(form_id)

    def create_submission(self, collection: str, payload: Dict[str, Any]) -> str:
        with self._lock:
            submission_id = str(next(self._ids))
            self._collections.setdefault(collection, []).append(
                {"id": submission_id, **copy.deepcopy(payload)}
            )
        logger.info(f"Submission saved: {collection}/{submission_id}")
        return submission_id

    def query_by_key(self, collection: str, key: str, value: Any) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._collections.get(collection, [])
                if doc.get(key) == value
            ]

    def list_submissions(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._collections.get(collection, []))
