from typing import Any, Dict, List, Optional, Protocol


class DefinitionStore(Protocol):
    def get_form_definition(self, form_id: str) -> Optional[Dict[str, Any]]: ...

    def save_form_definition(self, document: Dict[str, Any]) -> str: ...


class SubmissionStore(Protocol):
    def create_submission(self, collection: str, payload: Dict[str, Any]) -> str: ...

    def query_by_key(self, collection: str, key: str, value: Any) -> List[Dict[str, Any]]: ...
