"""Wizard-style session controller.

One ``WizardController`` drives a single respondent through a form. It owns
the mutable session state (answers, uploads, cursor and validation
bookkeeping) and derives everything else from the definition on demand.
All methods run on one asyncio event loop; store queries and uploads are
pushed to worker threads by the collaborators they call.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .config import Config
from .consts import (
    GLOBAL_REGISTRATIONS_COLLECTION,
    MSG_CHECK_PENDING,
    MSG_DUPLICATE_PENDING,
    MSG_SECTION_INCOMPLETE,
    UPLOAD_ROOT_FOLDER,
)
from .definition import Field, FormDefinition, Section
from .enums import FieldStatus, FieldType, NavigationAction, ScopeKind, UniquenessPolicy
from .errors import (
    PersistenceError,
    SubmissionRejected,
    UniquenessError,
    UploadError,
    ValidationError,
)
from .submission import SubmissionPipeline, SubmissionResult, SubmissionScope
from .uploads import UploadedFile, UploadFile, UploadService, generate_folder_path
from .validators import (
    FieldError,
    check_uniqueness,
    collect_errors,
    field_status,
    is_payment_field,
    validate,
)
from .visibility import VisibleSet, resolve_visibility, visible_fields, visible_section_indexes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Progress:
    position: int
    total: int

    @property
    def percent(self) -> int:
        if not self.total:
            return 0
        return round(self.position / self.total * 100)


@dataclass
class NavigationResult:
    action: NavigationAction
    section_index: int
    message: Optional[str] = None
    errors: List[FieldError] = field(default_factory=list)
    submission: Optional[SubmissionResult] = None

    @property
    def ok(self) -> bool:
        return self.action in (NavigationAction.MOVED, NavigationAction.SUBMITTED)


class WizardController:
    def __init__(
        self,
        definition: FormDefinition,
        scope: SubmissionScope,
        store,
        *,
        uploader: Optional[UploadService] = None,
        policy: UniquenessPolicy = UniquenessPolicy.FAIL_OPEN,
        discard_stale: bool = True,
        reset_delay: Optional[float] = None,
        upload_root: str = UPLOAD_ROOT_FOLDER,
        global_collection: str = GLOBAL_REGISTRATIONS_COLLECTION,
    ):
        self.definition = definition
        self.scope = scope
        self.store = store
        self.uploader = uploader
        self.policy = policy
        self.discard_stale = discard_stale
        self.reset_delay = reset_delay
        self.upload_root = upload_root
        self.pipeline = SubmissionPipeline(
            definition,
            scope,
            store,
            policy=policy,
            global_collection=global_collection,
        )

        self.current_section_index = 0
        self.answers: Dict[str, Any] = definition.initial_answers()
        self.uploaded_files: Dict[str, List[UploadedFile]] = {}
        self.touched_fields: Set[str] = set()
        self.validating_fields: Set[str] = set()
        self.unique_errors: Dict[str, str] = {}
        self.upload_errors: Dict[str, str] = {}
        self.validation_errors: List[FieldError] = []
        self.submitting = False
        self.submitted = False
        self.last_result: Optional[NavigationResult] = None

        self._generations: Dict[str, int] = {}
        self._inflight: Dict[str, Set[int]] = {}
        self._session = 0
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        definition: FormDefinition,
        scope: SubmissionScope,
        store,
        config: Config,
        *,
        uploader: Optional[UploadService] = None,
    ) -> "WizardController":
        return cls(
            definition,
            scope,
            store,
            uploader=uploader,
            policy=config.uniqueness.on_error,
            discard_stale=config.uniqueness.discard_stale,
            reset_delay=config.submission.reset_delay if scope.kind == ScopeKind.FORM else None,
            upload_root=config.upload.root_folder,
            global_collection=config.submission.global_collection,
        )

    # ==================== Derived state ====================

    def visibility(self) -> VisibleSet:
        return resolve_visibility(self.definition, self.answers)

    def visible_indexes(self) -> List[int]:
        return visible_section_indexes(self.definition, self.answers)

    @property
    def current_section(self) -> Section:
        return self.definition.sections[self.current_section_index]

    def current_fields(self) -> List[Field]:
        return visible_fields(self.current_section, self.answers)

    def submits_here(self) -> bool:
        """Whether leaving the current section should submit rather than advance."""
        section = self.current_section
        if section.submits:
            return True
        visible = self.visibility()
        return visible.terminated and visible.last == section.id

    @property
    def is_last_step(self) -> bool:
        if self.submits_here():
            return True
        return not any(i > self.current_section_index for i in self.visible_indexes())

    def progress(self) -> Progress:
        indexes = self.visible_indexes()
        earlier = [i for i in indexes if i <= self.current_section_index]
        return Progress(position=max(len(earlier), 1), total=len(indexes))

    def field_error(self, field_id: str) -> Optional[str]:
        f = self.definition.get_field(field_id)
        if f is None:
            return None
        if field_id in self.upload_errors:
            return self.upload_errors[field_id]
        if field_id in self.unique_errors:
            return self.unique_errors[field_id]
        result = validate(
            f, self.answers, self.uploaded_files, payment_exempt=self.scope.payment_exempt
        )
        return result.message

    def ensure_field_valid(self, field_id: str) -> None:
        """Raise for the first problem a field currently has.

        Raises:
            UniquenessError: If the value is already registered
            ValidationError: If a required, format or upload check fails
        """
        f = self.definition.get_field(field_id)
        if f is None:
            raise KeyError(f"Unknown field: {field_id}")
        if field_id in self.unique_errors:
            raise UniquenessError(f.label, self.unique_errors[field_id])
        message = self.field_error(field_id)
        if message:
            raise ValidationError(f.label, message)

    def field_status(self, field_id: str) -> FieldStatus:
        f = self.definition.get_field(field_id)
        if f is None:
            return FieldStatus.EMPTY
        if field_id in self.upload_errors:
            return FieldStatus.ERROR
        return field_status(
            f,
            self.answers,
            self.uploaded_files,
            self.unique_errors,
            payment_exempt=self.scope.payment_exempt,
        )

    # ==================== Input events ====================

    def _spawn(self, factory, *args) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        task = loop.create_task(factory(*args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def set_answer(self, field_id: str, value: Any) -> Optional[asyncio.Task]:
        """Record a new value for a field.

        A changed value invalidates the field's uniqueness verdict. When the
        field sits in the current section and the value maps to the submit
        sentinel, submission is scheduled on the running loop and the task is
        returned.
        """
        f = self.definition.get_field(field_id)
        if f is None:
            raise KeyError(f"Unknown field: {field_id}")

        previous = self.answers.get(field_id)
        self.answers[field_id] = value

        if previous != value:
            self.unique_errors.pop(field_id, None)
            self._generations[field_id] = self._generations.get(field_id, 0) + 1

        if self.current_section.get_field(field_id) is not None and f.submits_on(value):
            logger.info(f"Option {value!r} on {f.label!r} ends the form, submitting")
            return self._spawn(self.submit)
        return None

    def toggle_option(self, field_id: str, option: str, checked: bool) -> Optional[asyncio.Task]:
        selected = list(self.answers.get(field_id) or [])
        if checked and option not in selected:
            selected.append(option)
        elif not checked:
            selected = [v for v in selected if v != option]
        return self.set_answer(field_id, selected)

    def blur(self, field_id: str) -> Optional[asyncio.Task]:
        """Mark a field touched and start its uniqueness check when flagged."""
        self.touched_fields.add(field_id)

        f = self.definition.get_field(field_id)
        value = self.answers.get(field_id)
        if f is None or not f.is_unique:
            return None
        if not isinstance(value, str) or not value.strip():
            return None
        return self._spawn(self.check_unique, field_id)

    async def check_unique(self, field_id: str) -> None:
        f = self.definition.get_field(field_id)
        value = self.answers.get(field_id)

        session = self._session
        generation = self._generations.get(field_id, 0) + 1
        self._generations[field_id] = generation
        inflight = self._inflight.setdefault(field_id, set())
        inflight.add(generation)
        self.validating_fields.add(field_id)
        self.unique_errors.pop(field_id, None)

        try:
            result = await check_uniqueness(
                f,
                value,
                store=self.store,
                collection=self.scope.collection,
                policy=self.policy,
            )
        finally:
            inflight.discard(generation)
            if not inflight and session == self._session:
                self.validating_fields.discard(field_id)

        if session != self._session:
            logger.debug(f"Dropping uniqueness result for {field_id} from a reset session")
            return

        if self.discard_stale and generation != self._generations.get(field_id):
            logger.debug(f"Discarding stale uniqueness result for {field_id} (gen {generation})")
            return

        if result.ok:
            self.unique_errors.pop(field_id, None)
        else:
            self.unique_errors[field_id] = result.message

    async def upload(self, field_id: str, files: List[UploadFile]) -> List[UploadedFile]:
        """Upload files for a file field and record their descriptors.

        Upload failures become a field-level message; descriptors for files
        uploaded before the failure are kept.
        """
        f = self.definition.get_field(field_id)
        if f is None or f.type != FieldType.FILE:
            raise KeyError(f"Not a file field: {field_id}")

        self.touched_fields.add(field_id)
        self.upload_errors.pop(field_id, None)

        if self.uploader is None:
            self.upload_errors[field_id] = "File uploads are not configured"
            return []

        folder = generate_folder_path(
            self.upload_root,
            self.scope.title or self.definition.title,
            registration_id=field_id,
            payment=is_payment_field(f),
        )

        uploaded: List[UploadedFile] = []
        for file in files:
            try:
                descriptor = await asyncio.to_thread(self.uploader.upload, file, folder)
            except UploadError as e:
                logger.warning(f"Upload for {f.label!r} failed: {e}")
                self.upload_errors[field_id] = str(e)
                break
            uploaded.append(descriptor)

        if uploaded:
            self.uploaded_files.setdefault(field_id, []).extend(uploaded)
        return uploaded

    def remove_file(self, field_id: str, index: int) -> None:
        files = self.uploaded_files.get(field_id, [])
        if 0 <= index < len(files):
            files.pop(index)

    async def wait_idle(self) -> None:
        """Wait for every scheduled check and auto-submit to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # ==================== Navigation ====================

    def can_advance(self) -> Tuple[bool, Optional[str]]:
        section = self.current_section
        if not section.skip_validation:
            errors = collect_errors(
                visible_fields(section, self.answers),
                self.answers,
                self.uploaded_files,
                payment_exempt=self.scope.payment_exempt,
            )
            if errors:
                return False, MSG_SECTION_INCOMPLETE

        if self.unique_errors:
            return False, MSG_DUPLICATE_PENDING
        if self.validating_fields:
            return False, MSG_CHECK_PENDING
        return True, None

    def _result(self, action: NavigationAction, **kwargs) -> NavigationResult:
        result = NavigationResult(action=action, section_index=self.current_section_index, **kwargs)
        self.last_result = result
        return result

    async def advance(self) -> NavigationResult:
        ok, message = self.can_advance()
        if not ok:
            return self._result(NavigationAction.BLOCKED, message=message)

        if self.submits_here():
            return await self.submit()

        indexes = self.visible_indexes()
        later = [i for i in indexes if i > self.current_section_index]
        if later:
            self.current_section_index = later[0]
        elif self.current_section_index in indexes:
            return await self.submit()
        elif indexes:
            self.current_section_index = indexes[-1]
        return self._result(NavigationAction.MOVED)

    def retreat(self) -> NavigationResult:
        earlier = [i for i in self.visible_indexes() if i < self.current_section_index]
        if earlier:
            self.current_section_index = earlier[-1]
        return self._result(NavigationAction.MOVED)

    async def submit(self) -> NavigationResult:
        if self.submitted:
            return self._result(NavigationAction.BLOCKED, message="This form has already been submitted.")
        if self.submitting:
            return self._result(NavigationAction.BLOCKED, message="Submission already in progress.")
        if self.validating_fields:
            return self._result(NavigationAction.BLOCKED, message=MSG_CHECK_PENDING)

        self.submitting = True
        answers = copy.deepcopy(self.answers)
        uploaded_files = {k: list(v) for k, v in self.uploaded_files.items()}
        try:
            submission = await self.pipeline.submit(answers, uploaded_files)
        except SubmissionRejected as e:
            self.validation_errors = e.errors
            return self._result(
                NavigationAction.REJECTED,
                message="Please correct the errors in the form before submitting.",
                errors=e.errors,
            )
        except PersistenceError as e:
            return self._result(NavigationAction.FAILED, message=str(e))
        finally:
            self.submitting = False

        self.submitted = True
        self.validation_errors = []
        if self.reset_delay is not None:
            self._spawn(self._reset_after, self.reset_delay)
        return self._result(NavigationAction.SUBMITTED, submission=submission)

    async def _reset_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self.reset()

    def reset(self) -> None:
        """Return to a blank session for a repeat submission."""
        self.current_section_index = 0
        self.answers = self.definition.initial_answers()
        self.uploaded_files = {}
        self.touched_fields = set()
        self.unique_errors = {}
        self.upload_errors = {}
        self.validating_fields = set()
        self.validation_errors = []
        self.submitted = False
        self._generations = {}
        self._inflight = {}
        self._session += 1
        logger.debug(f"Session for {self.definition.id!r} reset")
