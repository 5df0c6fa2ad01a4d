"""
Session state for one audit desk.

State is an immutable ``SessionState``; every change goes through
``reduce(state, event)``. ``AuditSession`` owns the current state and
drives the batch processor and the Gemini collaborators, dispatching
events before and after each external step.
"""
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, replace
from typing import Callable, Optional, Sequence

from auditengine import edit_evidence_image, run_llm_audit, validate_audit_inputs
from batch import process_batch
from extractor import ExtractionError
from models import AuditReport, UploadedFile

logger = logging.getLogger(__name__)


class SessionBusyError(RuntimeError):
    pass


def _new_ref_id() -> str:
    return "CG-" + uuid.uuid4().hex[:9].upper()


@dataclass(frozen=True)
class SessionState:
    regulation: str = ""
    scenario: str = ""
    use_search: bool = False
    evidence_image: Optional[str] = None
    report: Optional[AuditReport] = None
    is_parsing: bool = False
    is_auditing: bool = False
    is_editing_image: bool = False
    error: Optional[str] = None
    image_error: Optional[str] = None
    ref_id: str = ""


# =============================
# EVENTS
# =============================

@dataclass(frozen=True)
class RegulationEdited:
    text: str


@dataclass(frozen=True)
class ScenarioEdited:
    text: str


@dataclass(frozen=True)
class SearchToggled:
    enabled: bool


@dataclass(frozen=True)
class BatchStarted:
    pass


@dataclass(frozen=True)
class BatchCommitted:
    text: str
    image: Optional[str] = None


@dataclass(frozen=True)
class BatchFailed:
    message: str


@dataclass(frozen=True)
class AuditRejected:
    message: str


@dataclass(frozen=True)
class AuditStarted:
    pass


@dataclass(frozen=True)
class AuditSucceeded:
    report: AuditReport


@dataclass(frozen=True)
class AuditFailed:
    message: str


@dataclass(frozen=True)
class ImageCleared:
    pass


@dataclass(frozen=True)
class ImageEditStarted:
    pass


@dataclass(frozen=True)
class ImageEdited:
    image: str


@dataclass(frozen=True)
class ImageEditFailed:
    message: str


def reduce(state: SessionState, event) -> SessionState:
    """Returns the next state. Raises SessionBusyError for disallowed transitions."""
    if isinstance(event, RegulationEdited):
        return replace(state, regulation=event.text)
    if isinstance(event, ScenarioEdited):
        return replace(state, scenario=event.text)
    if isinstance(event, SearchToggled):
        return replace(state, use_search=event.enabled)

    if isinstance(event, BatchStarted):
        if state.is_parsing:
            raise SessionBusyError("A file batch is already being processed")
        return replace(state, is_parsing=True, error=None)
    if isinstance(event, BatchCommitted):
        # append-only; an image in the batch replaces the previous one
        return replace(
            state,
            regulation=state.regulation + event.text,
            evidence_image=event.image if event.image is not None else state.evidence_image,
            is_parsing=False,
        )
    if isinstance(event, BatchFailed):
        return replace(state, is_parsing=False, error=event.message)

    if isinstance(event, AuditRejected):
        return replace(state, error=event.message)
    if isinstance(event, AuditStarted):
        if state.is_auditing:
            raise SessionBusyError("An audit is already running")
        if state.is_parsing:
            raise SessionBusyError("Wait for the file batch to finish before auditing")
        return replace(state, is_auditing=True, error=None)
    if isinstance(event, AuditSucceeded):
        return replace(state, report=event.report, is_auditing=False)
    if isinstance(event, AuditFailed):
        return replace(state, is_auditing=False, error=event.message)

    if isinstance(event, ImageCleared):
        return replace(state, evidence_image=None, image_error=None)
    if isinstance(event, ImageEditStarted):
        if state.is_editing_image:
            raise SessionBusyError("An image edit is already running")
        return replace(state, is_editing_image=True, image_error=None)
    if isinstance(event, ImageEdited):
        return replace(state, evidence_image=event.image, is_editing_image=False)
    if isinstance(event, ImageEditFailed):
        return replace(state, is_editing_image=False, image_error=event.message)

    raise TypeError(f"Unknown session event: {event!r}")


def render_state(state: SessionState) -> str:
    if state.is_auditing:
        return "loading"
    if state.report is not None:
        return "has-result"
    return "idle"


# =============================
# CONTROLLER
# =============================

class AuditSession:

    def __init__(
            self,
            auditor: Callable[..., AuditReport] = run_llm_audit,
            image_editor: Callable[[str, str], str] = edit_evidence_image,
    ):
        self.auditor = auditor
        self.image_editor = image_editor
        self.state = SessionState(ref_id=_new_ref_id())
        self._lock = threading.Lock()

    def dispatch(self, event) -> SessionState:
        with self._lock:
            self.state = reduce(self.state, event)
            return self.state

    def edit_regulation(self, text: str) -> SessionState:
        return self.dispatch(RegulationEdited(text))

    def edit_scenario(self, text: str) -> SessionState:
        return self.dispatch(ScenarioEdited(text))

    def set_search(self, enabled: bool) -> SessionState:
        return self.dispatch(SearchToggled(bool(enabled)))

    def clear_image(self) -> SessionState:
        return self.dispatch(ImageCleared())

    async def upload(self, files: Sequence[UploadedFile]) -> SessionState:
        """
        Processes one batch. The corpus and evidence image change only if
        every file in the batch succeeds; an ExtractionError is re-raised
        after being recorded in state.
        """
        self.dispatch(BatchStarted())
        logger.info("batch started: %s", [f.filename for f in files])
        try:
            result = await process_batch(files)
        except ExtractionError as e:
            logger.warning("batch failed on %s: %s", e.filename, e.cause)
            self.dispatch(BatchFailed(f"Error while processing file {e.filename}: {e.cause}"))
            raise
        except Exception as e:
            self.dispatch(BatchFailed(f"Error while processing files: {e}"))
            raise
        return self.dispatch(BatchCommitted(result.text, result.image))

    def begin_audit(self) -> SessionState:
        """
        Validates inputs and marks an audit in flight. Returns the state the
        audit must run against.
        """
        current = self.state
        try:
            validate_audit_inputs(current.regulation, current.scenario)
        except ValueError as e:
            self.dispatch(AuditRejected(str(e)))
            raise
        return self.dispatch(AuditStarted())

    def finish_audit(self, request: SessionState) -> SessionState:
        try:
            report = self.auditor(request.regulation, request.scenario, request.use_search)
        except Exception as e:
            logger.warning("audit failed: %s", e)
            return self.dispatch(AuditFailed(str(e) or "The audit failed"))
        logger.info("audit finished: %s", report.status.value)
        return self.dispatch(AuditSucceeded(report))

    def run_audit(self) -> SessionState:
        return self.finish_audit(self.begin_audit())

    def edit_image(self, instruction: str) -> SessionState:
        current = self.state
        if not current.evidence_image:
            raise ValueError("There is no evidence image to edit")
        if not (instruction or "").strip():
            raise ValueError("Image edit instruction is empty")

        self.dispatch(ImageEditStarted())
        try:
            image = self.image_editor(current.evidence_image, instruction)
        except Exception as e:
            logger.warning("image edit failed: %s", e)
            return self.dispatch(ImageEditFailed(f"Image edit failed: {e}"))
        return self.dispatch(ImageEdited(image))

    def snapshot(self) -> dict:
        state = self.state
        data = asdict(state)
        data["report"] = state.report.to_dict() if state.report else None
        data["render_state"] = render_state(state)
        return data
