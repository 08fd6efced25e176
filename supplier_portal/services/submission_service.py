"""
Dispatch order submission pipeline.

Stages:
    1. Validating  - every violation of the draft is collected.
    2. Persisting  - the order (without image binaries) is saved (0-20%).
    3. Uploading   - queued images are uploaded one at a time (20-100%).

A failed image never stops the queue: the order is already saved, so the
result is reported as a success with warnings and the failed images can
be retried on their own later.
"""
import enum
import logging
from typing import Callable, Iterator, List, Optional

from supplier_portal.exceptions import (
    BusinessLogicError, ImageUploadFailed, PersistenceFailed, PortalError,
)

logger = logging.getLogger(__name__)

PERSIST_SHARE = 20


class SubmissionState(enum.Enum):
    IDLE = 'idle'
    VALIDATING = 'validating'
    PERSISTING = 'persisting'
    UPLOADING = 'uploading'
    DONE = 'done'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class OutcomeStatus(enum.Enum):
    SUCCESS = 'success'
    SUCCESS_WITH_WARNINGS = 'success_with_warnings'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class ImageStatus(enum.Enum):
    PENDING = 'pending'
    UPLOADING = 'uploading'
    SUCCESS = 'success'
    ERROR = 'error'


class CancellationToken:
    """Cooperative cancel flag, checked between uploads (never mid-upload)."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class UploadTask:
    """One queued image and its upload result."""

    def __init__(self, item_index: int, image_index: int, image):
        self.item_index = item_index
        self.image_index = image_index
        self.image = image
        self.status = ImageStatus.PENDING
        self.progress = 0
        self.url: Optional[str] = None
        self.error: Optional[ImageUploadFailed] = None

    @property
    def file_name(self) -> str:
        return getattr(self.image, 'file_name', None) or getattr(self.image, 'filename', 'image')

    @property
    def file(self):
        return getattr(self.image, 'file', self.image)

    def to_dict(self) -> dict:
        return {
            'item_index': self.item_index,
            'image_index': self.image_index,
            'file_name': self.file_name,
            'status': self.status.value,
            'progress': self.progress,
            'url': self.url,
            'error': self.error.reason if self.error else None,
        }

    def __repr__(self):
        return f"<UploadTask({self.item_index}/{self.image_index} {self.file_name!r} {self.status.value})>"


class SubmissionOutcome:
    """Terminal result of a submission (or of an upload retry)."""

    def __init__(self, status: OutcomeStatus, order_id=None, tasks=None, errors=None):
        self.status = status
        self.order_id = order_id
        self.tasks: List[UploadTask] = list(tasks or [])
        self.errors: List[PortalError] = list(errors or [])

    @property
    def total_images(self) -> int:
        return len(self.tasks)

    @property
    def uploaded_count(self) -> int:
        return sum(1 for task in self.tasks if task.status == ImageStatus.SUCCESS)

    @property
    def failed_count(self) -> int:
        return sum(1 for task in self.tasks if task.status == ImageStatus.ERROR)

    @property
    def pending_count(self) -> int:
        return sum(1 for task in self.tasks if task.status == ImageStatus.PENDING)

    @property
    def persisted(self) -> bool:
        return self.order_id is not None

    @property
    def failed_tasks(self) -> List[UploadTask]:
        return [task for task in self.tasks if task.status == ImageStatus.ERROR]

    @property
    def message(self) -> str:
        if self.status == OutcomeStatus.SUCCESS:
            return "Dispatch order saved successfully"
        if self.status == OutcomeStatus.SUCCESS_WITH_WARNINGS:
            return (
                f"Dispatch order saved, but {self.failed_count} of {self.total_images} "
                f"image(s) failed to upload. You can retry the failed uploads."
            )
        if self.status == OutcomeStatus.CANCELLED:
            return f"Dispatch order saved; {self.pending_count} image upload(s) were cancelled"
        return self.errors[0].message if self.errors else "Dispatch order could not be saved"

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'message': self.message,
            'order_id': self.order_id,
            'total_images': self.total_images,
            'uploaded_count': self.uploaded_count,
            'failed_count': self.failed_count,
            'pending_count': self.pending_count,
            'errors': [error.to_dict() for error in self.errors],
            'images': [task.to_dict() for task in self.tasks],
        }

    def __repr__(self):
        return (
            f"<SubmissionOutcome({self.status.value}, order={self.order_id}, "
            f"uploaded={self.uploaded_count}, failed={self.failed_count})>"
        )


class SubmissionEvent:
    """Progress notification emitted by the orchestrator."""

    STATE = 'state'
    IMAGE = 'image'
    PROGRESS = 'progress'
    OUTCOME = 'outcome'

    def __init__(self, kind: str, state: SubmissionState, progress: float, task=None, outcome=None):
        self.kind = kind
        self.state = state
        self.progress = progress
        self.task = task
        self.image = task.to_dict() if task is not None else None
        self.outcome = outcome

    def to_dict(self) -> dict:
        data = {'kind': self.kind, 'state': self.state.value, 'progress': round(self.progress, 2)}
        if self.image is not None:
            data['image'] = self.image
        if self.outcome is not None:
            data['outcome'] = self.outcome.to_dict()
        return data

    def __repr__(self):
        return f"<SubmissionEvent({self.kind}, {self.state.value}, {self.progress:.1f}%)>"


class SubmissionOrchestrator:
    """
    Drives one draft through validate -> persist -> upload.

    ``store`` needs ``create_order(payload)`` and ``update_order(id, payload)``;
    ``transport`` needs ``upload_item_image(order_id, item_index, file, on_progress)``.
    """

    def __init__(self, draft, store, transport, cancellation: Optional[CancellationToken] = None):
        self.draft = draft
        self.store = store
        self.transport = transport
        self.cancellation = cancellation or CancellationToken()
        self.state = SubmissionState.IDLE
        self.progress = 0.0
        self.order_id = draft.order_id if draft is not None else None
        self.tasks: List[UploadTask] = []
        self.outcome: Optional[SubmissionOutcome] = None
        self._events: List[SubmissionEvent] = []

    # Entry points

    def submit(self) -> Iterator[SubmissionEvent]:
        """Run the pipeline, yielding events; the last event carries the outcome."""
        if self.state != SubmissionState.IDLE:
            raise BusinessLogicError("This submission has already been started")

        self._transition(SubmissionState.VALIDATING)
        yield from self._flush()

        violations = self.draft.validate()
        if violations:
            logger.info(f"[SUBMIT] Validation failed with {len(violations)} violation(s)")
            self._finish(OutcomeStatus.FAILED, errors=violations)
            yield from self._flush()
            return

        self.tasks = [UploadTask(i, j, image) for i, j, image in self.draft.upload_queue()]

        self._transition(SubmissionState.PERSISTING)
        self._set_progress(PERSIST_SHARE / 2)
        yield from self._flush()

        payload = self.draft.to_payload()
        try:
            if self.draft.is_edit:
                self.store.update_order(self.draft.order_id, payload)
                order_id = self.draft.order_id
            else:
                order_id = self.store.create_order(payload)
        except Exception as e:
            error = e if isinstance(e, PersistenceFailed) else PersistenceFailed(e)
            logger.error(f"[SUBMIT] ✗ Persisting order failed: {error.reason}")
            self._finish(OutcomeStatus.FAILED, errors=[error])
            yield from self._flush()
            return

        self.order_id = order_id
        logger.info(f"[SUBMIT] ✓ Order {order_id} saved; {len(self.tasks)} image(s) queued")
        self._set_progress(PERSIST_SHARE)
        yield from self._flush()

        cancelled = yield from self._upload(self.tasks, base=PERSIST_SHARE, span=100 - PERSIST_SHARE)
        self._finish_uploads(cancelled)
        yield from self._flush()

    def retry_uploads(self, outcome: SubmissionOutcome) -> Iterator[SubmissionEvent]:
        """Upload only the failed images of ``outcome`` against its persisted order."""
        if not outcome.persisted:
            raise BusinessLogicError("Only images of a saved order can be retried")

        self.order_id = outcome.order_id
        self.tasks = [UploadTask(t.item_index, t.image_index, t.image) for t in outcome.failed_tasks]
        self.state = SubmissionState.IDLE
        self.progress = 0.0
        self.outcome = None

        cancelled = yield from self._upload(self.tasks, base=0, span=100)
        self._finish_uploads(cancelled)
        yield from self._flush()

    def run(self, on_event: Optional[Callable[[SubmissionEvent], None]] = None) -> SubmissionOutcome:
        return drive(self.submit(), on_event)

    # Upload phase

    def _upload(self, tasks: List[UploadTask], base: float, span: float):
        if not tasks:
            self._set_progress(base + span)
            yield from self._flush()
            return False

        self._transition(SubmissionState.UPLOADING)
        yield from self._flush()

        share = span / len(tasks)
        for done, task in enumerate(tasks):
            if self.cancellation.cancelled:
                logger.info(f"[SUBMIT] Upload cancelled with {len(tasks) - done} image(s) pending")
                return True

            task.status = ImageStatus.UPLOADING
            task.progress = 0
            self._emit(SubmissionEvent.IMAGE, task=task)
            yield from self._flush()

            def on_progress(pct, task=task, done=done):
                pct = max(task.progress, min(100, max(0, int(pct))))
                task.progress = pct
                self._set_progress(base + done * share + pct * share / 100, task=task)

            try:
                result = self.transport.upload_item_image(self.order_id, task.item_index, task.file, on_progress)
                task.url = (result or {}).get('url')
                task.status = ImageStatus.SUCCESS
                task.progress = 100
                logger.info(f"[SUBMIT] ✓ Uploaded {task.file_name} for item {task.item_index}")
            except Exception as e:
                reason = getattr(e, 'message', None) or str(e) or 'Unknown error'
                task.status = ImageStatus.ERROR
                task.progress = 0
                task.error = ImageUploadFailed(task.file_name, reason, task.item_index, task.image_index)
                logger.warning(f"[SUBMIT] ✗ {task.error.message}")

            self._emit(SubmissionEvent.IMAGE, task=task)
            self._set_progress(base + (done + 1) * share)
            yield from self._flush()

        return False

    # State helpers

    def _finish_uploads(self, cancelled: bool) -> None:
        errors = [task.error for task in self.tasks if task.error is not None]
        if cancelled:
            self._finish(OutcomeStatus.CANCELLED, errors=errors)
        elif errors:
            self._finish(OutcomeStatus.SUCCESS_WITH_WARNINGS, errors=errors)
        else:
            self._finish(OutcomeStatus.SUCCESS)

    def _finish(self, status: OutcomeStatus, errors=None) -> None:
        self.outcome = SubmissionOutcome(status, self.order_id, self.tasks, errors)
        if status == OutcomeStatus.FAILED:
            self.state = SubmissionState.FAILED
        elif status == OutcomeStatus.CANCELLED:
            self.state = SubmissionState.CANCELLED
        else:
            self.state = SubmissionState.DONE
        logger.info(f"[SUBMIT] Finished: {self.outcome!r}")
        self._emit(SubmissionEvent.OUTCOME, outcome=self.outcome)

    def _transition(self, state: SubmissionState) -> None:
        self.state = state
        self._emit(SubmissionEvent.STATE)

    def _set_progress(self, value: float, task=None) -> None:
        self.progress = max(self.progress, min(100.0, float(value)))
        self._emit(SubmissionEvent.PROGRESS, task=task)

    def _emit(self, kind: str, task=None, outcome=None) -> None:
        self._events.append(SubmissionEvent(kind, self.state, self.progress, task=task, outcome=outcome))

    def _flush(self):
        events, self._events = self._events, []
        yield from events


def drive(events: Iterator[SubmissionEvent], on_event=None) -> Optional[SubmissionOutcome]:
    """Consume an event stream and return its outcome."""
    outcome = None
    for event in events:
        if on_event is not None:
            on_event(event)
        if event.kind == SubmissionEvent.OUTCOME:
            outcome = event.outcome
    return outcome
