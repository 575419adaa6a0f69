"""Batch orchestration: task creation, bounded-concurrency encoding, cancellation."""

import asyncio
import inspect
import os
import threading
import time
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from svgwrap.config import settings
from svgwrap.core.batch.models import (
    Batch,
    BatchEvent,
    BatchStatistics,
    BatchStatus,
    ImageInput,
    SourceImage,
    Task,
    TaskEvent,
    TaskStatus,
    strip_extension,
    utcnow,
)
from svgwrap.core.batch.results import compute_statistics, percentage
from svgwrap.core.constants import (
    CANCELLED_ERROR,
    MAX_ERROR_LENGTH,
    MIN_CONCURRENCY,
    PROGRESS_AFTER_ENCODE,
    PROGRESS_BEFORE_ENCODE,
)
from svgwrap.core.conversion.svg_encoder import (
    EncodedImage,
    Encoder,
    call_encoder,
    with_deadline,
)
from svgwrap.core.exceptions import BatchContractError, EncodeError, InvalidInputError
from svgwrap.utils.logging import LoggingContext, get_logger

logger = get_logger(__name__)

TaskCallback = Callable[[Task], object]
BatchCallback = Callable[[Batch], object]
Event = Union[TaskEvent, BatchEvent]

_STOP = object()


class _Subscription:
    """Event queue bound to the loop that consumes it.

    ``push`` may be called from any thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()

    def push(self, event: object) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, event)


class BatchOrchestrator:
    """Creates batches and drives every task through the encoder.

    All task and batch mutations happen inside one guarded section, so a
    normal completion and a concurrent :meth:`cancel` can never interleave on
    the same task. Observers receive deep-copied snapshots, either through
    the callbacks given to :meth:`run` or through :meth:`events`.
    """

    def __init__(
        self,
        encoder: Encoder,
        concurrency_limit: Optional[int] = None,
        encode_timeout: Optional[float] = None,
        max_file_size: Optional[int] = None,
        supported_mime_types: Optional[Iterable[str]] = None,
    ):
        encode_timeout = (
            encode_timeout if encode_timeout is not None else settings.encode_timeout
        )
        self.encoder = with_deadline(encoder, encode_timeout) if encode_timeout else encoder
        self.encode_timeout = encode_timeout

        limit = concurrency_limit or settings.max_concurrency
        self.concurrency_limit = (
            max(MIN_CONCURRENCY, limit) if limit else self._calculate_worker_count()
        )
        self.max_file_size = max_file_size or settings.max_file_size
        self.supported_mime_types = frozenset(
            m.lower() for m in (supported_mime_types or settings.supported_mime_types)
        )

        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[_Subscription]] = {}

        logger.debug(
            "BatchOrchestrator initialized",
            concurrency_limit=self.concurrency_limit,
            encode_timeout=self.encode_timeout,
        )

    @staticmethod
    def _calculate_worker_count() -> int:
        """One worker per available CPU, never fewer than one."""
        return max(MIN_CONCURRENCY, os.cpu_count() or MIN_CONCURRENCY)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_task(self, image: ImageInput, index: Optional[int] = None) -> Task:
        """Validate one input and wrap it in a pending task.

        Raises:
            InvalidInputError: unsupported type, empty, or larger than the
                size ceiling.
        """
        details = {
            "input_name": image.name,
            "mime_type": image.mime_type,
            "size": image.size,
        }
        if index is not None:
            details["input_index"] = index

        if image.mime_type not in self.supported_mime_types:
            details["supported_types"] = sorted(self.supported_mime_types)
            raise InvalidInputError(
                f"Unsupported file type for '{image.name}': {image.mime_type}",
                details=details,
            )
        if image.size == 0:
            raise InvalidInputError(f"File '{image.name}' is empty", details=details)
        if image.size > self.max_file_size:
            details["max_size"] = self.max_file_size
            raise InvalidInputError(
                f"File '{image.name}' is {image.size} bytes, "
                f"limit is {self.max_file_size} bytes",
                details=details,
            )

        return Task(
            source=SourceImage(
                name=image.name,
                mime_type=image.mime_type,
                size=image.size,
                content=image.content,
            ),
            display_name=strip_extension(image.name),
        )

    def create_batch(self, images: Sequence[ImageInput]) -> Batch:
        """Create a pending batch with one task per input, in input order.

        Raises:
            InvalidInputError: no inputs, or any single input is invalid.
        """
        images = list(images)
        if not images:
            raise InvalidInputError("A batch needs at least one image")

        tasks = [self.create_task(image, index=i) for i, image in enumerate(images)]
        batch = Batch(tasks=tasks)

        logger.info("Batch created", batch_id=batch.batch_id, total_tasks=len(tasks))
        return batch

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(
        self,
        batch: Batch,
        on_task_update: Optional[TaskCallback] = None,
        on_batch_update: Optional[BatchCallback] = None,
    ) -> Batch:
        """Encode every pending task, at most ``concurrency_limit`` at a time.

        Tasks are dispatched in fixed groups; a group must finish before the
        next one starts. Individual failures are recorded on their task and
        never abort the batch.

        Args:
            batch: Batch to execute. Callers must not run the same batch
                twice concurrently.
            on_task_update: Called with a task snapshot on every task change.
            on_batch_update: Called with a batch snapshot whenever the
                aggregate is recomputed.

        Returns:
            The same batch, every task terminal.

        Raises:
            BatchContractError: the batch has no tasks.
        """
        if not batch.tasks:
            raise BatchContractError("Cannot run a batch with no tasks")

        with LoggingContext(batch_id=batch.batch_id):
            sub = self._subscribe(batch.batch_id)
            dispatcher = asyncio.create_task(
                self._dispatch_callbacks(sub, on_task_update, on_batch_update)
            )
            try:
                with self._lock:
                    pending = [t for t in batch.tasks if t.status == TaskStatus.PENDING]
                    if self._refresh_aggregate(batch):
                        self._publish_locked(
                            batch.batch_id, BatchEvent(batch=batch.model_copy(deep=True))
                        )

                if pending:
                    await self._execute(batch, pending)
                else:
                    logger.info("Batch has no pending tasks", status=batch.status.value)
            finally:
                with self._lock:
                    sub.push(_STOP)
                    self._detach(batch.batch_id, sub)
                await dispatcher

        return batch

    async def _execute(self, batch: Batch, pending: List[Task]) -> None:
        started = time.monotonic()
        logger.info(
            "Batch started",
            pending_tasks=len(pending),
            concurrency_limit=self.concurrency_limit,
        )

        for group in self._partition(pending, self.concurrency_limit):
            if batch.is_terminal:
                break
            await asyncio.gather(*(self._process_task(batch, task) for task in group))

        stats = self.statistics(batch)
        logger.info(
            "Batch finished",
            status=batch.status.value,
            succeeded=stats.succeeded,
            failed=stats.failed,
            elapsed_seconds=round(time.monotonic() - started, 3),
        )

    @staticmethod
    def _partition(tasks: List[Task], size: int) -> List[List[Task]]:
        return [tasks[i : i + size] for i in range(0, len(tasks), size)]

    async def _process_task(self, batch: Batch, task: Task) -> None:
        """Drive one task from pending to a terminal status."""
        if not self._update(
            batch, task, (TaskStatus.PENDING,), status=TaskStatus.RUNNING, progress=0
        ):
            return
        if not self._update(
            batch, task, (TaskStatus.RUNNING,), progress=PROGRESS_BEFORE_ENCODE
        ):
            logger.info("Task cancelled before encoding", task_id=task.task_id)
            return

        started = time.monotonic()
        encoded: Optional[EncodedImage] = None
        error: Optional[str] = None
        try:
            encoded = await call_encoder(
                self.encoder, task.source.content, task.source.mime_type
            )
        except EncodeError as e:
            error = e.message
            logger.warning(
                "Encode failed",
                task_id=task.task_id,
                kind=e.kind.value,
                error=e.message,
            )
        except Exception as e:
            # The encoder is opaque; whatever it raises belongs to this task.
            error = str(e) or type(e).__name__
            logger.error(
                "Encoder raised unexpectedly",
                task_id=task.task_id,
                error_type=type(e).__name__,
                error=error,
            )

        elapsed = round(time.monotonic() - started, 3)

        if encoded is not None:
            self._update(
                batch, task, (TaskStatus.RUNNING,), progress=PROGRESS_AFTER_ENCODE
            )
            applied = self._update(
                batch,
                task,
                (TaskStatus.RUNNING,),
                document=encoded.document,
                width=encoded.width,
                height=encoded.height,
                status=TaskStatus.SUCCEEDED,
                progress=100,
                completed_at=utcnow(),
            )
        else:
            applied = self._update(
                batch,
                task,
                (TaskStatus.RUNNING,),
                error=error[:MAX_ERROR_LENGTH],
                status=TaskStatus.FAILED,
                progress=100,
                completed_at=utcnow(),
            )

        if applied:
            logger.debug(
                "Task finished",
                task_id=task.task_id,
                status=task.status.value,
                elapsed_seconds=elapsed,
            )
        else:
            logger.info(
                "Discarded encode result for cancelled task",
                task_id=task.task_id,
                elapsed_seconds=elapsed,
            )

    def _update(
        self,
        batch: Batch,
        task: Task,
        expected: Tuple[TaskStatus, ...],
        **changes,
    ) -> bool:
        """Apply ``changes`` to ``task`` only if it is still in ``expected``.

        This is the single mutation point for running tasks. Returns whether
        the change was applied; events are published only when it was, and
        before the guard is released so observers see changes in order.
        """
        with self._lock:
            if task.status not in expected:
                return False
            for field, value in changes.items():
                setattr(task, field, value)
            self._refresh_aggregate(batch)
            self._publish_locked(
                batch.batch_id,
                TaskEvent(batch_id=batch.batch_id, task=task.model_copy(deep=True)),
            )
            self._publish_locked(
                batch.batch_id, BatchEvent(batch=batch.model_copy(deep=True))
            )
        return True

    @staticmethod
    def _refresh_aggregate(batch: Batch) -> bool:
        """Recompute batch progress and status from its tasks (lock held).

        Returns whether anything changed. A terminal batch status is never
        overwritten.
        """
        before = (batch.progress, batch.status, batch.completed_at)

        total = len(batch.tasks)
        terminal = batch.terminal_count
        batch.progress = percentage(terminal, total)

        if not batch.status.is_terminal:
            if terminal == total:
                failed = any(t.status == TaskStatus.FAILED for t in batch.tasks)
                batch.status = BatchStatus.FAILED if failed else BatchStatus.SUCCEEDED
                batch.completed_at = utcnow()
            elif terminal or any(t.status != TaskStatus.PENDING for t in batch.tasks):
                batch.status = BatchStatus.RUNNING

        return before != (batch.progress, batch.status, batch.completed_at)

    # ------------------------------------------------------------------
    # Cancellation and reads
    # ------------------------------------------------------------------

    def cancel(self, batch: Batch) -> None:
        """Force every pending or running task to failed ("cancelled").

        Idempotent, and safe to call from any thread while :meth:`run` is in
        progress. Encodes already in flight finish, but their results are
        discarded. Terminal tasks are left untouched.
        """
        now = utcnow()
        with self._lock:
            forced = []
            for task in batch.tasks:
                if task.status in (TaskStatus.PENDING, TaskStatus.RUNNING):
                    task.error = CANCELLED_ERROR
                    task.status = TaskStatus.FAILED
                    task.progress = 100
                    task.completed_at = now
                    forced.append(task)
            changed = self._refresh_aggregate(batch)
            if batch.completed_at is None:
                batch.completed_at = now
                changed = True

            for task in forced:
                self._publish_locked(
                    batch.batch_id,
                    TaskEvent(batch_id=batch.batch_id, task=task.model_copy(deep=True)),
                )
            if changed or forced:
                self._publish_locked(
                    batch.batch_id, BatchEvent(batch=batch.model_copy(deep=True))
                )

        if forced:
            logger.info(
                "Batch cancelled",
                batch_id=batch.batch_id,
                cancelled_tasks=len(forced),
                status=batch.status.value,
            )

    def statistics(self, batch: Batch) -> BatchStatistics:
        with self._lock:
            return compute_statistics(batch)

    def snapshot(self, batch: Batch) -> Batch:
        """Consistent deep copy of ``batch``, safe to take while it runs."""
        with self._lock:
            return batch.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------

    async def events(self, batch: Batch) -> AsyncIterator[Event]:
        """Stream task and batch snapshots for ``batch``.

        Each iteration of the returned generator is an independent
        subscription, opened on first use. The stream ends after the first
        terminal batch snapshot; subscribing to an already terminal batch
        yields that final snapshot only.
        """
        sub = _Subscription(asyncio.get_running_loop())
        with self._lock:
            self._subscribers.setdefault(batch.batch_id, []).append(sub)
            final = batch.model_copy(deep=True) if batch.is_terminal else None
        try:
            if final is not None:
                yield BatchEvent(batch=final)
                return

            while True:
                event = await sub.queue.get()
                if event is _STOP:
                    return
                yield event
                if isinstance(event, BatchEvent) and event.batch.is_terminal:
                    return
        finally:
            self._unsubscribe(batch.batch_id, sub)

    def _subscribe(self, batch_id: str) -> _Subscription:
        sub = _Subscription(asyncio.get_running_loop())
        with self._lock:
            self._subscribers.setdefault(batch_id, []).append(sub)
        return sub

    def _unsubscribe(self, batch_id: str, sub: _Subscription) -> None:
        with self._lock:
            self._detach(batch_id, sub)

    def _detach(self, batch_id: str, sub: _Subscription) -> None:
        subs = self._subscribers.get(batch_id, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscribers.pop(batch_id, None)

    def _publish_locked(self, batch_id: str, event: Event) -> None:
        """Queue ``event`` for every subscriber; the caller holds the lock."""
        for sub in self._subscribers.get(batch_id, ()):
            try:
                sub.push(event)
            except RuntimeError:
                # Consumer loop already closed; it can no longer observe anything.
                logger.debug("Dropped event for closed subscriber", batch_id=batch_id)

    async def _dispatch_callbacks(
        self,
        sub: _Subscription,
        on_task_update: Optional[TaskCallback],
        on_batch_update: Optional[BatchCallback],
    ) -> None:
        """Feed subscription events to the run callbacks, in emission order."""
        while True:
            event = await sub.queue.get()
            if event is _STOP:
                return
            if isinstance(event, TaskEvent):
                await self._invoke(on_task_update, event.task)
            else:
                await self._invoke(on_batch_update, event.batch)

    @staticmethod
    async def _invoke(callback: Optional[Callable], payload: object) -> None:
        if callback is None:
            return
        try:
            result = callback(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "Progress callback raised",
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(e),
                exc_info=True,
            )
