"""Tasks client with idempotent enqueue.

Backends, selected by TASKS_BACKEND:
- inline (default): runs the registered handler in-process, on a small thread
  pool so the enqueuing request is not held up by delivery or its backoff
  sleeps; tasks without a handler are only recorded (tests)
- cloud_tasks: creates an HTTP task on Google Cloud Tasks, which dedupes by
  task name

The client is built once at startup and shared by reference.
"""

import os
import threading
import time
from collections import OrderedDict
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Callable, Protocol

from flowrelay.observability.logging import get_logger
from flowrelay.observability.redaction import safe_log_context

from .contracts import DEFAULT_RETRY_POLICY, RetryPolicy

logger = get_logger(__name__)

INLINE_WORKERS = 4

# Inline dedupe memory; oldest task ids are forgotten first.
MAX_REMEMBERED_TASK_IDS = 10_000


class TaskHandler(Protocol):
    """Protocol for task handlers. Raising means "retry me"."""

    def __call__(self, payload: dict) -> None:
        """Execute task with given payload."""
        ...


class TasksClient:
    """Queue producer, idempotent by task_id."""

    def __init__(
        self,
        backend: str | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        executor: Executor | None = None,
    ) -> None:
        self._backend = backend or os.environ.get("TASKS_BACKEND", "inline")
        self._sleep = sleep
        self._executor = executor
        self._handlers: dict[str, TaskHandler] = {}
        self._enqueued_ids: OrderedDict[str, None] = OrderedDict()
        self._recorded_tasks: list[dict] = []
        self._pending: list[Future] = []
        self._lock = threading.Lock()

    @property
    def backend(self) -> str:
        return self._backend

    def register_handler(self, url_path: str, handler: TaskHandler) -> None:
        """Register the in-process handler for `url_path` (inline backend only)."""
        self._handlers[url_path] = handler

    def enqueue(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        *,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        correlation_id: str | None = None,
    ) -> bool:
        """Enqueue a task.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g. "/tasks/messages/deliver").
            payload: Task data.
            retry_policy: Attempt bound and backoff (applied in-process for
                inline; Cloud Tasks applies its queue retry config).
            correlation_id: Optional correlation ID for tracing.

        Returns:
            True if the task was enqueued (or Cloud Tasks already had it),
            False if the inline backend had already seen task_id.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        if self._backend == "inline":
            with self._lock:
                if task_id in self._enqueued_ids:
                    return False
                self._remember(task_id)
                self._recorded_tasks.append(
                    {
                        "task_id": task_id,
                        "url_path": url_path,
                        "payload": payload,
                        "correlation_id": correlation_id,
                        "retry_policy": retry_policy,
                    }
                )
            handler = self._handlers.get(url_path)
            if handler is not None:
                self._submit(task_id, handler, payload, retry_policy)
            return True

        if self._backend == "cloud_tasks":
            from flowrelay.tasks.cloud_tasks_backend import enqueue_cloud_task

            return enqueue_cloud_task(task_id, url_path, payload, correlation_id)

        raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")

    def _remember(self, task_id: str) -> None:
        self._enqueued_ids[task_id] = None
        while len(self._enqueued_ids) > MAX_REMEMBERED_TASK_IDS:
            self._enqueued_ids.popitem(last=False)

    def _submit(
        self,
        task_id: str,
        handler: TaskHandler,
        payload: dict,
        retry_policy: RetryPolicy,
    ) -> None:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=INLINE_WORKERS, thread_name_prefix="inline-tasks"
                )
            future = self._executor.submit(
                self._run_inline, task_id, handler, payload, retry_policy
            )
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def _run_inline(
        self,
        task_id: str,
        handler: TaskHandler,
        payload: dict,
        retry_policy: RetryPolicy,
    ) -> None:
        for attempt in range(1, retry_policy.max_attempts + 1):
            try:
                handler(payload)
                return
            except Exception as exc:
                log_ctx = safe_log_context(
                    task_id=task_id, attempt=attempt, error_type=type(exc).__name__
                )
                if retry_policy.is_last_attempt(attempt):
                    # Dead letter: the handler already recorded the failure state.
                    logger.exception(
                        "inline task exhausted retries", extra={"extra_fields": log_ctx}
                    )
                    return
                logger.warning("inline task failed, retrying", extra={"extra_fields": log_ctx})
                self._sleep(retry_policy.delay_for(attempt))

    def join(self, timeout: float | None = None) -> bool:
        """Wait for inline handler runs submitted so far.

        Returns:
            True if all of them finished within `timeout`.
        """
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def was_enqueued(self, task_id: str) -> bool:
        return task_id in self._enqueued_ids

    def get_recorded_tasks(self) -> list[dict]:
        """Tasks accepted by the inline backend (useful for testing)."""
        return list(self._recorded_tasks)

    def clear(self) -> None:
        """Forget enqueued ids and recorded tasks (useful for testing)."""
        with self._lock:
            self._enqueued_ids.clear()
            self._recorded_tasks.clear()
