"""
Bounded work queue interface.

The API process and the reprocessing controller only ever see WorkQueue:

    task_id = await queue.enqueue(PROCESS_DOCUMENT, {"document_id": str(doc_id)})
    state   = await queue.status(task_id)      # pending | running | finished

CeleryWorkQueue  — production; concurrency and retry policy live in
                   workers/celery_app.py and workers/tasks.py.
InlineWorkQueue  — runs the registered coroutine in-process before
                   enqueue() returns. Local development and tests.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from celery import Celery
from celery.result import AsyncResult

from pdf_ingest.schemas.documents import TaskState

logger = logging.getLogger(__name__)

PROCESS_DOCUMENT  = "pdf_ingest.workers.tasks.process_document"

_RUNNING_STATES  = {"STARTED", "RETRY", "RECEIVED"}
_FINISHED_STATES = {"SUCCESS", "FAILURE", "REVOKED"}


def map_celery_state(state: str) -> TaskState:
    if state in _FINISHED_STATES:
        return TaskState.FINISHED
    if state in _RUNNING_STATES:
        return TaskState.RUNNING
    return TaskState.PENDING


class WorkQueue(ABC):

    @abstractmethod
    async def enqueue(self, task_name: str, kwargs: dict[str, Any]) -> str:
        """Submit a task; returns an opaque task id."""

    @abstractmethod
    async def status(self, task_id: str) -> TaskState:
        """Coarse task state; unknown ids report pending."""


class CeleryWorkQueue(WorkQueue):

    def __init__(self, app: Celery | None = None) -> None:
        if app is None:
            from pdf_ingest.workers.celery_app import celery_app
            app = celery_app
        self._app = app

    async def enqueue(self, task_name: str, kwargs: dict[str, Any]) -> str:
        # send_task blocks on the broker connection
        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(
            None,
            lambda: self._app.send_task(task_name, kwargs=kwargs),
        )
        logger.info("Task published | task=%s id=%s kwargs=%s", task_name, result.id, kwargs)
        return result.id

    async def status(self, task_id: str) -> TaskState:
        loop = asyncio.get_event_loop()
        state = await loop.run_in_executor(
            None, lambda: AsyncResult(task_id, app=self._app).state,
        )
        return map_celery_state(state)


class InlineWorkQueue(WorkQueue):
    """
    Executes each task synchronously inside enqueue(). Handlers are
    registered by task name; exceptions propagate after the task is marked
    finished.
    """

    def __init__(self, handlers: dict[str, Callable[..., Awaitable[Any]]] | None = None) -> None:
        self._handlers = dict(handlers or {})
        self._states: dict[str, TaskState] = {}
        self.submitted: list[tuple[str, dict[str, Any]]] = []

    def register(self, task_name: str, handler: Callable[..., Awaitable[Any]]) -> None:
        self._handlers[task_name] = handler

    async def enqueue(self, task_name: str, kwargs: dict[str, Any]) -> str:
        task_id = str(uuid.uuid4())
        self.submitted.append((task_name, dict(kwargs)))
        handler = self._handlers.get(task_name)
        if handler is None:
            # Recorded but never run, like a message waiting on a broker
            self._states[task_id] = TaskState.PENDING
            return task_id

        self._states[task_id] = TaskState.RUNNING
        try:
            await handler(**kwargs)
        finally:
            self._states[task_id] = TaskState.FINISHED
        return task_id

    async def status(self, task_id: str) -> TaskState:
        return self._states.get(task_id, TaskState.PENDING)
