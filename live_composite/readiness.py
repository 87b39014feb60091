from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional

from .errors import InvalidTransition

logger = logging.getLogger(__name__)


class ModelStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


_MODEL_TRANSITIONS = {
    ModelStatus.IDLE: {ModelStatus.LOADING},
    ModelStatus.LOADING: {ModelStatus.READY, ModelStatus.ERROR},
    ModelStatus.READY: {ModelStatus.IDLE},
    ModelStatus.ERROR: {ModelStatus.LOADING, ModelStatus.IDLE},
}


@dataclass(frozen=True)
class ReadinessState:
    model_status: ModelStatus = ModelStatus.IDLE
    camera_ready: bool = False
    run_requested: bool = False
    error: Optional[str] = None

    @property
    def can_run(self) -> bool:
        return self.model_status == ModelStatus.READY and self.camera_ready and self.run_requested


Listener = Callable[[ReadinessState], None]


class Readiness:
    """
    Model status, camera readiness and run intent, plus the derived `can_run`
    gate. Every change publishes a new immutable snapshot to the listeners.
    """

    def __init__(self):
        self._state = ReadinessState()
        self._listeners: List[Listener] = []
        self._model_error: Optional[str] = None

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def can_run(self) -> bool:
        return self._state.can_run

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, new: ReadinessState) -> None:
        if new == self._state:
            return
        old, self._state = self._state, new
        if old.can_run != new.can_run:
            logger.info("Gate %s", "open" if new.can_run else "closed")
        for listener in list(self._listeners):
            listener(new)

    def _move_model(self, target: ModelStatus, error: Optional[str]) -> None:
        current = self._state.model_status
        if target not in _MODEL_TRANSITIONS[current]:
            raise InvalidTransition(f"Model status {current.value} -> {target.value} is not allowed")
        logger.info("Model status: %s -> %s", current.value, target.value)
        self._publish(replace(self._state, model_status=target, error=error))

    # Model
    def begin_model_load(self) -> None:
        error = self._state.error
        # A retry clears the previous load failure, not camera errors.
        if self._model_error is not None and error == self._model_error:
            error = None
        self._move_model(ModelStatus.LOADING, error)
        self._model_error = None

    def model_ready(self) -> None:
        self._move_model(ModelStatus.READY, self._state.error)

    def model_failed(self, message: str) -> None:
        self._move_model(ModelStatus.ERROR, message)
        self._model_error = message

    def model_released(self) -> None:
        if self._state.model_status in (ModelStatus.READY, ModelStatus.ERROR):
            self._move_model(ModelStatus.IDLE, self._state.error)

    # Camera
    def camera_started(self) -> None:
        self._publish(replace(self._state, camera_ready=True))

    def camera_stopped(self, message: Optional[str] = None) -> None:
        error = message if message is not None else self._state.error
        self._publish(replace(self._state, camera_ready=False, error=error))

    def report_error(self, message: str) -> None:
        self._publish(replace(self._state, error=message))

    # Run intent
    def set_run_requested(self, value: bool) -> None:
        self._publish(replace(self._state, run_requested=bool(value)))

    def toggle_run(self) -> bool:
        self.set_run_requested(not self._state.run_requested)
        return self._state.run_requested
