from __future__ import annotations
import logging
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class Operator(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: str
    display_name: Optional[str] = None


Listener = Callable[[Optional[Operator]], None]


class OperatorSession:
    """Identité de l'opérateur courant (ou None) + notification des changements."""

    def __init__(self, operator: Optional[Operator] = None) -> None:
        self._current = operator
        self._listeners: List[Listener] = []

    @property
    def current(self) -> Optional[Operator]:
        return self._current

    @property
    def is_authenticated(self) -> bool:
        return self._current is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def login(self, operator: Operator) -> None:
        self._set(operator)

    def logout(self) -> None:
        self._set(None)

    def _set(self, operator: Optional[Operator]) -> None:
        self._current = operator
        logger.info("Operator changed: %s", operator.uid if operator else None)
        for listener in list(self._listeners):
            listener(operator)
