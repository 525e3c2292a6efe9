from __future__ import annotations

from ..types import ActionType
from .base import ActionHandler


class HandlerRegistry:
    def __init__(self, handlers: list[ActionHandler] | None = None) -> None:
        self._handlers: dict[ActionType, ActionHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: ActionHandler) -> None:
        if handler.action_type in self._handlers:
            existing = self._handlers[handler.action_type]
            raise ValueError(
                f"handler for {handler.action_type.value} already registered: {existing.name}@{existing.version}"
            )
        self._handlers[handler.action_type] = handler

    def get(self, action_type: ActionType) -> ActionHandler | None:
        return self._handlers.get(action_type)

    def supports(self, action_type: ActionType | None) -> bool:
        return action_type is not None and action_type in self._handlers

    @property
    def action_types(self) -> frozenset[ActionType]:
        return frozenset(self._handlers)
