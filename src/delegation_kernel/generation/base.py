from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class GenerationService(ABC):
    """Structured text-generation collaborator.

    Implementations return the parsed JSON value produced by the model or
    raise ``GenerationError``.
    """

    @abstractmethod
    async def generate(
        self,
        *,
        system_prompt: str,
        structured_input: dict[str, Any],
        model_id: str,
        max_tokens: int,
    ) -> Any:
        raise NotImplementedError
