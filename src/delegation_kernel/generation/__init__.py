from .anthropic import AnthropicGenerationService
from .base import GenerationService
from .prompts import DRAFT_EMAIL_SYSTEM_PROMPT

__all__ = ["AnthropicGenerationService", "GenerationService", "DRAFT_EMAIL_SYSTEM_PROMPT"]
