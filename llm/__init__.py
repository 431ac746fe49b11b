from .mediator import LLMError, LLMMediator, get_mediator
from .scoring import OpenAIReviewScorer

__all__ = ["LLMError", "LLMMediator", "OpenAIReviewScorer", "get_mediator"]
