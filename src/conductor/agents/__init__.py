"""Model-driven workers."""
from conductor.agents.llm_worker import LLMResponseError, LLMReviewer, LLMWorker

__all__ = ["LLMResponseError", "LLMReviewer", "LLMWorker"]
