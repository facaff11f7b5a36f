"""
LLM Module

Response generation for the assistant using llama.cpp.
"""

from .llm_engine import (
    LLMConfig,
    LLMEngine,
    LLMResponse,
    LlamaResponseGenerator,
    ResponseGenerator,
    UnavailableResponseGenerator,
)
from .prompt_manager import PromptManager

__all__ = [
    'LLMEngine',
    'LLMConfig',
    'LLMResponse',
    'LlamaResponseGenerator',
    'ResponseGenerator',
    'UnavailableResponseGenerator',
    'PromptManager',
]
