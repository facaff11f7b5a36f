"""
LLM Engine

Response generation with a local llama.cpp model.
"""
import asyncio
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from loguru import logger

from ..errors import ResponseGenerationError
from .prompt_manager import PromptManager


class ResponseGenerator(Protocol):
    """Anything that turns a context window and a message into a reply."""

    async def generate(self, context: Sequence[str], message: str) -> str:
        ...


class LLMConfig:
    """Configuration for the LLM engine."""

    def __init__(
        self,
        model_path: str,
        n_ctx: int = 2048,
        n_threads: int = 0,  # 0 = use half the available cores
        n_gpu_layers: int = 0,  # 0 = CPU only
        seed: int = -1,  # -1 for random
        verbose: bool = False,
    ):
        """Initialize LLM configuration."""
        self.model_path = model_path
        self.n_ctx = n_ctx
        self.n_threads = n_threads or max(1, (os.cpu_count() or 2) // 2)
        self.n_gpu_layers = n_gpu_layers
        self.seed = seed
        self.verbose = verbose

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {k: v for k, v in self.__dict__.items()
                if not k.startswith('_') and not callable(v)}


@dataclass
class LLMResponse:
    """Response from the LLM engine."""
    text: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    time_taken: float = 0.0
    model: str = ""
    finish_reason: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __str__(self) -> str:
        """String representation of the response."""
        return self.text


class LLMEngine:
    """LLM engine for local inference using llama.cpp."""

    def __init__(self, config: LLMConfig):
        """Initialize the LLM engine."""
        self.config = config
        self.model = None
        self._lock = threading.RLock()
        self._load_model()

    def _load_model(self):
        """Load the LLM model."""
        if not os.path.exists(self.config.model_path):
            raise FileNotFoundError(f"Model file not found: {self.config.model_path}")

        try:
            import llama_cpp
        except ImportError as e:
            raise ImportError(
                "llama-cpp-python is required for local response generation. "
                "Install with: pip install 'memoria[llm]'"
            ) from e

        start_time = time.time()
        try:
            with self._lock:
                self.model = llama_cpp.Llama(
                    model_path=self.config.model_path,
                    n_ctx=self.config.n_ctx,
                    n_threads=self.config.n_threads,
                    n_gpu_layers=self.config.n_gpu_layers,
                    seed=self.config.seed,
                    verbose=self.config.verbose,
                )
        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            raise

        load_time = time.time() - start_time
        logger.info(f"Loaded model in {load_time:.2f}s: {self.config.model_path}")

    def generate(
        self,
        prompt: str,
        max_tokens: int = 256,
        temperature: float = 0.7,
        top_p: float = 0.9,
        top_k: int = 40,
        repeat_penalty: float = 1.1,
        stop: Optional[Union[str, List[str]]] = None,
    ) -> LLMResponse:
        """Generate text from a prompt.

        Args:
            prompt: Input prompt
            max_tokens: Maximum number of tokens to generate
            temperature: Sampling temperature (0-2, higher = more creative)
            top_p: Nucleus sampling (0-1)
            top_k: Top-k sampling (0 = disabled)
            repeat_penalty: Penalty for repeating tokens (1.0 = no penalty)
            stop: Stop sequence(s)

        Returns:
            LLMResponse
        """
        if not self.model:
            raise RuntimeError("Model not loaded")

        if isinstance(stop, str):
            stop = [stop]

        start_time = time.time()
        try:
            with self._lock:
                response = self.model(
                    prompt=prompt,
                    max_tokens=max_tokens,
                    temperature=max(0.01, min(temperature, 2.0)),
                    top_p=max(0.0, min(top_p, 1.0)),
                    top_k=max(0, top_k),
                    repeat_penalty=max(0.0, repeat_penalty),
                    stop=stop or [],
                )
        except Exception as e:
            logger.error(f"Generation failed: {e}")
            raise

        choice = response.get('choices', [{}])[0]
        usage = response.get('usage', {})
        return LLMResponse(
            text=choice.get('text', ''),
            prompt_tokens=usage.get('prompt_tokens', 0),
            completion_tokens=usage.get('completion_tokens', 0),
            time_taken=time.time() - start_time,
            model=os.path.basename(self.config.model_path),
            finish_reason=choice.get('finish_reason') or '',
            metadata={
                'temperature': temperature,
                'top_p': top_p,
                'top_k': top_k,
                'repeat_penalty': repeat_penalty,
                'stop_sequence': stop,
            },
        )


class LlamaResponseGenerator:
    """ResponseGenerator that renders the chat prompt and runs an LLMEngine."""

    def __init__(
        self,
        engine: LLMEngine,
        prompt_manager: Optional[PromptManager] = None,
        **generation_params: Any,
    ):
        """
        Args:
            engine: Loaded engine (anything with a compatible ``generate``)
            prompt_manager: Template renderer (default templates if None)
            **generation_params: Passed through to ``engine.generate``
        """
        self.engine = engine
        self.prompt_manager = prompt_manager or PromptManager()
        self.generation_params = generation_params

    async def generate(self, context: Sequence[str], message: str) -> str:
        prompt = self.prompt_manager.render_chat(context, message)
        logger.debug(f"Generating response for prompt of {len(prompt)} characters")

        # llama.cpp blocks, keep it off the event loop
        response = await asyncio.to_thread(self.engine.generate, prompt, **self.generation_params)

        text = str(response).strip()
        if not text:
            raise ResponseGenerationError("Empty response from LLM")
        return text


class UnavailableResponseGenerator:
    """Stands in when no model could be loaded; every call fails."""

    def __init__(self, reason: str):
        self.reason = reason

    async def generate(self, context: Sequence[str], message: str) -> str:
        raise ResponseGenerationError(f"LLM not initialized: {self.reason}")
