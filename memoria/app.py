"""Main application module for the memory assistant."""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from .config import Config, config as default_config
from .context import ContextStore, ConversationContextManager, build_rules
from .llm import LLMConfig, LLMEngine, LlamaResponseGenerator, PromptManager, UnavailableResponseGenerator
from .memory.embedding import EmbeddingGenerator, GeminiEmbeddingService
from .memory.memory_manager import DAY_MS, MemoryManager
from .memory.memory_utils import get_memory_statistics
from .memory.models import MemoryRecord, ScoredMemory
from .memory.store import MemoryStore


@dataclass(frozen=True)
class InboundMessage:
    """A message delivered by the transport."""
    sender: str  # Opaque user identifier, e.g. a chat ID
    body: str


class Assistant:
    """Main assistant class that ties together all components."""

    def __init__(
        self,
        settings: Optional[Config] = None,
        response_generator=None,
        embedding_generator: Optional[EmbeddingGenerator] = None,
        setup_logging: bool = True,
    ):
        """Initialize the assistant.

        Args:
            settings: Configuration (module-level config if None)
            response_generator: Overrides the llama.cpp generator built from config
            embedding_generator: Overrides the generator built from config
            setup_logging: Whether to (re)configure loguru sinks
        """
        self.config = settings or default_config
        if setup_logging:
            self._setup_logging()

        self.memory_manager = self._init_memory(embedding_generator)
        self.response_generator = response_generator or self._init_llm()
        self.context_manager = ConversationContextManager(
            memory_manager=self.memory_manager,
            response_generator=self.response_generator,
            context_store=ContextStore(),
            persona=self.config["context.persona"],
            directive_rules=build_rules(self.config.get("context.directive_rules", [])),
            max_entries=self.config["context.max_entries"],
            prefix_entries=self.config["context.prefix_entries"],
            retained_entries=self.config["context.retained_entries"],
            retrieve_limit=self.config["memory.retrieve_limit"],
            generation_timeout=self.config["llm.timeout"],
            apology=self.config["context.apology"],
        )

    def _setup_logging(self) -> None:
        """Configure logging for the application."""
        log_level = self.config["logging.level"]
        log_file = Path(self.config["logging.file"])

        # Ensure log directory exists
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # Configure loguru
        logger.remove()  # Remove default handler
        logger.add(
            log_file,
            level=log_level,
            rotation=self.config["logging.rotation"],
            retention=self.config["logging.retention"],
            enqueue=True,
            backtrace=True,
            diagnose=self.config["app.debug"]
        )

        # Also log to console in debug mode
        if self.config["app.debug"]:
            logger.add(
                lambda msg: print(msg, end=""),
                level=log_level,
                colorize=True
            )

    def _init_embeddings(self) -> EmbeddingGenerator:
        dimension = self.config["embedding.dimension"]
        api_key = self.config["embedding.api_key"]

        remote = None
        if api_key:
            remote = GeminiEmbeddingService(
                api_key=api_key,
                model=self.config["embedding.model"],
                endpoint=self.config["embedding.endpoint"],
                output_dim=dimension,
                timeout=self.config["embedding.timeout"],
            )
        else:
            logger.info("No embedding API key configured, using local fallback embeddings")

        return EmbeddingGenerator(
            remote=remote,
            embedding_dim=dimension,
            timeout=self.config["embedding.timeout"],
        )

    def _init_memory(self, embedding_generator: Optional[EmbeddingGenerator]) -> MemoryManager:
        """Initialize the memory system."""
        logger.info("Initializing memory system...")

        embedding_generator = embedding_generator or self._init_embeddings()
        store = MemoryStore(
            db_url=self.config["memory.db_url"],
            embedding_dim=embedding_generator.embedding_dim,
        )
        return MemoryManager(
            store=store,
            embedding_generator=embedding_generator,
            max_memory_age_ms=int(self.config["memory.max_memory_age_days"] * DAY_MS),
            max_results=self.config["memory.max_results"],
        )

    def _init_llm(self):
        """Initialize the llama.cpp response generator.

        Returns:
            A LlamaResponseGenerator, or an UnavailableResponseGenerator if the
            model cannot be loaded
        """
        llm_config = self.config.get("llm", {})
        model_path = llm_config.get("model_path")

        if not model_path:
            # Try to find the model in the models directory
            models_dir = Path("models/llm")
            model_files = sorted(models_dir.glob("*.gguf")) if models_dir.exists() else []
            if not model_files:
                logger.error("No LLM model configured and no .gguf files found in models/llm/")
                return UnavailableResponseGenerator("no model file")
            model_path = str(model_files[0])

        try:
            engine = LLMEngine(LLMConfig(
                model_path=model_path,
                n_ctx=int(llm_config.get("context_window", 2048)),
                verbose=bool(self.config["app.debug"]),
            ))
        except Exception as e:
            logger.error(f"Failed to initialize LLM: {e}")
            return UnavailableResponseGenerator(str(e))

        logger.info(f"Initialized LLM with config: {engine.config.to_dict()}")
        return LlamaResponseGenerator(
            engine,
            PromptManager(persona_name=llm_config.get("persona_name", "N")),
            max_tokens=int(llm_config.get("max_tokens", 256)),
            temperature=float(llm_config.get("temperature", 0.7)),
            top_p=float(llm_config.get("top_p", 0.9)),
            top_k=int(llm_config.get("top_k", 40)),
            repeat_penalty=float(llm_config.get("repeat_penalty", 1.1)),
            stop=["\nUser Message:"],
        )

    async def start(self) -> None:
        await self.memory_manager.initialize()

    async def handle_message(self, message: InboundMessage) -> str:
        """Process an inbound message and return the reply text."""
        logger.info(f"Message from {message.sender}: {message.body[:50]}")
        return await self.context_manager.handle_turn(message.sender, message.body)

    async def recent_memories(self, user_id: str, limit: int = 10) -> List[MemoryRecord]:
        return await self.memory_manager.retrieve_memories(user_id, limit)

    async def similar_memories(self, user_id: str, text: str, limit: int = 10) -> List[ScoredMemory]:
        return await self.memory_manager.find_similar_memories(user_id, text, limit)

    def get_memory_stats(self) -> Dict[str, Any]:
        """Get statistics about stored memories."""
        stats = get_memory_statistics(self.memory_manager.store)
        stats["active_conversations"] = len(self.context_manager.contexts)
        return stats

    def close(self) -> None:
        self.memory_manager.close()
