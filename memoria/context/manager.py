"""Per-user conversation context management.

Builds each user's context on first contact, merges stored memories into it,
runs one turn per inbound message and keeps the window bounded.
"""
import asyncio
from typing import Dict, Iterator, List, Optional, Sequence

from loguru import logger

from ..errors import ResponseGenerationError
from ..memory.memory_manager import MemoryManager
from .entries import ConversationContext, DirectiveRule, EntryKind

PREVIOUS_INTERACTIONS_HEADER = "Previous relevant interactions:"
RELEVANT_INTERACTIONS_HEADER = "Relevant past interactions:"
DEFAULT_APOLOGY = (
    "I apologize, but I encountered an error. "
    "As N, I'll ensure this gets resolved quickly."
)


class ContextStore:
    """Process-lifetime map of user ID to live conversation context."""

    def __init__(self):
        self._contexts: Dict[str, ConversationContext] = {}

    def get(self, user_id: str) -> Optional[ConversationContext]:
        return self._contexts.get(user_id)

    def set(self, context: ConversationContext) -> None:
        self._contexts[context.user_id] = context

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._contexts

    def __iter__(self) -> Iterator[str]:
        return iter(self._contexts)

    def __len__(self) -> int:
        return len(self._contexts)


class ConversationContextManager:
    """
    Maintains a bounded, ordered context window per user.

    Each turn works on a copy of the user's context and only replaces the
    stored context once the turn has completed, so a failed turn leaves the
    previous context untouched.
    """

    def __init__(
        self,
        memory_manager: MemoryManager,
        response_generator,
        context_store: Optional[ContextStore] = None,
        persona: Optional[Sequence[str]] = None,
        directive_rules: Sequence[DirectiveRule] = (),
        max_entries: int = 10,
        prefix_entries: int = 3,
        retained_entries: int = 8,
        retrieve_limit: int = 10,
        generation_timeout: Optional[float] = None,
        apology: str = DEFAULT_APOLOGY,
    ):
        """
        Initialize the context manager.

        Args:
            memory_manager: Long-term memory used for retrieval and storage
            response_generator: Object with an async ``generate(context, message)``
            context_store: Store for live contexts (a new one if None)
            persona: Base persona lines every context starts with
            directive_rules: Trigger-term rules for injected directive blocks
            max_entries: Context length that triggers truncation
            prefix_entries: Leading entries never removed by truncation
            retained_entries: Context length left after truncation
            retrieve_limit: Records requested on first contact
            generation_timeout: Seconds allowed for response generation
            apology: Reply sent when a turn fails
        """
        if not 0 <= prefix_entries <= retained_entries <= max_entries:
            raise ValueError(
                "Expected 0 <= prefix_entries <= retained_entries <= max_entries"
            )

        self.memory_manager = memory_manager
        self.response_generator = response_generator
        self.contexts = context_store if context_store is not None else ContextStore()
        self.persona = list(persona) if persona is not None else []
        self.directive_rules = list(directive_rules)
        self.max_entries = max_entries
        self.prefix_entries = prefix_entries
        self.retained_entries = retained_entries
        self.retrieve_limit = retrieve_limit
        self.generation_timeout = generation_timeout
        self.apology = apology

        self._user_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    def base_context(self, user_id: str) -> ConversationContext:
        context = ConversationContext(user_id)
        context.extend(EntryKind.PERSONA, self.persona)
        return context

    async def get_context(self, user_id: str) -> ConversationContext:
        """Return the user's live context, creating it on first contact.

        On first contact the persona lines are followed by the lines of the
        user's recent memories, newest memory first. If retrieval fails the
        context starts from the persona alone.
        """
        context = self.contexts.get(user_id)
        if context is not None:
            return context

        context = self.base_context(user_id)
        try:
            memories = await self.memory_manager.retrieve_memories(user_id, self.retrieve_limit)
            if memories:
                context.append(EntryKind.DIRECTIVE, PREVIOUS_INTERACTIONS_HEADER)
                for memory in memories:
                    context.extend(EntryKind.RETRIEVED_MEMORY, memory.context, memory.id)
        except Exception as e:
            logger.warning(f"Error retrieving memories for user {user_id}: {e}")
            context = self.base_context(user_id)

        self.contexts.set(context)
        logger.info(f"Created conversation context for user {user_id} with {len(context)} entries")
        return context

    def inject_directives(self, context: ConversationContext, message: str) -> List[str]:
        """Append each triggered directive block that is not already present.

        A rule triggers when one of its terms appears in ``message`` or in any
        existing entry. Applying this twice never adds a block twice.

        Returns:
            Names of the rules whose blocks were added
        """
        added = []
        for rule in self.directive_rules:
            if context.has_directive_block(rule.name):
                continue
            if rule.matches(message) or context.mentions(rule):
                context.extend(EntryKind.DIRECTIVE, rule.directives, rule.name)
                added.append(rule.name)
                logger.debug(f"Injected directive block {rule.name!r} for user {context.user_id}")
        return added

    async def _generate(self, context: ConversationContext, message: str) -> str:
        try:
            reply = await asyncio.wait_for(
                self.response_generator.generate(context.texts(), message),
                self.generation_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ResponseGenerationError(
                f"Response generation timed out after {self.generation_timeout}s"
            ) from e
        if not isinstance(reply, str):
            raise ResponseGenerationError(f"Response generator returned {type(reply).__name__}")
        return reply

    async def handle_turn(self, user_id: str, message: str) -> str:
        """Process one inbound message and return the reply.

        Args:
            user_id: Sender of the message
            message: Message text

        Returns:
            The generated reply, or the apology if anything in the turn failed
        """
        async with self._lock_for(user_id):
            try:
                return await self._run_turn(user_id, message)
            except Exception as e:
                logger.error(f"Error processing message from user {user_id}: {e!r}")
                return self.apology

    async def _run_turn(self, user_id: str, message: str) -> str:
        working = (await self.get_context(user_id)).copy()

        self.inject_directives(working, message)

        similar = await self.memory_manager.find_similar_memories(user_id, message)
        if similar:
            working.append(EntryKind.DIRECTIVE, RELEVANT_INTERACTIONS_HEADER)
            for memory in similar:
                working.extend(EntryKind.RETRIEVED_MEMORY, memory.context, memory.id)

        reply = await self._generate(working, message)

        working.append(EntryKind.USER_TURN, message)
        working.append(EntryKind.ASSISTANT_TURN, reply)

        try:
            await self.memory_manager.store_memory(user_id, [message, reply])
        except Exception as e:
            logger.warning(f"Error storing memory for user {user_id}: {e}")

        removed = working.truncate(self.max_entries, self.prefix_entries, self.retained_entries)
        if removed:
            logger.debug(f"Truncated {removed} context entries for user {user_id}")

        self.contexts.set(working)
        return reply
