"""
Tests for conversation context management.
"""
import asyncio
import unittest

from memoria.context import (
    PREVIOUS_INTERACTIONS_HEADER,
    RELEVANT_INTERACTIONS_HEADER,
    ContextEntry,
    ConversationContext,
    ConversationContextManager,
    DirectiveRule,
    EntryKind,
    build_rules,
)
from memoria.errors import RetrievalError, StorageError
from memoria.memory.memory_manager import MemoryManager

T0 = 1_700_000_000_000
PERSONA = ["You are N.", "You are helpful.", "You are concise."]
APOLOGY = "Sorry, something went wrong."
CRYPTO_RULE = DirectiveRule(
    name="crypto",
    triggers=("Bitcoin", "crypto"),
    directives=("Never give financial advice.", "Mention volatility."),
)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        self.now += 1
        return self.now


class EchoGenerator:
    """Response generator that records its inputs."""

    def __init__(self):
        self.calls = []

    async def generate(self, context, message):
        self.calls.append((list(context), message))
        return f"reply to: {message}"


class FailingGenerator:
    async def generate(self, context, message):
        raise RuntimeError("model crashed")


class SlowGenerator:
    async def generate(self, context, message):
        await asyncio.sleep(5)
        return "too late"


class NonTextGenerator:
    async def generate(self, context, message):
        return None


class NoStorageMemoryManager(MemoryManager):
    async def store_memory(self, user_id, context):
        raise StorageError("database unavailable")


class NoRecallMemoryManager(MemoryManager):
    async def retrieve_memories(self, user_id, limit=10):
        raise RetrievalError("index unavailable")


class NoSearchMemoryManager(MemoryManager):
    async def find_similar_memories(self, user_id, query_text, limit=10):
        raise RetrievalError("index unavailable")


def make_context(n, prefix=3):
    context = ConversationContext("alice")
    context.extend(EntryKind.PERSONA, [f"P{i}" for i in range(1, prefix + 1)])
    context.extend(EntryKind.USER_TURN, [f"e{i}" for i in range(1, n - prefix + 1)])
    return context


class TestConversationContext(unittest.TestCase):
    """Test cases for context entries and truncation."""

    def test_truncate_keeps_prefix_and_recent(self):
        """Eleven entries shrink to the prefix plus the five newest."""
        context = make_context(11)

        removed = context.truncate(max_entries=10, prefix_entries=3, retained_entries=8)

        self.assertEqual(removed, 3)
        self.assertEqual(context.texts(), ["P1", "P2", "P3", "e4", "e5", "e6", "e7", "e8"])

    def test_truncate_large_context(self):
        """Any overflow ends at the retained length."""
        context = make_context(25)

        context.truncate(max_entries=10, prefix_entries=3, retained_entries=8)

        self.assertEqual(len(context), 8)
        self.assertEqual(context.texts()[:3], ["P1", "P2", "P3"])
        self.assertEqual(context.texts()[3:], ["e18", "e19", "e20", "e21", "e22"])

    def test_no_truncation_at_limit(self):
        """A context of exactly max_entries is left alone."""
        context = make_context(10)

        self.assertEqual(context.truncate(10, 3, 8), 0)
        self.assertEqual(len(context), 10)

    def test_copy_is_independent(self):
        """Changes to a copy do not reach the original."""
        context = make_context(4)
        copy = context.copy()
        copy.append(EntryKind.USER_TURN, "new")

        self.assertEqual(len(context), 4)
        self.assertEqual(copy.entries[-1], ContextEntry(EntryKind.USER_TURN, "new"))

    def test_rule_matching(self):
        """Trigger terms match case-insensitively as substrings."""
        self.assertEqual(CRYPTO_RULE.triggers, ("bitcoin", "crypto"))
        self.assertTrue(CRYPTO_RULE.matches("Should I buy BITCOIN?"))
        self.assertTrue(CRYPTO_RULE.matches("cryptocurrency prices"))
        self.assertFalse(CRYPTO_RULE.matches("What is the weather?"))

    def test_build_rules_from_config(self):
        """Rules can be built from configuration mappings."""
        rules = build_rules([
            {"name": "weather", "triggers": ["rain"], "directives": ["Suggest an umbrella."]},
            CRYPTO_RULE,
        ])

        self.assertEqual([r.name for r in rules], ["weather", "crypto"])
        self.assertEqual(rules[0].directives, ("Suggest an umbrella.",))

    def test_rule_needs_triggers(self):
        """A rule without trigger terms is invalid."""
        with self.assertRaises(ValueError):
            DirectiveRule(name="empty", triggers=(), directives=("x",))


class ContextManagerTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared setup for context manager tests."""

    memory_manager_class = MemoryManager

    def setUp(self):
        """Set up test environment."""
        self.memory_manager = self.memory_manager_class(clock=FakeClock())
        self.generator = EchoGenerator()
        self.manager = self.make_manager(self.generator)

    def tearDown(self):
        """Clean up after tests."""
        self.memory_manager.close()

    def make_manager(self, generator, **kwargs):
        kwargs.setdefault("persona", PERSONA)
        kwargs.setdefault("directive_rules", [CRYPTO_RULE])
        kwargs.setdefault("apology", APOLOGY)
        return ConversationContextManager(
            memory_manager=self.memory_manager,
            response_generator=generator,
            **kwargs,
        )


class TestContextCreation(ContextManagerTestCase):
    """Test cases for building contexts on first contact."""

    async def test_new_user_gets_persona(self):
        """A user without memories starts from the persona."""
        context = await self.manager.get_context("alice")

        self.assertEqual(context.texts(), PERSONA)
        self.assertTrue(all(e.kind == EntryKind.PERSONA for e in context.entries))
        self.assertIn("alice", self.manager.contexts)

    async def test_first_contact_merges_memories(self):
        """Stored memories follow the persona, newest first."""
        older = await self.memory_manager.store_memory("alice", ["I like jazz", "Noted"])
        newer = await self.memory_manager.store_memory("alice", ["My cat is Tom", "Nice name"])
        await self.memory_manager.store_memory("bob", ["Bob's memory", "Ok"])

        context = await self.manager.get_context("alice")

        self.assertEqual(
            context.texts(),
            PERSONA + [
                PREVIOUS_INTERACTIONS_HEADER,
                "My cat is Tom", "Nice name",
                "I like jazz", "Noted",
            ],
        )
        memory_entries = [e for e in context.entries if e.kind == EntryKind.RETRIEVED_MEMORY]
        self.assertEqual([e.source for e in memory_entries], [newer.id, newer.id, older.id, older.id])

    async def test_existing_context_is_reused(self):
        """The context is built once per user."""
        first = await self.manager.get_context("alice")
        await self.memory_manager.store_memory("alice", ["later", "memory"])

        second = await self.manager.get_context("alice")

        self.assertIs(first, second)
        self.assertEqual(second.texts(), PERSONA)


class TestDirectiveInjection(ContextManagerTestCase):
    """Test cases for trigger-term directives."""

    def test_injects_when_message_mentions_trigger(self):
        """A matching message adds the directive block."""
        context = self.manager.base_context("alice")

        added = self.manager.inject_directives(context, "Thinking about Bitcoin")

        self.assertEqual(added, ["crypto"])
        self.assertEqual(context.texts()[3:], list(CRYPTO_RULE.directives))
        self.assertTrue(all(e.source == "crypto" for e in context.entries[3:]))

    def test_injection_is_idempotent(self):
        """Applying the same message twice adds the block once."""
        context = self.manager.base_context("alice")

        self.manager.inject_directives(context, "bitcoin")
        once = context.texts()
        added = self.manager.inject_directives(context, "bitcoin again")

        self.assertEqual(added, [])
        self.assertEqual(context.texts(), once)

    def test_injects_when_context_mentions_trigger(self):
        """Earlier entries can trigger a rule too."""
        context = self.manager.base_context("alice")
        context.append(EntryKind.USER_TURN, "I hold some crypto")

        added = self.manager.inject_directives(context, "what now?")

        self.assertEqual(added, ["crypto"])

    def test_no_match_no_injection(self):
        """Unrelated messages leave the context alone."""
        context = self.manager.base_context("alice")

        self.assertEqual(self.manager.inject_directives(context, "hello"), [])
        self.assertEqual(context.texts(), PERSONA)


class TestConversationTurns(ContextManagerTestCase):
    """Test cases for full conversation turns."""

    async def test_first_turn(self):
        """A turn generates a reply, records it and stores the exchange."""
        reply = await self.manager.handle_turn("alice", "hello")

        self.assertEqual(reply, "reply to: hello")
        self.assertEqual(self.generator.calls, [(PERSONA, "hello")])

        context = self.manager.contexts.get("alice")
        self.assertEqual(context.texts(), PERSONA + ["hello", "reply to: hello"])
        self.assertEqual(context.entries[-2].kind, EntryKind.USER_TURN)
        self.assertEqual(context.entries[-1].kind, EntryKind.ASSISTANT_TURN)

        records = self.memory_manager.store.records()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].user_id, "alice")
        self.assertEqual(records[0].context, ("hello", "reply to: hello"))

    async def test_similar_memories_reach_generator(self):
        """Past exchanges are offered to the generator under a header."""
        await self.manager.handle_turn("alice", "hello")
        await self.manager.handle_turn("alice", "how are you")

        context_seen, message = self.generator.calls[-1]
        self.assertEqual(message, "how are you")
        self.assertEqual(
            context_seen,
            PERSONA + [
                "hello", "reply to: hello",
                RELEVANT_INTERACTIONS_HEADER,
                "hello", "reply to: hello",
            ],
        )
        self.assertEqual(len(self.manager.contexts.get("alice")), 10)

    async def test_context_stays_bounded(self):
        """Long conversations are truncated to the prefix plus recent entries."""
        for message in ("hello", "how are you", "tell me a joke"):
            await self.manager.handle_turn("alice", message)

        context = self.manager.contexts.get("alice")
        self.assertEqual(len(context), 8)
        self.assertEqual(context.texts()[:3], PERSONA)
        self.assertEqual(context.texts()[-2:], ["tell me a joke", "reply to: tell me a joke"])

    async def test_directive_block_added_once(self):
        """A triggered directive block appears once across turns."""
        await self.manager.handle_turn("alice", "Is Bitcoin a good idea?")
        await self.manager.handle_turn("alice", "What about crypto in general?")

        first_context, _ = self.generator.calls[0]
        second_context, _ = self.generator.calls[1]
        self.assertEqual(first_context.count("Never give financial advice."), 1)
        self.assertEqual(second_context.count("Never give financial advice."), 1)

    async def test_users_are_isolated(self):
        """Each user has a separate context and memories."""
        await self.manager.handle_turn("alice", "I am Alice")
        await self.manager.handle_turn("bob", "I am Bob")

        bob_context, _ = self.generator.calls[-1]
        self.assertNotIn("I am Alice", bob_context)
        self.assertEqual(len(self.manager.contexts), 2)

    async def test_concurrent_turns_for_one_user(self):
        """Turns for the same user run one at a time."""
        replies = await asyncio.gather(
            self.manager.handle_turn("alice", "first"),
            self.manager.handle_turn("alice", "second"),
        )

        self.assertEqual(replies, ["reply to: first", "reply to: second"])
        texts = self.manager.contexts.get("alice").texts()
        self.assertIn("first", texts)
        self.assertIn("second", texts)
        self.assertEqual(len(self.memory_manager.store), 2)

    async def test_generator_failure_returns_apology(self):
        """A failed generation apologizes and leaves the context as it was."""
        await self.manager.handle_turn("alice", "hello")
        before = self.manager.contexts.get("alice").texts()

        self.manager.response_generator = FailingGenerator()
        reply = await self.manager.handle_turn("alice", "Bitcoin?")

        self.assertEqual(reply, APOLOGY)
        self.assertEqual(self.manager.contexts.get("alice").texts(), before)
        self.assertEqual(len(self.memory_manager.store), 1)

    async def test_generator_timeout_returns_apology(self):
        """Generation that takes too long is abandoned."""
        manager = self.make_manager(SlowGenerator(), generation_timeout=0.01)

        self.assertEqual(await manager.handle_turn("alice", "hello"), APOLOGY)
        self.assertEqual(manager.contexts.get("alice").texts(), PERSONA)

    async def test_non_text_reply_returns_apology(self):
        """A generator must return text."""
        manager = self.make_manager(NonTextGenerator())

        self.assertEqual(await manager.handle_turn("alice", "hello"), APOLOGY)

    def test_rejects_inconsistent_bounds(self):
        """Truncation bounds must be ordered."""
        with self.assertRaises(ValueError):
            self.make_manager(self.generator, prefix_entries=9, retained_entries=8)
        with self.assertRaises(ValueError):
            self.make_manager(self.generator, retained_entries=12, max_entries=10)


class TestStorageFailure(ContextManagerTestCase):
    """A failure to store memories does not fail the turn."""

    memory_manager_class = NoStorageMemoryManager

    async def test_reply_still_returned(self):
        reply = await self.manager.handle_turn("alice", "hello")

        self.assertEqual(reply, "reply to: hello")
        self.assertEqual(self.manager.contexts.get("alice").texts(), PERSONA + ["hello", reply])
        self.assertEqual(len(self.memory_manager.store), 0)


class TestRecallFailure(ContextManagerTestCase):
    """A failure to recall memories on first contact falls back to the persona."""

    memory_manager_class = NoRecallMemoryManager

    async def test_base_context_used(self):
        context = await self.manager.get_context("alice")

        self.assertEqual(context.texts(), PERSONA)
        self.assertEqual(await self.manager.handle_turn("alice", "hello"), "reply to: hello")


class TestSearchFailure(ContextManagerTestCase):
    """A failing similarity search fails the turn."""

    memory_manager_class = NoSearchMemoryManager

    async def test_apology_returned(self):
        reply = await self.manager.handle_turn("alice", "hello")

        self.assertEqual(reply, APOLOGY)
        self.assertEqual(self.generator.calls, [])
        self.assertEqual(self.manager.contexts.get("alice").texts(), PERSONA)


if __name__ == "__main__":
    unittest.main()
