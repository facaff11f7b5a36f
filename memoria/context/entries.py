"""
Conversation context entries.

A context is an ordered list of tagged entries: persona lines first, then
directives, retrieved memories and dialogue turns as they are added.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple


class EntryKind(str, Enum):
    """Kinds of context entries."""
    PERSONA = "persona"                    # Fixed assistant persona directives
    DIRECTIVE = "directive"                # Injected directives and section headers
    USER_TURN = "user_turn"                # Inbound message text
    ASSISTANT_TURN = "assistant_turn"      # Generated reply
    RETRIEVED_MEMORY = "retrieved_memory"  # Line taken from a stored memory


@dataclass(frozen=True)
class ContextEntry:
    """A single line of conversation context."""
    kind: EntryKind
    content: str
    source: Optional[str] = None  # Directive rule name or memory record ID


@dataclass(frozen=True)
class DirectiveRule:
    """Directive lines added once when any trigger term shows up."""
    name: str
    triggers: Tuple[str, ...]
    directives: Tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, 'triggers', tuple(t.lower() for t in self.triggers if t))
        object.__setattr__(self, 'directives', tuple(self.directives))
        if not self.name:
            raise ValueError("Directive rule needs a name")
        if not self.triggers:
            raise ValueError(f"Directive rule {self.name!r} needs at least one trigger term")

    def matches(self, text: str) -> bool:
        """Case-insensitive substring match against any trigger term."""
        lowered = text.lower()
        return any(trigger in lowered for trigger in self.triggers)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DirectiveRule':
        """Create a rule from a configuration mapping."""
        return cls(
            name=data['name'],
            triggers=tuple(data.get('triggers', ())),
            directives=tuple(data.get('directives', ())),
        )


@dataclass
class ConversationContext:
    """The live context window of one user."""
    user_id: str
    entries: List[ContextEntry] = field(default_factory=list)

    def append(self, kind: EntryKind, content: str, source: Optional[str] = None) -> None:
        self.entries.append(ContextEntry(kind, content, source))

    def extend(self, kind: EntryKind, contents: Iterable[str], source: Optional[str] = None) -> None:
        for content in contents:
            self.append(kind, content, source)

    def texts(self) -> List[str]:
        """Plain strings in order, as handed to the response generator."""
        return [entry.content for entry in self.entries]

    def mentions(self, rule: DirectiveRule) -> bool:
        """Whether any entry matches one of the rule's trigger terms."""
        return any(rule.matches(entry.content) for entry in self.entries)

    def has_directive_block(self, rule_name: str) -> bool:
        return any(
            entry.kind == EntryKind.DIRECTIVE and entry.source == rule_name
            for entry in self.entries
        )

    def truncate(self, max_entries: int, prefix_entries: int, retained_entries: int) -> int:
        """Drop the oldest entries after the fixed prefix.

        When there are more than ``max_entries`` entries, entries are removed
        starting at index ``prefix_entries`` until ``retained_entries``
        remain. The prefix and the most recent entries keep their order.

        Returns:
            Number of entries removed
        """
        if len(self.entries) <= max_entries:
            return 0
        removed = len(self.entries) - retained_entries
        del self.entries[prefix_entries:prefix_entries + removed]
        return removed

    def copy(self) -> 'ConversationContext':
        return ConversationContext(self.user_id, list(self.entries))

    def __len__(self) -> int:
        return len(self.entries)


def build_rules(configured: Sequence[Any]) -> List[DirectiveRule]:
    """Turn configuration mappings (or ready rules) into DirectiveRules."""
    return [
        rule if isinstance(rule, DirectiveRule) else DirectiveRule.from_dict(rule)
        for rule in configured
    ]
