"""
Conversation Context

Bounded per-user context windows that merge stored memories with live dialogue.
"""

from .entries import ContextEntry, ConversationContext, DirectiveRule, EntryKind, build_rules
from .manager import (
    DEFAULT_APOLOGY,
    PREVIOUS_INTERACTIONS_HEADER,
    RELEVANT_INTERACTIONS_HEADER,
    ContextStore,
    ConversationContextManager,
)

__all__ = [
    'ContextEntry',
    'ConversationContext',
    'DirectiveRule',
    'EntryKind',
    'build_rules',
    'ContextStore',
    'ConversationContextManager',
    'DEFAULT_APOLOGY',
    'PREVIOUS_INTERACTIONS_HEADER',
    'RELEVANT_INTERACTIONS_HEADER',
]
