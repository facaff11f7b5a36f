"""Command-line interface for the memory assistant."""
import argparse
import asyncio
import json
from typing import Optional, List

from .app import Assistant, InboundMessage
from .config import config
from .errors import MemorySystemError
from .llm import UnavailableResponseGenerator
from .memory.memory_utils import describe_memory

def main(args: Optional[List[str]] = None) -> None:
    """Run the CLI.

    Args:
        args: Command-line arguments (for testing)
    """
    parser = argparse.ArgumentParser(description="Memory assistant CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Chat command
    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat session")
    chat_parser.add_argument(
        "--user",
        type=str,
        default="default",
        help="User ID (default: default)"
    )

    # Query command
    query_parser = subparsers.add_parser("query", help="Send a single message")
    query_parser.add_argument(
        "query",
        type=str,
        help="The message to send"
    )
    query_parser.add_argument(
        "--user",
        type=str,
        default="default",
        help="User ID (default: default)"
    )

    # Recall command
    recall_parser = subparsers.add_parser("recall", help="List a user's recent memories")
    recall_parser.add_argument("--user", type=str, default="default", help="User ID (default: default)")
    recall_parser.add_argument("--limit", type=int, default=10, help="Maximum memories (default: 10)")

    # Search command
    search_parser = subparsers.add_parser("search", help="Find a user's memories similar to a text")
    search_parser.add_argument("text", type=str, help="Text to compare against")
    search_parser.add_argument("--user", type=str, default="default", help="User ID (default: default)")
    search_parser.add_argument("--limit", type=int, default=10, help="Maximum memories (default: 10)")

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show memory statistics")
    stats_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)"
    )

    # Parse arguments
    parsed_args = parser.parse_args(args)

    if parsed_args.command is None:
        parser.print_help()
        return

    # Only conversations need a language model
    needs_llm = parsed_args.command in ("chat", "query")
    assistant = Assistant(
        response_generator=None if needs_llm else UnavailableResponseGenerator("not needed")
    )

    try:
        if parsed_args.command == "chat":
            asyncio.run(_run_chat(assistant, parsed_args.user))
        elif parsed_args.command == "query":
            asyncio.run(_run_query(assistant, parsed_args.query, parsed_args.user))
        elif parsed_args.command == "recall":
            asyncio.run(_run_recall(assistant, parsed_args.user, parsed_args.limit))
        elif parsed_args.command == "search":
            asyncio.run(_run_search(assistant, parsed_args.text, parsed_args.user, parsed_args.limit))
        elif parsed_args.command == "stats":
            _show_stats(assistant, parsed_args.format)
    finally:
        assistant.close()

async def _run_chat(assistant: Assistant, user_id: str) -> None:
    """Run an interactive chat session."""
    await assistant.start()
    print(f"{config['app.name']} v{config['app.version']}")
    print("Type 'exit' or 'quit' to end the session.")
    print("-" * 50)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if user_input.lower() in ("exit", "quit"):
            print("Goodbye!")
            break

        if not user_input:
            continue

        reply = await assistant.handle_message(InboundMessage(user_id, user_input))
        print(f"\nAssistant: {reply}\n")

async def _run_query(assistant: Assistant, query: str, user_id: str) -> None:
    """Send a single message and print the reply."""
    await assistant.start()
    reply = await assistant.handle_message(InboundMessage(user_id, query))
    print(f"Response: {reply}")

async def _run_recall(assistant: Assistant, user_id: str, limit: int) -> None:
    """Print a user's recent memories."""
    try:
        memories = await assistant.recent_memories(user_id, limit)
    except MemorySystemError as e:
        print(f"Error: {e}")
        return

    if not memories:
        print(f"No recent memories for {user_id}")
    for memory in memories:
        print(describe_memory(memory))

async def _run_search(assistant: Assistant, text: str, user_id: str, limit: int) -> None:
    """Print a user's memories most similar to ``text``."""
    try:
        memories = await assistant.similar_memories(user_id, text, limit)
    except MemorySystemError as e:
        print(f"Error: {e}")
        return

    if not memories:
        print(f"No similar memories for {user_id}")
    for memory in memories:
        print(describe_memory(memory))

def _show_stats(assistant: Assistant, format: str = "text") -> None:
    """Show memory statistics."""
    stats = assistant.get_memory_stats()

    if format == "json":
        print(json.dumps(stats, indent=2))
        return

    print("\n=== Memory Statistics ===")
    print(f"Total memories: {stats.get('total_memories', 0)}")
    print(f"Embedding dimension: {stats.get('embedding_dim')}")
    print("\nBy user:")
    for user_id, count in stats.get('count_by_user', {}).items():
        print(f"  - {user_id}: {count}")

    if 'oldest_memory' in stats and 'newest_memory' in stats:
        print(f"\nOldest memory: {stats['oldest_memory']}")
        print(f"Newest memory: {stats['newest_memory']}")

if __name__ == "__main__":
    main()
