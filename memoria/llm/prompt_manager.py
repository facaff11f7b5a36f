"""
Prompt Manager

Handles prompt templates for response generation.
"""
import json
from pathlib import Path
from typing import Dict, Any, Optional, Sequence, Union

from loguru import logger

CHAT_TEMPLATE = """You are {persona_name}, an autonomous digital assistant with its own memory of past conversations.

- You keep a witty, friendly, yet professional communication style
- You use what you remember about the user when it is relevant
- You keep responses concise and engaging

Context: {context}
User Message: {message}

Respond as {persona_name}, keeping your characteristic style."""


class PromptManager:
    """Manages prompt templates and their rendering."""

    def __init__(
        self,
        templates: Optional[Dict[str, str]] = None,
        **variables: Any,
    ):
        """Initialize the prompt manager.

        Args:
            templates: Templates to add to the built-in 'chat' template
            **variables: Default template variables
        """
        self.templates: Dict[str, str] = {"chat": CHAT_TEMPLATE}
        self.templates.update(templates or {})
        self.variables: Dict[str, Any] = {"persona_name": "N"}
        self.variables.update(variables)

    def render_template(
        self,
        template_name: str,
        **kwargs
    ) -> str:
        """Render a template with the given variables.

        Args:
            template_name: Name of the template to render
            **kwargs: Variables to use in the template

        Returns:
            Rendered template string
        """
        if template_name not in self.templates:
            raise ValueError(f"Template not found: {template_name}")

        template = self.templates[template_name]

        # Merge instance variables with provided kwargs
        variables = {**self.variables, **kwargs}

        try:
            return template.format(**variables)
        except KeyError as e:
            logger.error(f"Missing variable in template {template_name}: {e}")
            raise

    def render_chat(self, context: Sequence[str], message: str) -> str:
        """Render the chat template for a context window and a message."""
        return self.render_template(
            "chat",
            context="\n".join(context),
            message=message,
        )

    def load_templates_from_file(self, file_path: Union[str, Path]) -> 'PromptManager':
        """Load templates from a JSON file.

        Args:
            file_path: Path to JSON file containing templates

        Returns:
            self for method chaining
        """
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                templates = json.load(f)
            self.templates.update(templates)
            logger.info(f"Loaded {len(templates)} templates from {file_path}")
        except Exception as e:
            logger.error(f"Failed to load templates from {file_path}: {e}")
            raise

        return self
