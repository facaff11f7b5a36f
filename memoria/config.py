"""Configuration settings for the memory assistant."""
from pathlib import Path
from typing import Dict, Any, Optional
import os
import json

DEFAULT_PERSONA = [
    "You are N, an autonomous digital entity with a witty personality.",
    "You think and act on behalf of your owner, making decisions and handling tasks.",
    "You maintain a professional yet friendly demeanor.",
]

class Config:
    """Configuration manager for the memory assistant."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration.

        Args:
            config_path: Path to the configuration file
        """
        # Default configuration
        self._config = {
            "app": {
                "name": "memoria",
                "version": "0.1.0",
                "environment": os.getenv("APP_ENV", "development"),
                "debug": os.getenv("DEBUG", "false").lower() == "true",
            },
            "memory": {
                "db_url": os.getenv("MEMORY_DB_URL", "sqlite:///memories.db"),
                "max_memory_age_days": float(os.getenv("MAX_MEMORY_AGE_DAYS", "30")),
                "max_results": int(os.getenv("MAX_MEMORY_RESULTS", "100")),
                "retrieve_limit": int(os.getenv("MEMORY_RETRIEVE_LIMIT", "10")),
            },
            "embedding": {
                "dimension": int(os.getenv("EMBEDDING_DIM", "512")),
                "model": os.getenv("EMBEDDING_MODEL", "text-embedding-004"),
                "api_key": os.getenv("GOOGLE_API_KEY", ""),
                "endpoint": os.getenv(
                    "EMBEDDING_ENDPOINT",
                    "https://generativelanguage.googleapis.com/v1beta",
                ),
                "timeout": float(os.getenv("EMBEDDING_TIMEOUT", "10")),
            },
            "context": {
                "persona": list(DEFAULT_PERSONA),
                # Each rule: {"name": ..., "triggers": [...], "directives": [...]}
                "directive_rules": [],
                "max_entries": int(os.getenv("CONTEXT_MAX_ENTRIES", "10")),
                "prefix_entries": int(os.getenv("CONTEXT_PREFIX_ENTRIES", "3")),
                "retained_entries": int(os.getenv("CONTEXT_RETAINED_ENTRIES", "8")),
                "apology": (
                    "I apologize, but I encountered an error. "
                    "As N, I'll ensure this gets resolved quickly."
                ),
            },
            "llm": {
                "model_path": os.getenv("LLM_MODEL_PATH", ""),
                "persona_name": os.getenv("PERSONA_NAME", "N"),
                "context_window": int(os.getenv("LLM_CONTEXT_WINDOW", "2048")),
                "max_tokens": int(os.getenv("MAX_TOKENS", "256")),
                "temperature": float(os.getenv("LLM_TEMPERATURE", "0.7")),
                "top_p": float(os.getenv("LLM_TOP_P", "0.9")),
                "top_k": int(os.getenv("LLM_TOP_K", "40")),
                "repeat_penalty": float(os.getenv("LLM_REPEAT_PENALTY", "1.1")),
                "timeout": float(os.getenv("LLM_TIMEOUT", "120")),
            },
            "logging": {
                "level": os.getenv("LOG_LEVEL", "INFO"),
                "file": os.getenv("LOG_FILE", "logs/memoria.log"),
                "rotation": os.getenv("LOG_ROTATION", "10 MB"),
                "retention": os.getenv("LOG_RETENTION", "30 days"),
            },
        }

        # Load from config file if provided
        if config_path and Path(config_path).exists():
            self.load(config_path)

    def load(self, config_path: str) -> None:
        """Load configuration from a JSON file.

        Args:
            config_path: Path to the configuration file
        """
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
            self._deep_update(self._config, config_data)

    def _deep_update(self, original: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively update a dictionary."""
        for key, value in update.items():
            if isinstance(value, dict) and key in original and isinstance(original[key], dict):
                original[key] = self._deep_update(original[key], value)
            else:
                original[key] = value
        return original

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., 'memory.db_url')
            default: Default value if key is not found

        Returns:
            The configuration value or default
        """
        keys = key.split('.')
        value = self._config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def __getitem__(self, key: str) -> Any:
        """Get a configuration value using bracket notation."""
        return self.get(key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary."""
        return json.loads(json.dumps(self._config))

# Global configuration instance
config = Config(os.getenv("MEMORIA_CONFIG"))
