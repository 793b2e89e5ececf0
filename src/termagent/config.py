"""Configuration settings for the terminal agent."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the terminal agent.

    A single snapshot is created at startup and handed explicitly to the agent, the connector and
    the tools.  Nothing in the package reads a global settings object.
    """

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    LOG_LEVEL: str = "warning"  # Options: debug, info, warning, error, critical
    DATA_DIR: str = str(Path.home() / ".local" / "share" / "terminal-agent")
    MEMORY: bool = False  # Prepend stored memory entries to the system prompts

    # LLM Configuration
    PROVIDER: str = "anthropic"  # Options: anthropic, openai, google, bedrock, perplexity, ollama
    MODEL: str | None = None  # Falls back to the provider's default model
    MAX_TOKENS: int = 600
    SYSTEM_PROMPT_ASK: str | None = None
    SYSTEM_PROMPT_TASK: str | None = None

    # Task loop
    MAX_ITERATIONS: int = 10
    TASK_TIMEOUT: float = 900.0  # seconds, covers the whole task
    RESULT_TRUNCATE_LENGTH: int = 2000

    # Tools
    MCP_FILE_PATH: str | None = None
    CONFIRM_COMMANDS: bool = True
    COMMAND_TIMEOUT: float = 60.0

    # Provider credentials and endpoints
    ANTHROPIC_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    GEMINI_API_KEY: str | None = None
    PERPLEXITY_KEY: str | None = None
    OLLAMA_HOST: str = "http://localhost:11434"
    AWS_REGION: str = "us-east-1"
    GOOGLE_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
