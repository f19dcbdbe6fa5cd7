"""Configuration settings for the application."""

import json
from pathlib import Path
from typing import List

from pydantic import TypeAdapter
from pydantic_settings import BaseSettings

from craig.core.schema import Skill

DEFAULT_PERSONALITY = "Your name is CRAIG, a helpful assistant."


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = True
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    PLANNER: str = "openai"  # Options: tgi, openai, anthropic
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"
    SKILL_MODEL: str | None = None  # Cheaper model for skill relevance; falls back to the main one

    # Agent Configuration
    PERSONALITY: str = DEFAULT_PERSONALITY
    SKILLS_FILE: str | None = None  # JSON list of skills
    SKILL_DONT_REPEAT_N: int = 10  # 0 disables the anti-repeat filter
    MAX_REACT_ITERATIONS: int | None = None  # None keeps the ReAct loop unbounded

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()


def load_skills(path: str | Path | None = None) -> List[Skill]:
    """
    Load the skill catalog from a JSON file.

    Falls back to ``settings.SKILLS_FILE``; returns an empty list when neither is set.
    """
    target = path or settings.SKILLS_FILE
    if not target:
        return []
    raw = json.loads(Path(target).read_text(encoding="utf-8"))
    return TypeAdapter(List[Skill]).validate_python(raw)
