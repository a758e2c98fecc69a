"""OpenAI-compatible chat-completions endpoint over provider-agnostic language models."""

from compatgate.core.gateway import build_default_app, create_app
from compatgate.core.language_model import LanguageModel

__all__ = ["LanguageModel", "build_default_app", "create_app"]
