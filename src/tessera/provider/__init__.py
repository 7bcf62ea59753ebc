"""Model profiles and model client adapters."""

from .model_profile import ModelProfile, ResolvedModelProfile, build_chat_request, resolve_model_profile

__all__ = ["ModelProfile", "ResolvedModelProfile", "build_chat_request", "resolve_model_profile"]
