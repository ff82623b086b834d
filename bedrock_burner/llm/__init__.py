"""Bedrock-facing abstractions: invocation client, pacing, and prompts."""

from .bedrock_client import BedrockInvocationClient
from .prompts import PromptLibrary, resolve_max_output_tokens
from .rate_limiter import RateLimiter

__all__ = [
    "BedrockInvocationClient",
    "PromptLibrary",
    "RateLimiter",
    "resolve_max_output_tokens",
]
