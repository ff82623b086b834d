"""Prompt construction for spend-consuming inference calls.

Responsibilities:
- Build a filler prompt of an approximate token size.
- Optionally ask the model to use its whole output budget.
- Resolve an `auto` output-token budget from the model provider.
"""

from __future__ import annotations

from .usage import CHARS_PER_TOKEN_PROMPT


_FILLER_CHUNK = "lorem ipsum dolor sit amet, " * 400
_EXHAUST_SUFFIX = (
    "\n\nGenerate the most comprehensive answer possible and continue until the "
    "maximum output length is reached. Do not stop early."
)
_AUTO_MAX_TOKENS_BY_PROVIDER = (
    ("anthropic.", 8192),
    ("amazon.", 8192),
    ("meta.", 8192),
    ("mistral.", 4096),
    ("cohere.", 4096),
    ("ai21.", 2048),
)
_AUTO_MAX_TOKENS_DEFAULT = 2048


class PromptLibrary:
    """Build prompt strings for burn-loop invocations."""

    def __init__(self, *, exhaust_mode: bool = False) -> None:
        """Initialize prompt options."""

        self.exhaust_mode = exhaust_mode

    def filler_text(self, token_count: int) -> str:
        """Return filler text of roughly `token_count` tokens."""

        chars_needed = max(8, int(token_count * CHARS_PER_TOKEN_PROMPT))
        parts: list[str] = []
        remaining = chars_needed
        while remaining > 0:
            piece = _FILLER_CHUNK[:remaining]
            parts.append(piece)
            remaining -= len(piece)
        return "".join(parts)

    def burn_prompt(self, input_tokens: int) -> str:
        """Return the prompt sent on every call of the run."""

        prompt = self.filler_text(input_tokens)
        if self.exhaust_mode:
            prompt += _EXHAUST_SUFFIX
        return prompt


def resolve_max_output_tokens(model_id: str, requested: int | str) -> int:
    """Resolve an output-token budget, mapping `auto` to a provider default.

    Model ids may carry a cross-region prefix (`us.anthropic...`), which is
    skipped when matching the provider.
    """

    if isinstance(requested, int) and not isinstance(requested, bool):
        if requested <= 0:
            raise ValueError("`max_output_tokens` must be a positive integer or `auto`.")
        return requested

    token = str(requested).strip().lower()
    if token.isdigit() and int(token) > 0:
        return int(token)
    if token != "auto":
        raise ValueError("`max_output_tokens` must be a positive integer or `auto`.")

    normalized_model = model_id.strip().lower()
    for prefix, default_tokens in _AUTO_MAX_TOKENS_BY_PROVIDER:
        if normalized_model.startswith(prefix) or f".{prefix}" in normalized_model:
            return default_tokens
    return _AUTO_MAX_TOKENS_DEFAULT
