"""Amazon Bedrock runtime client for spend-consuming inference calls.

Responsibilities:
- Send one prompt through the Converse API, falling back to `invoke_model`
  with an Anthropic messages body for models that reject Converse.
- Normalize token usage, estimating it when the provider omits it.
- Classify boto3/botocore failures into transient and permanent errors.
"""

from __future__ import annotations

import json
import re
import threading
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ParamValidationError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from ..errors import InvocationError, PermanentCallError, TransientCallError
from ..models.datatypes import InvocationResult
from .usage import estimate_usage


_ANTHROPIC_BEDROCK_VERSION = "bedrock-2023-05-31"

_THROTTLE_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "ServiceQuotaExceededException",
    }
)
_TRANSIENT_CODES = {
    "ServiceUnavailableException": "unavailable",
    "InternalServerException": "server_error",
    "ModelTimeoutException": "timeout",
    "ModelNotReadyException": "unavailable",
    "ModelErrorException": "model_error",
    "RequestTimeout": "timeout",
    "RequestTimeoutException": "timeout",
}
_PERMANENT_CODES = {
    "AccessDeniedException": "access_denied",
    "UnrecognizedClientException": "invalid_credentials",
    "InvalidSignatureException": "invalid_credentials",
    "ExpiredTokenException": "invalid_credentials",
    "ExpiredToken": "invalid_credentials",
    "ResourceNotFoundException": "invalid_model",
    "ValidationException": "validation",
}


class BedrockInvocationClient:
    """Minimal boto3-based Bedrock runtime client returning token usage."""

    _MAX_PROVIDER_MESSAGE_CHARS = 180

    def __init__(self, *, model_id: str, runtime_client: Any) -> None:
        """Initialize with a model id and a `bedrock-runtime` boto3 client."""

        self.model_id = model_id
        self.runtime_client = runtime_client
        self._fallback_lock = threading.Lock()
        self._use_invoke_model = False

    @classmethod
    def create(
        cls,
        *,
        model_id: str,
        session: boto3.session.Session,
        region: str,
        read_timeout_seconds: float = 120.0,
    ) -> BedrockInvocationClient:
        """Build a client whose botocore retries are disabled.

        Retries are owned by the worker loop so every throttled attempt is
        visible in the ledger.
        """

        runtime_client = session.client(
            "bedrock-runtime",
            region_name=region,
            config=Config(
                retries={"max_attempts": 1, "mode": "standard"},
                read_timeout=read_timeout_seconds,
                connect_timeout=10,
            ),
        )
        return cls(model_id=model_id, runtime_client=runtime_client)

    @property
    def uses_invoke_model_fallback(self) -> bool:
        """Return whether Converse was rejected and `invoke_model` is in use."""

        with self._fallback_lock:
            return self._use_invoke_model

    def invoke(self, prompt: str, max_output_tokens: int, temperature: float) -> InvocationResult:
        """Send one prompt and return its token usage."""

        if not self.uses_invoke_model_fallback:
            try:
                return self._call(self._converse, prompt, max_output_tokens, temperature)
            except PermanentCallError as exc:
                if not self._is_converse_unsupported(exc):
                    raise
                with self._fallback_lock:
                    self._use_invoke_model = True
        return self._call(self._invoke_model, prompt, max_output_tokens, temperature)

    def _call(
        self,
        operation: Any,
        prompt: str,
        max_output_tokens: int,
        temperature: float,
    ) -> InvocationResult:
        """Run one provider operation and map transport failures consistently."""

        try:
            return operation(prompt, max_output_tokens, temperature)
        except InvocationError:
            raise
        except ClientError as exc:
            raise self._client_error_to_invocation_error(exc) from exc
        except (NoCredentialsError, PartialCredentialsError) as exc:
            raise PermanentCallError(
                "AWS credentials are missing or incomplete.",
                failure_kind="invalid_credentials",
            ) from exc
        except ParamValidationError as exc:
            raise PermanentCallError(
                f"Bedrock request rejected locally: {self._short_message(str(exc))}",
                failure_kind="validation",
            ) from exc
        except (ReadTimeoutError, ConnectTimeoutError) as exc:
            raise TransientCallError(
                "Bedrock request timed out.", failure_kind="timeout"
            ) from exc
        except (EndpointConnectionError, ConnectionClosedError) as exc:
            raise TransientCallError(
                f"Bedrock transport error: {self._short_message(str(exc))}",
                failure_kind="transport",
            ) from exc
        except BotoCoreError as exc:
            raise TransientCallError(
                f"Bedrock request failed: {self._short_message(str(exc))}",
                failure_kind="transport",
            ) from exc

    def _converse(self, prompt: str, max_output_tokens: int, temperature: float) -> InvocationResult:
        """Call the Converse API and extract text and usage."""

        response = self.runtime_client.converse(
            modelId=self.model_id,
            messages=[{"role": "user", "content": [{"text": prompt}]}],
            inferenceConfig={"maxTokens": max_output_tokens, "temperature": temperature},
        )
        text = self._converse_text(response)
        usage = response.get("usage") if isinstance(response, dict) else None
        usage = usage if isinstance(usage, dict) else {}
        return estimate_usage(
            prompt=prompt,
            text=text,
            max_output_tokens=max_output_tokens,
            reported_input_tokens=self._as_int(usage.get("inputTokens")),
            reported_output_tokens=self._as_int(usage.get("outputTokens")),
        )

    def _invoke_model(
        self, prompt: str, max_output_tokens: int, temperature: float
    ) -> InvocationResult:
        """Call `invoke_model` with an Anthropic messages body."""

        body = {
            "anthropic_version": _ANTHROPIC_BEDROCK_VERSION,
            "max_tokens": max_output_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": [{"type": "text", "text": prompt}]}],
        }
        response = self.runtime_client.invoke_model(
            modelId=self.model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(body).encode("utf-8"),
        )
        raw_body = response["body"].read()
        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise TransientCallError(
                "Bedrock returned an invalid JSON payload.", failure_kind="malformed_response"
            ) from exc
        if not isinstance(payload, dict):
            payload = {}

        usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
        input_tokens = self._as_int(usage.get("input_tokens")) or self._as_int(
            usage.get("prompt_tokens")
        )
        output_tokens = self._as_int(usage.get("output_tokens")) or self._as_int(
            usage.get("completion_tokens")
        )
        return estimate_usage(
            prompt=prompt,
            text=self._content_text(payload.get("content")),
            max_output_tokens=max_output_tokens,
            reported_input_tokens=input_tokens,
            reported_output_tokens=output_tokens,
        )

    @classmethod
    def _converse_text(cls, response: Any) -> str:
        """Extract concatenated text blocks from a Converse response."""

        if not isinstance(response, dict):
            return ""
        output = response.get("output")
        message = output.get("message") if isinstance(output, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        return cls._content_text(content)

    @staticmethod
    def _content_text(content: Any) -> str:
        """Join text blocks from either Converse or Anthropic content lists."""

        if not isinstance(content, list):
            return ""
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "".join(parts)

    @staticmethod
    def _as_int(value: Any) -> int | None:
        """Return a non-negative int usage value, or `None` when missing."""

        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        return max(0, int(value))

    @staticmethod
    def _is_converse_unsupported(exc: PermanentCallError) -> bool:
        """Return whether a validation failure means the model lacks Converse support."""

        if exc.failure_kind != "validation":
            return False
        message = str(exc).lower()
        return "converse" in message or "doesn't support" in message or "not support" in message

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact AWS access-key-like tokens from provider error content."""

        return re.sub(r"\b(AKIA|ASIA)[A-Z0-9]{12,}\b", "[redacted-key]", text)

    @classmethod
    def _short_message(cls, text: str) -> str:
        """Normalize and cap user-facing provider message length."""

        compact = " ".join(cls._redact_sensitive_tokens(text).split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _client_error_to_invocation_error(cls, exc: ClientError) -> InvocationError:
        """Convert a botocore `ClientError` into a classified invocation error."""

        error = exc.response.get("Error", {}) if isinstance(exc.response, dict) else {}
        code = str(error.get("Code", "") or "")
        provider_message = cls._short_message(str(error.get("Message", "") or ""))
        metadata = exc.response.get("ResponseMetadata", {}) if isinstance(exc.response, dict) else {}
        status_code = metadata.get("HTTPStatusCode") if isinstance(metadata, dict) else None
        status_code = status_code if isinstance(status_code, int) else None

        detail = f"Bedrock `{code or 'UnknownError'}`"
        if status_code is not None:
            detail += f" (HTTP {status_code})"
        if provider_message:
            detail += f": {provider_message}"

        if code in _THROTTLE_CODES or status_code == 429 or "Throttl" in code:
            return TransientCallError(
                detail,
                failure_kind="throttled",
                throttled=True,
                status_code=status_code,
                provider_code=code or None,
            )
        if code in _TRANSIENT_CODES:
            return TransientCallError(
                detail,
                failure_kind=_TRANSIENT_CODES[code],
                status_code=status_code,
                provider_code=code,
            )
        if code in _PERMANENT_CODES:
            return PermanentCallError(
                detail,
                failure_kind=_PERMANENT_CODES[code],
                status_code=status_code,
                provider_code=code,
            )
        if status_code is not None and status_code >= 500:
            return TransientCallError(
                detail,
                failure_kind="server_error",
                status_code=status_code,
                provider_code=code or None,
            )
        if status_code in {401, 403}:
            return PermanentCallError(
                detail,
                failure_kind="access_denied",
                status_code=status_code,
                provider_code=code or None,
            )
        return PermanentCallError(
            detail,
            failure_kind="http_error",
            status_code=status_code,
            provider_code=code or None,
        )
