"""Chat-completions client with function calling.

Talks to an OpenAI-compatible chat completions API. Message contents
may carry client data: they are NEVER logged, only lengths, model name
and the chosen function.
"""

from __future__ import annotations

import json
from typing import Any

import openai
from openai import OpenAI

from fiscalia.domain.errors import LanguageModelError
from fiscalia.domain.ports import Completion, FunctionCall
from fiscalia.infra.settings import LanguageModelConfig
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import safe_log_context, shorten_technical

logger = get_logger(__name__)

TEMPERATURE = 0.1
MAX_TOKENS = 500


def parse_completion(body: dict[str, Any]) -> Completion:
    """Read the first choice of a chat-completions response.

    Raises:
        LanguageModelError: Missing choices or undecodable function arguments.
    """
    try:
        message = body["choices"][0]["message"]
    except (KeyError, IndexError, TypeError):
        raise LanguageModelError("Resposta do modelo sem conteúdo.")

    content = message.get("content") or None
    call: dict[str, Any] | None = None
    tool_calls = message.get("tool_calls") or []
    if tool_calls:
        call = tool_calls[0].get("function")
    elif message.get("function_call"):
        call = message["function_call"]

    if call is None:
        return Completion(content=content)

    raw_arguments = call.get("arguments") or "{}"
    try:
        arguments = json.loads(raw_arguments) if isinstance(raw_arguments, str) else dict(raw_arguments)
    except (ValueError, TypeError):
        raise LanguageModelError(
            "Argumentos de função inválidos.",
            data={"function": call.get("name")},
        )
    if not isinstance(arguments, dict):
        raise LanguageModelError("Argumentos de função inválidos.", data={"function": call.get("name")})
    return Completion(content=content, function_call=FunctionCall(name=call.get("name", ""), arguments=arguments))


class ChatCompletionsClient:
    """GenerativeLanguageService over the OpenAI SDK.

    Single call, no retries: a failure sends the dispatcher to its
    deterministic fallback.

    Args:
        config: Endpoint, key, model and timeout.
        client: Optional SDK client (tests inject one).
    """

    def __init__(self, config: LanguageModelConfig, client: OpenAI | None = None) -> None:
        self._config = config
        self._client = client or OpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    def complete(
        self,
        messages: list[dict[str, str]],
        function_schema: list[dict[str, Any]],
    ) -> Completion:
        params: dict[str, Any] = {
            "model": self._config.model,
            "messages": messages,
            "temperature": TEMPERATURE,
            "max_tokens": MAX_TOKENS,
        }
        if function_schema:
            params["tools"] = [{"type": "function", "function": f} for f in function_schema]
            params["tool_choice"] = "auto"

        log_ctx = safe_log_context(
            model=self._config.model,
            message_count=len(messages),
            prompt_len=sum(len(m.get("content") or "") for m in messages),
        )

        try:
            response = self._client.chat.completions.create(**params)
        except openai.APITimeoutError:
            logger.warning("language model timeout", extra={"extra_fields": log_ctx})
            raise LanguageModelError("Tempo esgotado ao consultar o modelo.", data={"retryable": True})
        except openai.APIConnectionError as exc:
            logger.warning(
                "language model unreachable",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(exc).__name__)},
            )
            raise LanguageModelError("Modelo indisponível.", data={"retryable": True})
        except openai.APIStatusError as exc:
            logger.warning(
                "language model error response",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        status=exc.status_code,
                        body=shorten_technical(exc.message),
                    )
                },
            )
            raise LanguageModelError(
                "Erro ao consultar o modelo.",
                data={"status": exc.status_code, "retryable": exc.status_code >= 500},
            )

        completion = parse_completion(response.model_dump())
        logger.info(
            "language model answered",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    function=completion.function_call.name if completion.function_call else None,
                    content_len=len(completion.content or ""),
                )
            },
        )
        return completion
