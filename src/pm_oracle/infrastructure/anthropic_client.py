"""AnthropicDecisionService — one Messages API call per decision.

Single request, bounded by `timeout`, never retried here: a failed call
abandons the decision for this tick and the market stays closed.
"""

import logging

import httpx

from src.pm_common.errors import DecisionUnavailableError, MalformedDecisionError
from src.pm_oracle.domain.decision import (
    DecisionContext,
    ResolutionDecision,
    build_prompt,
    parse_decision,
)

logger = logging.getLogger(__name__)

_API_VERSION = "2023-06-01"


class AnthropicDecisionService:
    def __init__(
        self,
        api_key: str | None,
        *,
        model: str,
        base_url: str = "https://api.anthropic.com",
        max_tokens: int = 2000,
        temperature: float = 0.3,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def decide(self, context: DecisionContext) -> ResolutionDecision:
        if not self._api_key:
            raise DecisionUnavailableError("ANTHROPIC_API_KEY is not set")

        body = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": build_prompt(context)}],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }
        try:
            resp = await self._client.post("/v1/messages", json=body, headers=headers)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as e:
            raise DecisionUnavailableError("request timed out") from e
        except httpx.HTTPStatusError as e:
            raise DecisionUnavailableError(f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise DecisionUnavailableError(str(e) or type(e).__name__) from e

        text = _first_text_block(payload)
        try:
            return parse_decision(text)
        except MalformedDecisionError:
            logger.warning("Unparseable decision reply: %.500s", text)
            raise


def _first_text_block(payload: object) -> str:
    content = payload.get("content") if isinstance(payload, dict) else None
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                return str(block.get("text", ""))
    raise MalformedDecisionError("reply has no text content block")
