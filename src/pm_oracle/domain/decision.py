"""Resolution decisions — prompt construction and strict reply parsing.

The decision service is an untrusted black box. Its reply is free text that
should contain exactly one JSON object; we locate that object (inside a
code fence or amid prose), validate it against a fixed schema and reject
anything that does not conform. There is no lenient recovery: a reply we
cannot read leaves the market closed, which is always safe.
"""

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.pm_common.enums import DecisionOutcome
from src.pm_common.errors import MalformedDecisionError
from src.pm_market.domain.models import Market

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class DecisionContext:
    question: str
    description: str | None
    category: str
    closing_time: datetime
    current_date: date

    @classmethod
    def for_market(cls, market: Market, today: date) -> "DecisionContext":
        return cls(
            question=market.question,
            description=market.description,
            category=market.category,
            closing_time=market.closing_time,
            current_date=today,
        )


class ResolutionDecision(BaseModel):
    """Validated verdict. Ephemeral: only its effect on the market is stored.

    Strict: no type coercion ("92" is not a confidence) and no unknown keys.
    `outcome` must be exactly "yes", "no" or "invalid"; lax enum matching
    only lets the plain string reach the enum, it does not fold case.
    """

    model_config = ConfigDict(frozen=True, strict=True, extra="forbid")

    outcome: DecisionOutcome = Field(strict=False)
    confidence: float = Field(ge=0, le=100)
    reasoning: str = ""
    sources: list[str] = Field(default_factory=list)


class DecisionServiceProtocol(Protocol):
    @property
    def configured(self) -> bool: ...

    async def decide(self, context: DecisionContext) -> ResolutionDecision:
        """Return a validated decision or raise DecisionError."""
        ...


def build_prompt(context: DecisionContext) -> str:
    """Deterministic prompt: same context in, same text out."""
    today = context.current_date.isoformat()
    description = context.description or "No additional description provided"
    return f"""You are an oracle responsible for determining the outcome of prediction markets with maximum accuracy and objectivity.

MARKET INFORMATION:
- Question: "{context.question}"
- Description: {description}
- Category: {context.category}
- Closing Time: {context.closing_time.isoformat()}
- Current Date: {today}

YOUR TASK:
Determine whether this market should resolve to YES, NO, or INVALID based on:
1. Whether the event described in the question has occurred
2. Publicly verifiable information available as of {today}
3. The exact wording of the question

RESOLUTION GUIDELINES:
- YES: The event described has definitively occurred
- NO: The event described has definitively NOT occurred OR the deadline has passed without the event occurring
- INVALID: The question is ambiguous, impossible to verify, or contains errors that make resolution impossible

RESPONSE FORMAT (a single JSON object, nothing else):
{{
  "outcome": "yes" | "no" | "invalid",
  "confidence": <number 0-100>,
  "reasoning": "<detailed explanation of your decision>",
  "sources": ["<source1>", "<source2>"]
}}

IMPORTANT:
- Be extremely careful with the exact wording of the question
- Consider the timeframe specified in the question
- If information cannot be verified, answer INVALID
- List any sources or facts you used to make the decision

Now, determine the outcome of this market:"""


def extract_json_object(text: str) -> dict[str, object]:
    """Find the single JSON object in `text` (fenced or embedded in prose)."""
    candidates = [m.group(1) for m in _FENCE_RE.finditer(text)] + [text]
    decoder = json.JSONDecoder()
    for candidate in candidates:
        start = candidate.find("{")
        while start != -1:
            try:
                obj, _ = decoder.raw_decode(candidate, start)
            except json.JSONDecodeError:
                start = candidate.find("{", start + 1)
                continue
            if isinstance(obj, dict):
                return obj
            start = candidate.find("{", start + 1)
    raise MalformedDecisionError("no JSON object found in reply")


def parse_decision(text: str) -> ResolutionDecision:
    payload = extract_json_object(text)
    try:
        return ResolutionDecision.model_validate(payload)
    except ValidationError as e:
        raise MalformedDecisionError(f"reply does not match schema: {e.errors()[0]['msg']}") from e
