"""
Chat-model collaborator for the paid pipeline stages.

Tiered model routing:
  - Flash (analyst) for signal analysis: cheap, runs on every pending signal
  - Pro (writer) for article drafting: runs only on approved signals

Both go through `ContentModel.complete_json()`, which returns the parsed JSON
plus the token usage the governor needs for the spend ledger.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, replace
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel, Field, field_validator

from newsdesk.core.config import Settings
from newsdesk.core.logging import get_logger
from newsdesk.core.security import sanitize_untrusted
from newsdesk.models.models import SignalType

logger = get_logger(__name__)


@dataclass(frozen=True)
class LLMResult:
    data: dict[str, Any]
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMResponseError(ValueError):
    """The model answered, but not with the JSON object we asked for.

    The provider still billed the reply, so `usage` carries its token counts
    (with empty `data`) for the spend ledger.
    """

    def __init__(self, message: str, usage: LLMResult | None = None) -> None:
        super().__init__(message)
        self.usage = usage


def _strip_fences(text: str) -> str:
    # Strip markdown fences if the model wraps in ```json ... ```
    text = re.sub(r"^```(?:json)?\s*", "", text.strip())
    return re.sub(r"\s*```$", "", text).strip()


def _text_of(content: str | list) -> str:
    if isinstance(content, str):
        return content
    # multi-part replies: keep the text parts only
    return "".join(
        part if isinstance(part, str) else part.get("text", "")
        for part in content
    )


class ContentModel:
    def __init__(self, llm: BaseChatModel, model_name: str) -> None:
        self.llm = llm
        self.model_name = model_name

    async def complete_json(self, system_prompt: str, user_prompt: str) -> LLMResult:
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        response = await self.llm.ainvoke(messages)

        usage = getattr(response, "usage_metadata", None) or {}
        billed = LLMResult(
            data={},
            model=self.model_name,
            input_tokens=int(usage.get("input_tokens", 0)),
            output_tokens=int(usage.get("output_tokens", 0)),
        )

        raw_text = _strip_fences(_text_of(response.content))
        try:
            data = json.loads(raw_text)
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"Model returned invalid JSON: {e}", usage=billed) from e
        if not isinstance(data, dict):
            raise LLMResponseError(f"Expected a JSON object, got {type(data).__name__}", usage=billed)

        return replace(billed, data=data)


def build_chat_model(settings: Settings, model: str, *, temperature: float = 0) -> ContentModel:
    llm = ChatGoogleGenerativeAI(
        model=model,
        temperature=temperature,
        google_api_key=settings.google_api_key,
    )
    return ContentModel(llm, model)


# ═══════════════════════════════════════════════════════════════
# Signal analysis (analyst tier)
# ═══════════════════════════════════════════════════════════════
ANALYST_SYSTEM_PROMPT = """You are a news signal analyst. Assess the item below.

Return a JSON object with:
- signal_type: one of "breaking", "shift", "contradiction", "repetition"
- confidence_score: integer 0-100, how confident you are the item is accurate and newsworthy
- significance_score: integer 0-100, how much this matters to readers
- notes: one or two sentences explaining the scores

Output ONLY valid JSON, no markdown fences."""


class SignalAnalysis(BaseModel):
    signal_type: SignalType = SignalType.SHIFT
    confidence_score: int = Field(default=0)
    significance_score: int = Field(default=0)
    notes: str = ""

    @field_validator("signal_type", mode="before")
    @classmethod
    def _known_type(cls, v: Any) -> Any:
        valid = {t.value for t in SignalType}
        return v.lower() if isinstance(v, str) and v.lower() in valid else SignalType.SHIFT.value

    @field_validator("confidence_score", "significance_score", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> int:
        try:
            return max(0, min(100, round(float(v))))
        except (TypeError, ValueError):
            return 0


def analysis_prompt(title: str, body: str, source_name: str) -> str:
    return (
        f"Source: {source_name}\n"
        f"Headline: {sanitize_untrusted(title)}\n"
        f"Content: {sanitize_untrusted(body)[:2000]}"
    )


# ═══════════════════════════════════════════════════════════════
# Article drafting (writer tier)
# ═══════════════════════════════════════════════════════════════
WRITER_SYSTEM_PROMPT = """You are a senior news editor writing for a general audience.
From the signal below, write a short article consisting of:
1. headline: a compelling headline (max 100 chars)
2. summary: a one-sentence bottom line up front
3. content: 3-5 short paragraphs in markdown, sticking to facts present in the source

Output a JSON object with keys headline, summary, content. Output ONLY valid JSON."""


class ArticleDraft(BaseModel):
    headline: str = Field(min_length=1)
    summary: str = ""
    content: str = Field(min_length=1)

    @field_validator("headline", mode="after")
    @classmethod
    def _trim_headline(cls, v: str) -> str:
        return v.strip()[:300]


def draft_prompt(title: str, body: str, source_name: str, notes: str | None) -> str:
    prompt = (
        f"Source: {source_name}\n"
        f"Original headline: {sanitize_untrusted(title)}\n"
        f"Original content: {sanitize_untrusted(body)[:4000]}"
    )
    if notes:
        prompt += f"\nAnalyst notes: {notes}"
    return prompt
