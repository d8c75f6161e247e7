"""
AI-assisted extraction of transactions and amounts from free text or receipt images.
"""
from __future__ import annotations

import base64
import json
import logging  # tenacity's before_sleep_log wants stdlib level constants
import datetime as dt
from decimal import Decimal
from typing import Literal, Optional

from loguru import logger
from openai import AsyncOpenAI, APIConnectionError, APIError, RateLimitError
from pydantic import BaseModel, Field, ValidationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from moneykaki.core.settings import settings

CATEGORIES = [
    "Food & Drinks",
    "Car",
    "Shopping",
    "Transport",
    "Travel",
    "Entertainment",
    "Health",
    "Grocery",
    "Pet",
    "Education",
    "Electronics",
    "Beauty",
    "Sports",
]

AMOUNT_KINDS = {
    "monthly_income": "the monthly income amount",
    "monthly_expense": "the monthly expense amount",
    "amount_to_save": "the amount the user wants to save",
    "today_spend": "the amount spent today",
}

TRANSACTIONS_PROMPT = (
    "You are a financial data extractor. Read the user's text or receipt and return JSON "
    '{"transactions": [{"type": "income"|"expense", "amount": number, "category": string, '
    '"description": string, "date": "YYYY-MM-DD" or null}]}. '
    f"Pick category from: {', '.join(CATEGORIES)}. Return an empty list if nothing is found."
)

_stdlib_logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    pass


class ExtractedTransaction(BaseModel):
    type: Literal["income", "expense"]
    amount: Decimal = Field(gt=0)
    category: Optional[str] = None
    description: Optional[str] = None
    date: Optional[dt.date] = None


class TransactionExtractor:
    def __init__(self, client: AsyncOpenAI | None = None, model: str | None = None):
        self._client = client
        self.model = model or settings.OPENAI_MODEL

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise ExtractionError("openai_not_configured")
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((RateLimitError, APIConnectionError)),
        before_sleep=before_sleep_log(_stdlib_logger, logging.WARNING),
        reraise=True,
    )
    async def _complete(self, messages: list, max_tokens: int, json_mode: bool = False) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=0.1,
            **kwargs,
        )
        return (response.choices[0].message.content or "").strip()

    async def extract_amount(self, text: str, kind: str) -> Decimal:
        """Pull a single number (income, expense, savings target, today's spend) out of text.

        Returns 0 when nothing usable comes back.
        """
        if kind not in AMOUNT_KINDS:
            raise ValueError(f"unknown amount kind: {kind}")
        what = AMOUNT_KINDS[kind]
        try:
            content = await self._complete(
                [
                    {
                        "role": "system",
                        "content": f"You are a financial data extractor. Extract {what} from the user's text. "
                                   "Return only a number. If it is not mentioned, return 0.",
                    },
                    {"role": "user", "content": text},
                ],
                max_tokens=10,
            )
        except APIError as e:
            logger.error(f"Amount extraction failed ({kind}): {e}")
            raise ExtractionError("ai_request_failed") from e

        try:
            amount = Decimal(content.replace(",", "").strip() or "0")
        except ArithmeticError:
            logger.warning(f"Non-numeric amount from model for {kind}: {content!r}")
            return Decimal("0")
        return amount if amount > 0 else Decimal("0")

    async def extract_transactions(
        self,
        text: str | None = None,
        image_bytes: bytes | None = None,
        image_url: str | None = None,
    ) -> list[ExtractedTransaction]:
        if not (text or image_bytes or image_url):
            raise ValueError("text or image required")

        content: list[dict] = []
        if text:
            content.append({"type": "text", "text": text})
        if image_bytes:
            encoded = base64.b64encode(image_bytes).decode("utf-8")
            content.append({"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{encoded}"}})
        elif image_url:
            content.append({"type": "image_url", "image_url": {"url": image_url}})

        try:
            raw = await self._complete(
                [
                    {"role": "system", "content": TRANSACTIONS_PROMPT},
                    {"role": "user", "content": content},
                ],
                max_tokens=800,
                json_mode=True,
            )
        except APIError as e:
            logger.error(f"Transaction extraction failed: {e}")
            raise ExtractionError("ai_request_failed") from e

        return parse_transactions(raw)


def parse_transactions(raw: str) -> list[ExtractedTransaction]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Model returned non-JSON transactions payload: {raw[:200]!r}")
        return []

    items = data.get("transactions") if isinstance(data, dict) else data
    if not isinstance(items, list):
        return []

    out: list[ExtractedTransaction] = []
    for item in items:
        try:
            out.append(ExtractedTransaction.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Skipping malformed extracted transaction {item!r}: {e.errors()[:1]}")
    return out


extractor = TransactionExtractor()
