"""
Tests for AI-assisted transaction extraction (OpenAI client faked)
"""
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from moneykaki.core.settings import settings
from moneykaki.services.extraction import (
    ExtractionError,
    TransactionExtractor,
    parse_transactions,
)


class FakeCompletions:
    def __init__(self, content: str):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _extractor(content: str) -> tuple[TransactionExtractor, FakeCompletions]:
    completions = FakeCompletions(content)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return TransactionExtractor(client=client, model="test-model"), completions


def test_parse_transactions_skips_bad_items():
    raw = (
        '{"transactions": ['
        '{"type": "expense", "amount": 12.5, "category": "Grocery", "date": "2024-05-10"},'
        '{"type": "refund", "amount": 3},'
        '{"type": "income", "amount": -1},'
        '{"type": "income", "amount": "3000", "description": "salary"}'
        ']}'
    )
    items = parse_transactions(raw)

    assert [(i.type, i.amount) for i in items] == [("expense", Decimal("12.5")), ("income", Decimal("3000"))]
    assert items[0].date == date(2024, 5, 10)
    assert items[1].date is None


def test_parse_transactions_non_json():
    assert parse_transactions("sorry, I can't help with that") == []
    assert parse_transactions('{"transactions": "none"}') == []


@pytest.mark.asyncio
async def test_extract_transactions_from_text():
    extractor, completions = _extractor('{"transactions": [{"type": "expense", "amount": 8, "category": "Transport"}]}')

    items = await extractor.extract_transactions(text="grab ride 8 dollars")

    assert len(items) == 1
    assert items[0].category == "Transport"
    call = completions.calls[0]
    assert call["model"] == "test-model"
    assert call["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_extract_transactions_from_image_bytes():
    extractor, completions = _extractor('{"transactions": []}')

    assert await extractor.extract_transactions(image_bytes=b"\x89PNG") == []
    user_content = completions.calls[0]["messages"][1]["content"]
    assert user_content[0]["image_url"]["url"].startswith("data:image/jpeg;base64,")


@pytest.mark.asyncio
async def test_extract_transactions_requires_input():
    extractor, _ = _extractor("{}")
    with pytest.raises(ValueError):
        await extractor.extract_transactions()


@pytest.mark.asyncio
@pytest.mark.parametrize("content,expected", [
    ("3,500", Decimal("3500")),
    ("0", Decimal("0")),
    ("-20", Decimal("0")),
    ("not sure", Decimal("0")),
])
async def test_extract_amount(content, expected):
    extractor, _ = _extractor(content)
    assert await extractor.extract_amount("I earn about 3.5k a month", "monthly_income") == expected


@pytest.mark.asyncio
async def test_extract_amount_unknown_kind():
    extractor, _ = _extractor("1")
    with pytest.raises(ValueError):
        await extractor.extract_amount("text", "yearly_bonus")


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    with pytest.raises(ExtractionError):
        TransactionExtractor().client
