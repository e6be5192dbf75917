import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from coach import (
    SYSTEM_PROMPT,
    AdviceError,
    HttpAdviceGenerator,
    PaymentRequiredError,
    RateLimitedError,
    UnauthorizedError,
    build_prompt,
)
from schemas import AdviceCategory, FinancialSummary

SUMMARY = FinancialSummary(
    total_monthly_income=Decimal("2000.00"),
    total_expenses=Decimal("650.50"),
    category_totals={"Flights": Decimal("600.00"), "Food": Decimal("50.50")},
    available_funds=Decimal("1349.50"),
)


def test_build_prompt_uses_question_verbatim():
    question = "  Is a rail pass cheaper than flying?  "
    assert build_prompt(question, SUMMARY, 2) == question


@pytest.mark.parametrize("question", [None, "", "   \n"])
def test_build_prompt_summarizes_without_question(question):
    prompt = build_prompt(question, SUMMARY, 2)
    assert "- Monthly Income: $2000.00" in prompt
    assert "- Total Expenses: $650.50" in prompt
    assert "- Available Funds: $1349.50" in prompt
    assert '"Flights": 600,' in prompt
    assert '"Food": 50.5' in prompt
    assert "- Savings Goals: 2 active goals" in prompt


def _generator(handler, api_key="test-key"):
    return HttpAdviceGenerator(api_key=api_key, url="https://gateway.test/v1/chat/completions",
                               transport=httpx.MockTransport(handler))


def test_generate_returns_content_unmodified():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Book trains early.\n"}}]})

    text = asyncio.run(_generator(handler).generate("help me"))

    assert text == "  Book trains early.\n"
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["messages"] == [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "help me"},
    ]
    assert seen["body"]["temperature"] == 0.7


@pytest.mark.parametrize("status,error_cls,category", [
    (429, RateLimitedError, AdviceCategory.RATE_LIMITED),
    (402, PaymentRequiredError, AdviceCategory.PAYMENT_REQUIRED),
    (401, UnauthorizedError, AdviceCategory.UNAUTHORIZED),
    (500, AdviceError, AdviceCategory.GENERIC),
])
def test_generate_categorizes_upstream_failures(status, error_cls, category):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(status, text="nope")

    with pytest.raises(error_cls) as excinfo:
        asyncio.run(_generator(handler).generate("hi"))

    assert excinfo.value.category == category
    # never retried
    assert len(calls) == 1


def test_generate_without_api_key_is_generic_error():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(AdviceError) as excinfo:
        asyncio.run(_generator(handler, api_key=None).generate("hi"))
    assert excinfo.value.category == AdviceCategory.GENERIC


def test_generate_transport_error_is_generic():
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(AdviceError) as excinfo:
        asyncio.run(_generator(handler).generate("hi"))
    assert type(excinfo.value) is AdviceError


def test_generate_malformed_payload_is_generic():
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(AdviceError):
        asyncio.run(_generator(handler).generate("hi"))
