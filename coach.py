"""
AI travel finance coach.

Builds the prompt sent to an OpenAI-compatible chat-completions gateway and
relays the answer unmodified. Upstream failures are raised as AdviceError
subclasses so the API can report rate limits, billing problems and auth
problems separately from everything else. Nothing is retried.
"""
import json
import logging
import os
from decimal import Decimal
from typing import Optional

import httpx

from schemas import AdviceCategory, FinancialSummary

logger = logging.getLogger(__name__)

AI_GATEWAY_URL = os.getenv("AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
AI_MODEL = os.getenv("AI_MODEL", "google/gemini-2.5-flash")
AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.7"))
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "60"))

SYSTEM_PROMPT = """You are an AI Travel Finance Coach. Analyze the user's financial data and provide personalized recommendations to optimize their travel spending. Focus on:
1. Budget optimization strategies
2. Cheaper alternatives for travel expenses
3. Savings suggestions to reach travel goals faster
4. Spending pattern insights
5. Actionable advice to stay within budget

Be encouraging, specific, and practical in your recommendations."""


class AdviceError(Exception):
    category = AdviceCategory.GENERIC
    status_code = 502

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RateLimitedError(AdviceError):
    category = AdviceCategory.RATE_LIMITED
    status_code = 429


class PaymentRequiredError(AdviceError):
    category = AdviceCategory.PAYMENT_REQUIRED
    status_code = 402


class UnauthorizedError(AdviceError):
    category = AdviceCategory.UNAUTHORIZED
    status_code = 401


def _fmt(value: Decimal) -> str:
    return f"${value:.2f}"


def _json_number(value: Decimal):
    # whole amounts print as 600, not 600.0 or "600.00"
    return int(value) if value == value.to_integral_value() else float(value)


def build_prompt(question: Optional[str], summary: FinancialSummary, goal_count: int) -> str:
    if question and question.strip():
        return question

    categories = {name: _json_number(total) for name, total in summary.category_totals.items()}
    return (
        "Here's my current financial situation:\n"
        f"- Monthly Income: {_fmt(summary.total_monthly_income)}\n"
        f"- Total Expenses: {_fmt(summary.total_expenses)}\n"
        f"- Available Funds: {_fmt(summary.available_funds)}\n"
        f"- Expenses by Category: {json.dumps(categories, indent=2)}\n"
        f"- Savings Goals: {goal_count} active goals\n"
        "\n"
        "Please analyze my travel budget and provide personalized recommendations."
    )


class AdviceGenerator:
    """Anything that turns a prompt into advice text.

    Subclass and override generate(); raise AdviceError subclasses on failure.
    """

    async def generate(self, prompt: str) -> str:
        raise NotImplementedError


class HttpAdviceGenerator(AdviceGenerator):
    def __init__(
        self,
        api_key: Optional[str],
        url: str = AI_GATEWAY_URL,
        model: str = AI_MODEL,
        temperature: float = AI_TEMPERATURE,
        timeout: float = AI_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> "HttpAdviceGenerator":
        return cls(api_key=os.getenv("AI_GATEWAY_API_KEY"))

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise AdviceError("AI_GATEWAY_API_KEY is not configured")

        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("AI gateway request failed: %s", exc)
            raise AdviceError("AI gateway error") from exc

        if response.status_code == 429:
            logger.warning("AI gateway rate limit hit")
            raise RateLimitedError("Rate limit exceeded. Please try again later.")
        if response.status_code == 402:
            logger.warning("AI gateway requires payment")
            raise PaymentRequiredError("Payment required. Please add credits to your AI workspace.")
        if response.status_code in (401, 403):
            logger.error("AI gateway rejected credentials: %s", response.status_code)
            raise UnauthorizedError("The AI service rejected the configured credentials.")
        if response.is_error:
            logger.error("AI gateway error: %s %s", response.status_code, response.text[:500])
            raise AdviceError("AI gateway error")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error("Unexpected AI gateway payload: %s", response.text[:500])
            raise AdviceError("AI gateway returned an unexpected response") from exc
        if content is None:
            raise AdviceError("AI gateway returned an empty recommendation")
        return content
