"""Tests for the OpenAI ticket classifier."""

import json
import random

import pytest

from helpdesk.config import TicketCategory
from helpdesk.core import LLMException
from helpdesk.tickets.application import ClassificationMode, ClassifierConfig, TicketClassifier
from helpdesk.tickets.application.services import FALLBACK_EXPLANATION

from tests.conftest import FakeLLMClient


def answer(**overrides) -> str:
    data = {
        "category": "billing",
        "explanation": "Customer was charged twice for one invoice",
        "confidence": 0.87,
    }
    data.update(overrides)
    return json.dumps(data)


def assert_fallback(result):
    assert result.explanation == FALLBACK_EXPLANATION
    assert 0.6 <= result.confidence <= 0.95
    assert result.category in list(TicketCategory)
    assert result.is_fallback


# ── Disabled mode ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_disabled_mode_never_calls_the_llm(rng):
    llm = FakeLLMClient(answer())
    classifier = TicketClassifier(llm, ClassifierConfig(mode=ClassificationMode.DISABLED), rng)

    result = await classifier.classify("Refund", "Please refund my last payment")

    assert_fallback(result)
    assert llm.calls == []


@pytest.mark.asyncio
async def test_missing_client_falls_back_to_disabled(rng):
    classifier = TicketClassifier(None, ClassifierConfig(), rng)

    assert classifier.mode is ClassificationMode.DISABLED
    assert_fallback(await classifier.classify("Hello", "World"))


def test_fallback_is_reproducible_with_seeded_rng():
    first = TicketClassifier(None, rng=random.Random(7)).fallback()
    second = TicketClassifier(None, rng=random.Random(7)).fallback()

    assert first == second


# ── Live mode ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_live_classification(rng):
    llm = FakeLLMClient(answer())
    classifier = TicketClassifier(llm, ClassifierConfig(), rng)

    result = await classifier.classify("Double charge", "I was billed twice this month", ticket_id="t-1")

    assert result.category is TicketCategory.BILLING
    assert result.explanation == "Customer was charged twice for one invoice"
    assert result.confidence == 0.87
    assert result.model_used == "gpt-test"
    assert not result.is_fallback


@pytest.mark.asyncio
async def test_prompt_and_sampling_parameters(rng):
    llm = FakeLLMClient(answer())
    classifier = TicketClassifier(llm, ClassifierConfig(), rng)

    await classifier.classify("Double charge", "I was billed twice")

    call = llm.calls[0]
    system, user = call["messages"]
    assert system["role"] == "system"
    for category in TicketCategory:
        assert category.value in system["content"]
    assert "category" in system["content"] and "confidence" in system["content"]
    assert user == {"role": "user", "content": "Subject: Double charge\n\nBody: I was billed twice"}
    assert call["temperature"] == 0.1
    assert call["max_tokens"] == 200


@pytest.mark.asyncio
async def test_code_fences_are_stripped(rng):
    llm = FakeLLMClient(f"```json\n{answer(category='technical')}\n```")
    classifier = TicketClassifier(llm, ClassifierConfig(), rng)

    result = await classifier.classify("Crash", "App crashes on start")

    assert result.category is TicketCategory.TECHNICAL


# ── Normalization ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unknown_category_becomes_general(rng):
    classifier = TicketClassifier(FakeLLMClient(answer(category="Shipping")), ClassifierConfig(), rng)

    result = await classifier.classify("Where is my parcel", "Not delivered yet")

    assert result.category is TicketCategory.GENERAL


@pytest.mark.asyncio
async def test_category_matching_ignores_case_and_whitespace(rng):
    classifier = TicketClassifier(FakeLLMClient(answer(category=" Bug_Report ")), ClassifierConfig(), rng)

    result = await classifier.classify("Bug", "Button does nothing")

    assert result.category is TicketCategory.BUG_REPORT


@pytest.mark.asyncio
@pytest.mark.parametrize("raw, expected", [(1.7, 1.0), (-0.2, 0.0), ("0.42", 0.42)])
async def test_confidence_is_clamped(rng, raw, expected):
    classifier = TicketClassifier(FakeLLMClient(answer(confidence=raw)), ClassifierConfig(), rng)

    result = await classifier.classify("Subject", "Body")

    assert result.confidence == expected
    assert not result.is_fallback


@pytest.mark.asyncio
async def test_explanation_is_trimmed_and_truncated(rng):
    long_explanation = "   " + "x" * 150 + "   "
    classifier = TicketClassifier(FakeLLMClient(answer(explanation=long_explanation)), ClassifierConfig(), rng)

    result = await classifier.classify("Subject", "Body")

    assert result.explanation == "x" * 100


# ── Failures fall back ───────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("content", [
    "",
    None,
    "not json at all",
    "[1, 2, 3]",
    json.dumps({"category": "billing", "confidence": 0.9}),
    answer(confidence="very high"),
])
async def test_malformed_answers_fall_back(rng, content):
    classifier = TicketClassifier(FakeLLMClient(content), ClassifierConfig(), rng)

    assert_fallback(await classifier.classify("Subject", "Body"))


@pytest.mark.asyncio
async def test_llm_errors_fall_back(rng):
    llm = FakeLLMClient(error=LLMException("Chat completion failed: timeout"))
    classifier = TicketClassifier(llm, ClassifierConfig(), rng)

    assert_fallback(await classifier.classify("Subject", "Body"))
    assert len(llm.calls) == 1
