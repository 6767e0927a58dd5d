"""Bulk classification through an external language model.

Transactions are anonymized, grouped into fixed-size batches and sent along
with the taxonomy as a closed label set. A batch whose response cannot be
used (timeout, API error, no JSON array, wrong length, unknown category)
falls back to To Classify/Needs Review as a whole; other batches are not
affected.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ledgersync.categorization.anonymizer import AnonymizedTransaction, TransactionAnonymizer
from ledgersync.categorization.patterns import FALLBACK_CONFIDENCE, NEEDS_REVIEW_CATEGORY, RESERVED_CATEGORIES
from ledgersync.config import settings
from ledgersync.core.exceptions import ClassificationError, ConfigurationError
from ledgersync.schemas.aggregator import ProviderTransaction
from ledgersync.schemas.internal import CategorizationResult

logger = logging.getLogger(__name__)

AI_CONFIDENCE = 0.75
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


def needs_review_result() -> CategorizationResult:
    return CategorizationResult(
        main_category=NEEDS_REVIEW_CATEGORY[0],
        sub_category=NEEDS_REVIEW_CATEGORY[1],
        source="ai",
        confidence=FALLBACK_CONFIDENCE,
        needs_review=True,
    )


def build_system_prompt(taxonomy: dict[str, list[str]]) -> str:
    category_list = "\n".join(f"{main}: {', '.join(subs)}" for main, subs in taxonomy.items())
    return f"""You are a financial transaction categorization expert. Your task is to categorize anonymized banking transactions into the provided category structure.

CRITICAL RULES - STRICTLY ENFORCE:
1. All data is anonymized - merchant names are hashed, personal info is removed
2. You must ONLY use categories from the provided list below - DO NOT invent new categories
3. Each mainCategory must match exactly one of the main categories shown below
4. Each subCategory must match exactly one of the subcategories under that main category
5. If you cannot confidently categorize a transaction, use "{NEEDS_REVIEW_CATEGORY[0]}" as mainCategory and "{NEEDS_REVIEW_CATEGORY[1]}" as subCategory
6. Return results as a JSON array with mainCategory and subCategory fields, in input order

Available Categories (mainCategory: subcategory1, subcategory2, ...):
{category_list}

Return format: [{{"mainCategory": "Category Name", "subCategory": "Subcategory Name"}}, ...]"""


def build_user_prompt(transactions: list[AnonymizedTransaction]) -> str:
    lines = "\n".join(
        f'{index}. Merchant: {tx.merchant_hash}, Description: "{tx.description}", '
        f"Amount: {tx.amount} {tx.transaction_type}"
        for index, tx in enumerate(transactions, start=1)
    )
    return (
        f"Please categorize these {len(transactions)} anonymized transactions:\n\n"
        f"{lines}\n\n"
        f"Return a JSON array with exactly {len(transactions)} categorization results in the same order."
    )


def parse_response(
    content: str, expected_count: int, taxonomy: dict[str, list[str]]
) -> list[CategorizationResult]:
    """Parse the model output into one result per transaction.

    Raises:
        ClassificationError: If the output has no JSON array, the wrong
            number of items, or any pair outside the taxonomy
    """
    match = _JSON_ARRAY.search(content or "")
    if not match:
        raise ClassificationError("CLASS_002", "No JSON array found in response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ClassificationError("CLASS_002", f"Malformed JSON array: {exc}") from exc

    if not isinstance(parsed, list) or len(parsed) != expected_count:
        got = len(parsed) if isinstance(parsed, list) else "non-array"
        raise ClassificationError(
            "CLASS_003",
            f"Expected {expected_count} results, got {got}",
            details={"expected": expected_count, "got": got},
        )

    results = []
    for item in parsed:
        main = item.get("mainCategory") if isinstance(item, dict) else None
        sub = item.get("subCategory") if isinstance(item, dict) else None
        pair = (main, sub)
        if pair not in RESERVED_CATEGORIES and sub not in taxonomy.get(main or "", []):
            raise ClassificationError(
                "CLASS_003",
                f"Invalid category combination: {main}:{sub}",
                details={"main_category": main, "sub_category": sub},
            )
        if pair == NEEDS_REVIEW_CATEGORY:
            results.append(needs_review_result())
        else:
            results.append(
                CategorizationResult(
                    main_category=main,
                    sub_category=sub,
                    source="ai",
                    confidence=AI_CONFIDENCE,
                    needs_review=False,
                )
            )
    return results


class AIClassifier:
    """Classify transactions with an external model.

    The SDK client is chosen from the model name (``gpt*`` uses OpenAI,
    anything else Anthropic) unless one is passed in.
    """

    def __init__(
        self,
        client: Any | None = None,
        model: str | None = None,
        batch_size: int | None = None,
        timeout: float | None = None,
        max_tokens: int | None = None,
        anonymizer: TransactionAnonymizer | None = None,
    ):
        self.model = model or settings.ai_model
        self.batch_size = batch_size or settings.ai_batch_size
        self.timeout = timeout or settings.ai_timeout_seconds
        self.max_tokens = max_tokens or settings.ai_max_tokens
        self.anonymizer = anonymizer or TransactionAnonymizer()
        self.client = client or self._init_client()

    @property
    def uses_openai(self) -> bool:
        return "gpt" in self.model.lower()

    def _init_client(self) -> Any:
        if not settings.ai_api_key:
            raise ConfigurationError("ai_api_key")
        if self.uses_openai:
            return AsyncOpenAI(api_key=settings.ai_api_key)
        return AsyncAnthropic(api_key=settings.ai_api_key)

    async def classify(
        self,
        transactions: list[ProviderTransaction],
        taxonomy: dict[str, list[str]],
    ) -> list[CategorizationResult]:
        """Classify transactions; the result list is aligned with the input."""
        results: list[CategorizationResult] = []
        if not transactions:
            return results

        anonymized = [self.anonymizer.anonymize(tx) for tx in transactions]
        for start in range(0, len(anonymized), self.batch_size):
            batch = anonymized[start : start + self.batch_size]
            try:
                results.extend(await self._classify_batch(batch, taxonomy))
            except Exception as exc:
                # SDK and transport errors degrade the batch like a bad response
                self._log_fallback(exc, start, len(batch))
                results.extend(needs_review_result() for _ in batch)
        return results

    def _log_fallback(self, exc: Exception, start: int, size: int) -> None:
        logger.warning(
            "AI categorization batch fell back to review",
            extra={
                "error": str(exc) or type(exc).__name__,
                "batch_start_index": start,
                "batch_size": size,
                "model": self.model,
            },
        )

    async def _classify_batch(
        self, batch: list[AnonymizedTransaction], taxonomy: dict[str, list[str]]
    ) -> list[CategorizationResult]:
        system_prompt = build_system_prompt(taxonomy)
        user_prompt = build_user_prompt(batch)
        try:
            content = await asyncio.wait_for(
                self._complete(system_prompt, user_prompt), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise ClassificationError(
                "CLASS_001", f"AI API timeout after {self.timeout}s"
            ) from exc
        return parse_response(content, len(batch), taxonomy)

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        if self.uses_openai:
            response = await self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
            return response.choices[0].message.content or ""

        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        if not response.content:
            raise ClassificationError("CLASS_002", "No content received from AI API")
        return response.content[0].text
