"""Anonymize transactions before they are sent to the external classifier.

Merchant identity is replaced by a short salted hash, and description text
has digit runs, IBANs and card numbers redacted. Only the anonymized form
ever leaves the process.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal

from presidio_analyzer import RecognizerResult
from presidio_anonymizer import AnonymizerEngine
from presidio_anonymizer.entities import OperatorConfig

from ledgersync.categorization.recognizers import (
    CardNumberRecognizer,
    DigitRunRecognizer,
    IbanLikeRecognizer,
)
from ledgersync.config import settings
from ledgersync.schemas.aggregator import ProviderTransaction

logger = logging.getLogger(__name__)

MERCHANT_HASH_LENGTH = 8

OPERATORS = {
    "DIGIT_RUN": OperatorConfig("replace", {"new_value": "[NUMBER]"}),
    "IBAN_LIKE": OperatorConfig("replace", {"new_value": "[IBAN]"}),
    "CARD_LIKE": OperatorConfig("replace", {"new_value": "[CARD]"}),
}


@dataclass(frozen=True)
class AnonymizedTransaction:
    merchant_hash: str
    description: str
    amount: Decimal
    transaction_type: str


class TransactionAnonymizer:
    """Strip identifying data from provider transactions.

    Args:
        salt: Secret mixed into the merchant hash so hashes cannot be
            reversed with a dictionary of merchant names
    """

    def __init__(self, salt: str | None = None):
        self._salt = (salt or settings.anonymization_salt).encode()
        self._recognizers = [DigitRunRecognizer(), IbanLikeRecognizer(), CardNumberRecognizer()]
        self._anonymizer = AnonymizerEngine()

    def hash_merchant(self, value: str) -> str:
        digest = hmac.new(self._salt, value.lower().encode(), hashlib.sha256).hexdigest()
        return digest[:MERCHANT_HASH_LENGTH]

    def redact(self, text: str) -> str:
        """Replace identifiers in ``text`` with placeholders."""
        if not text:
            return ""

        results: list[RecognizerResult] = []
        for recognizer in self._recognizers:
            results.extend(recognizer.analyze(text, recognizer.supported_entities))
        if not results:
            return text.strip()

        anonymized = self._anonymizer.anonymize(
            text=text,
            analyzer_results=results,
            operators=OPERATORS,
        )
        return anonymized.text.strip()

    def anonymize(self, transaction: ProviderTransaction) -> AnonymizedTransaction:
        merchant_source = (
            transaction.merchant_name or transaction.descriptions.display or "unknown"
        )
        amount = transaction.decimal_amount()
        return AnonymizedTransaction(
            merchant_hash=self.hash_merchant(merchant_source),
            description=self.redact(transaction.description),
            amount=abs(amount),
            transaction_type="credit" if amount >= 0 else "debit",
        )
