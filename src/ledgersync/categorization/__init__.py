"""Transaction categorization.

The rule engine classifies locally using stored rules, MCC mappings and
built-in patterns. The AI classifier is the bulk alternative that sends
anonymized batches to an external model.
"""

from .ai_classifier import AIClassifier
from .anonymizer import TransactionAnonymizer
from .cache import CategorizationCache, shared_cache
from .engine import CategorizationEngine

__all__ = ["AIClassifier", "CategorizationCache", "CategorizationEngine", "TransactionAnonymizer", "shared_cache"]
