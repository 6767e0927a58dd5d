"""Pattern recognizers for identifiers that must not leave the process."""

import re

from presidio_analyzer import Pattern, PatternRecognizer

# Recognizers run without an NLP engine and are case sensitive.
REGEX_FLAGS = re.DOTALL | re.MULTILINE


class DigitRunRecognizer(PatternRecognizer):
    """Runs of four or more digits (account numbers, references, phone numbers)."""

    PATTERNS = [
        Pattern(name="digit_run", regex=r"\b\d{4,}\b", score=0.5),
    ]

    def __init__(self):
        super().__init__(
            supported_entity="DIGIT_RUN",
            patterns=self.PATTERNS,
            global_regex_flags=REGEX_FLAGS,
        )


class IbanLikeRecognizer(PatternRecognizer):
    """IBAN-shaped tokens.

    Format: country code, two check digits, then the BBAN
    Example: FR7630006000011234567890189
    """

    PATTERNS = [
        Pattern(
            name="iban_like",
            regex=r"\b[A-Z]{2}\d{2}[A-Z0-9]{4}\d{7}([A-Z0-9]?){0,16}\b",
            score=0.9,
        ),
    ]

    def __init__(self):
        super().__init__(
            supported_entity="IBAN_LIKE",
            patterns=self.PATTERNS,
            global_regex_flags=REGEX_FLAGS,
        )


class CardNumberRecognizer(PatternRecognizer):
    """Sixteen-digit card numbers, optionally grouped by spaces or dashes.

    Example: 4111 1111 1111 1111 or 4111-1111-1111-1111
    """

    PATTERNS = [
        Pattern(
            name="card_number",
            regex=r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b",
            score=0.9,
        ),
    ]

    def __init__(self):
        super().__init__(
            supported_entity="CARD_LIKE",
            patterns=self.PATTERNS,
            global_regex_flags=REGEX_FLAGS,
        )
