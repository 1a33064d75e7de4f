"""Plan quality gate and retry feedback."""

from dreamcard.validation.feedback import RetryFeedback, find_field_correction
from dreamcard.validation.quality import (
    DEFAULT_RULES,
    QualityReport,
    QualityRules,
    validate,
)

__all__ = [
    "DEFAULT_RULES",
    "QualityReport",
    "QualityRules",
    "RetryFeedback",
    "find_field_correction",
    "validate",
]
