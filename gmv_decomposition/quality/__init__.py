"""
Data Quality Module
"""
from .validators import DataValidator, ValidationResult, ValidationStatus
from .consistency import IdentityViolationError, assert_identities, check_identities

__all__ = [
    "DataValidator",
    "ValidationResult",
    "ValidationStatus",
    "IdentityViolationError",
    "assert_identities",
    "check_identities",
]
