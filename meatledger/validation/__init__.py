"""
Validation package.

Only the sanitizer is re-exported here because the models depend on it;
import the draft validator from meatledger.validation.validator.
"""

from meatledger.validation.sanitizer import safe_number, sanitize

__all__ = ["safe_number", "sanitize"]
