"""
Draft Validation

Every user-supplied draft or name is checked here BEFORE the engine
touches the store. A rejected request changes nothing.

CHECKS:
- A sale needs at least one item naming a product
- A payment-only invoice needs a positive amount
- Cash handed in with a sale can't be negative
- A purchase needs at least one item naming a product
- Client, supplier and product names can't be blank
- Product prices can't be negative

IMPORTANT: Validation NEVER silently fixes issues.
Numeric garbage is zeroed by the sanitizer; everything else that is
wrong is reported, all issues at once.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from meatledger.errors import ValidationError
from meatledger.models.ledger import (
    ClientInvoiceDraft,
    InvoiceType,
    SupplierInvoiceDraft,
)
from meatledger.validation.sanitizer import safe_number


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
        description="Issue severity"
    )


class DraftValidator:
    """
    Validates drafts and names before any store call.

    Each check_* method raises ValidationError listing every error found,
    and returns the warnings otherwise.
    """

    @staticmethod
    def _raise_on_errors(
        subject: str,
        issues: list[ValidationIssue],
    ) -> list[ValidationIssue]:
        errors = [issue for issue in issues if issue.severity == "error"]
        if errors:
            message = "; ".join(issue.message for issue in errors)
            raise ValidationError(f"Invalid {subject}: {message}", issues=issues)
        return issues

    def check_client_invoice(self, draft: ClientInvoiceDraft) -> list[ValidationIssue]:
        issues = []

        if draft.type is InvoiceType.PAYMENT:
            if draft.cash_payment <= 0:
                issues.append(ValidationIssue(
                    field="cash_payment",
                    issue_type="invalid_value",
                    message="A payment must be greater than zero",
                ))
            if draft.items:
                issues.append(ValidationIssue(
                    field="items",
                    issue_type="ignored",
                    message="Items on a payment-only invoice are discarded",
                    severity="warning",
                ))
        else:
            if not draft.line_items:
                issues.append(ValidationIssue(
                    field="items",
                    issue_type="missing",
                    message="A sale needs at least one product, or register a payment instead",
                ))
            if draft.cash_payment < 0:
                issues.append(ValidationIssue(
                    field="cash_payment",
                    issue_type="invalid_value",
                    message="Cash payment can't be negative",
                ))

        return self._raise_on_errors("client invoice", issues)

    def check_supplier_invoice(self, draft: SupplierInvoiceDraft) -> list[ValidationIssue]:
        issues = []

        if not draft.line_items:
            issues.append(ValidationIssue(
                field="items",
                issue_type="missing",
                message="A purchase needs at least one product",
            ))

        return self._raise_on_errors("supplier invoice", issues)

    def check_name(self, subject: str, name: Optional[str]) -> str:
        """Return the trimmed name, or raise if it is blank."""
        cleaned = (name or "").strip()
        if not cleaned:
            self._raise_on_errors(subject, [ValidationIssue(
                field="name",
                issue_type="missing",
                message="Name is required",
            )])
        return cleaned

    def check_price(self, price: Any) -> float:
        """Return the sanitized price, or raise if it is negative."""
        value = safe_number(price)
        if value < 0:
            self._raise_on_errors("stock product", [ValidationIssue(
                field="unit_price",
                issue_type="invalid_value",
                message="Price can't be negative",
            )])
        return value
