"""Error kinds raised by the budget core and mapped to responses by the web app."""

from __future__ import annotations


class BudgetError(ValueError):
    kind = "BudgetError"
    status = 400
    default_message = "Invalid request."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind}


# ---- Validation ----
class ValidationError(BudgetError):
    kind = "ValidationError"


class NameRequired(ValidationError):
    kind = "NameRequired"
    default_message = "Category name is required."


class InvalidKind(ValidationError):
    kind = "InvalidKind"
    default_message = 'Category type must be either "fixed" or "percent".'


class InvalidFixedAmount(ValidationError):
    kind = "InvalidFixedAmount"
    default_message = 'A numeric "amount" is required for fixed categories.'


class InvalidPercent(ValidationError):
    kind = "InvalidPercent"
    default_message = 'A positive numeric "percent" is required for percentage categories.'


class InvalidSpendingCategory(ValidationError):
    kind = "InvalidSpendingCategory"
    default_message = "Unknown spending category."


class SpendingCategoryConflict(ValidationError):
    kind = "SpendingCategoryConflict"
    status = 409

    def __init__(self, conflicts):
        self.conflicts = list(conflicts)
        parts = [f"'{c.tag}' is already assigned to {c.category_name}" for c in self.conflicts]
        super().__init__("Spending categories already in use: " + "; ".join(parts) + ".")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["conflicts"] = [c.to_dict() for c in self.conflicts]
        return data


# ---- Allocation ----
class AllocationError(BudgetError):
    kind = "AllocationError"


class PercentageCeilingExceeded(AllocationError):
    kind = "PercentageCeilingExceeded"
    default_message = "Percentage categories cannot exceed 100%."


class InvalidAmount(AllocationError):
    kind = "InvalidAmount"
    default_message = "A numeric paycheck amount is required."


class FixedExceedsIncome(AllocationError):
    kind = "FixedExceedsIncome"
    default_message = "Fixed amounts exceed the paycheck amount."


class NotFound(BudgetError):
    kind = "NotFound"
    status = 404
    default_message = "Not found."
