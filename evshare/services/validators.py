from decimal import Decimal

from evshare.services.exceptions import InvalidAmountError, InvalidCostError


class BusinessRules:
    MIN_ESTIMATED_COST = Decimal("0")
    MIN_ACTUAL_COST = Decimal("0")
    # Largest value a Numeric(15, 2) money column holds
    MAX_MONEY = Decimal("9999999999999.99")

    @staticmethod
    def validate_estimated_cost(estimated_cost: Decimal):
        if estimated_cost < BusinessRules.MIN_ESTIMATED_COST:
            raise InvalidCostError("Estimated cost must not be negative")
        if estimated_cost > BusinessRules.MAX_MONEY:
            raise InvalidCostError(f"Estimated cost must not exceed {BusinessRules.MAX_MONEY}")

    @staticmethod
    def validate_actual_cost(actual_cost: Decimal):
        # Zero is a valid execution cost (warranty work, free upgrades)
        if actual_cost < BusinessRules.MIN_ACTUAL_COST:
            raise InvalidCostError("Actual cost must not be negative")
        if actual_cost > BusinessRules.MAX_MONEY:
            raise InvalidCostError(f"Actual cost must not exceed {BusinessRules.MAX_MONEY}")

    @staticmethod
    def validate_deposit_amount(amount: Decimal):
        if amount <= 0:
            raise InvalidAmountError("Deposit amount must be greater than 0")
        if amount > BusinessRules.MAX_MONEY:
            raise InvalidAmountError(f"Deposit amount must not exceed {BusinessRules.MAX_MONEY}")
