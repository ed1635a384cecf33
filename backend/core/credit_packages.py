"""
Credit package configuration.

This module is the single source of truth for purchasable credit packs.
It lives in core/ so both service and API layers can import from it
without creating circular dependencies.
"""

from dataclasses import dataclass
from decimal import Decimal

# Maximum difference tolerated between the captured amount and the package price
AMOUNT_TOLERANCE = Decimal("0.01")

CURRENCY = "USD"


@dataclass(frozen=True)
class CreditPackage:
    id: int
    name: str
    price: Decimal
    credits: int


CREDIT_PACKAGES: dict[int, CreditPackage] = {
    1: CreditPackage(id=1, name="Starter Pack", price=Decimal("3.99"), credits=3),
    2: CreditPackage(id=2, name="Popular Pack", price=Decimal("4.99"), credits=7),
    3: CreditPackage(id=3, name="Value Pack", price=Decimal("8.99"), credits=12),
    4: CreditPackage(id=4, name="Premium Pack", price=Decimal("9.99"), credits=16),
}

# Largest single credit grant a client may request
MAX_CREDIT_GRANT = max(p.credits for p in CREDIT_PACKAGES.values())


def get_package(package_id: int) -> CreditPackage | None:
    """Look up a package by id, None when it does not exist."""
    return CREDIT_PACKAGES.get(package_id)


def amount_matches(package: CreditPackage, amount: Decimal | str | float) -> bool:
    """True when a captured amount equals the package price within tolerance."""
    return abs(Decimal(str(amount)) - package.price) <= AMOUNT_TOLERANCE
