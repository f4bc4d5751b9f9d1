"""Static price table for purchasable plans."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, Union

from .errors import ValidationError
from .models import BillingCycle, PlanType


@dataclass(frozen=True)
class PlanDefinition:
    """Describes a plan and its monthly-equivalent price per billing cycle."""

    plan_type: PlanType
    display_name: str
    monthly_price: Mapping[BillingCycle, int]
    purchasable: bool = True
    requires_contact: bool = False

    def total_for(self, cycle: BillingCycle) -> int:
        """Whole-currency amount charged for one billing period."""

        per_month = self.monthly_price[cycle]
        return per_month * 12 if cycle == BillingCycle.ANNUAL else per_month


@dataclass(frozen=True)
class PriceQuote:
    plan_type: PlanType
    billing_cycle: BillingCycle
    amount: int
    currency: str


# Prices are in INR per month.
PLAN_CATALOG: Dict[PlanType, PlanDefinition] = {
    PlanType.FREE: PlanDefinition(
        plan_type=PlanType.FREE,
        display_name="Free",
        monthly_price={},
        purchasable=False,
    ),
    PlanType.INDIVIDUAL: PlanDefinition(
        plan_type=PlanType.INDIVIDUAL,
        display_name="Individual",
        monthly_price={BillingCycle.MONTHLY: 1660, BillingCycle.ANNUAL: 1494},
    ),
    PlanType.GROUP: PlanDefinition(
        plan_type=PlanType.GROUP,
        display_name="Group",
        monthly_price={BillingCycle.MONTHLY: 1660, BillingCycle.ANNUAL: 1328},
    ),
    PlanType.CUSTOM: PlanDefinition(
        plan_type=PlanType.CUSTOM,
        display_name="Custom",
        monthly_price={},
        purchasable=False,
        requires_contact=True,
    ),
}


class PriceTable:
    """Validates plan/cycle selections and prices them in minor units."""

    def __init__(
        self,
        catalog: Optional[Mapping[PlanType, PlanDefinition]] = None,
        *,
        currency: str = "INR",
        minor_units: int = 100,
    ) -> None:
        self._catalog = dict(catalog or PLAN_CATALOG)
        self.currency = currency.upper()
        self._minor_units = minor_units

    def resolve(
        self,
        plan: Union[PlanType, str, None],
        cycle: Union[BillingCycle, str, None],
    ) -> Tuple[PlanDefinition, BillingCycle]:
        """Return the purchasable plan and cycle, raising ``ValidationError`` otherwise."""

        if not plan or not cycle:
            raise ValidationError("Missing planType or billingCycle in request body")

        try:
            plan_type = PlanType(plan)
        except ValueError as exc:
            raise ValidationError("Invalid plan type") from exc

        definition = self._catalog.get(plan_type)
        if definition is None:
            raise ValidationError("Invalid plan type")
        if definition.requires_contact:
            raise ValidationError(
                "Please contact sales for custom enterprise plans",
                requiresContact=True,
            )
        if not definition.purchasable:
            raise ValidationError("Invalid plan type")

        try:
            billing_cycle = BillingCycle(cycle)
        except ValueError as exc:
            raise ValidationError("Invalid billing cycle") from exc
        if billing_cycle not in definition.monthly_price:
            raise ValidationError("Invalid plan configuration")
        return definition, billing_cycle

    def quote(
        self,
        plan: Union[PlanType, str, None],
        cycle: Union[BillingCycle, str, None],
    ) -> PriceQuote:
        definition, billing_cycle = self.resolve(plan, cycle)
        total = definition.total_for(billing_cycle)
        if total < 1:
            raise ValidationError("Invalid payment amount")
        return PriceQuote(
            plan_type=definition.plan_type,
            billing_cycle=billing_cycle,
            amount=total * self._minor_units,
            currency=self.currency,
        )
