"""Static plan and credit-package catalog.

Price ids come from deploy-time configuration. Lookups return ``None`` for
anything unknown; callers fail closed instead of guessing a plan.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from backoffice.core.config import Settings, settings
from backoffice.models.payment import PaymentType, PlanInterval


@dataclass(frozen=True)
class PlanCredits:
    amount: int
    expire_days: Optional[int] = None


@dataclass(frozen=True)
class Price:
    price_id: str
    type: PaymentType
    amount: int  # smallest currency unit
    currency: str = "usd"
    interval: PlanInterval = PlanInterval.NONE
    trial_period_days: int = 0
    allow_promotion_code: bool = False


@dataclass(frozen=True)
class PricePlan:
    id: str
    name: str
    prices: Tuple[Price, ...] = ()
    is_free: bool = False
    is_lifetime: bool = False
    credits: Optional[PlanCredits] = None


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    credits: int
    price: Price
    expire_days: Optional[int] = None
    popular: bool = False


@dataclass
class PlanCatalog:
    plans: List[PricePlan] = field(default_factory=list)
    credit_packages: List[CreditPackage] = field(default_factory=list)

    def get_all_price_plans(self) -> List[PricePlan]:
        return list(self.plans)

    def find_plan_by_plan_id(self, plan_id: str) -> Optional[PricePlan]:
        return next((plan for plan in self.plans if plan.id == plan_id), None)

    def find_plan_by_price_id(self, price_id: str) -> Optional[PricePlan]:
        if not price_id:
            return None
        for plan in self.plans:
            if any(price.price_id == price_id for price in plan.prices):
                return plan
        return None

    def find_price_in_plan(self, plan_id: str, price_id: str) -> Optional[Price]:
        plan = self.find_plan_by_plan_id(plan_id)
        if not plan or not price_id:
            return None
        return next((price for price in plan.prices if price.price_id == price_id), None)

    def find_price(self, price_id: str) -> Optional[Price]:
        plan = self.find_plan_by_price_id(price_id)
        if not plan:
            return None
        return self.find_price_in_plan(plan.id, price_id)

    def get_credit_package_by_id(self, package_id: str) -> Optional[CreditPackage]:
        return next((pkg for pkg in self.credit_packages if pkg.id == package_id), None)

    def get_credit_package_by_price_id(self, price_id: str) -> Optional[CreditPackage]:
        if not price_id:
            return None
        return next((pkg for pkg in self.credit_packages if pkg.price.price_id == price_id), None)


def build_catalog(config: Settings) -> PlanCatalog:
    """Build the catalog from settings. Prices without a configured id are left out."""
    def _prices(*prices: Price) -> Tuple[Price, ...]:
        return tuple(price for price in prices if price.price_id)

    plans = [
        PricePlan(
            id="free",
            name="Free",
            is_free=True,
        ),
        PricePlan(
            id="pro",
            name="Pro",
            prices=_prices(
                Price(
                    price_id=config.stripe_price_pro_monthly,
                    type=PaymentType.SUBSCRIPTION,
                    amount=990,
                    interval=PlanInterval.MONTH,
                    allow_promotion_code=True,
                ),
                Price(
                    price_id=config.stripe_price_pro_yearly,
                    type=PaymentType.SUBSCRIPTION,
                    amount=9900,
                    interval=PlanInterval.YEAR,
                    trial_period_days=7,
                    allow_promotion_code=True,
                ),
            ),
            credits=PlanCredits(amount=1000, expire_days=30),
        ),
        PricePlan(
            id="lifetime",
            name="Lifetime",
            prices=_prices(
                Price(
                    price_id=config.stripe_price_lifetime,
                    type=PaymentType.ONE_TIME,
                    amount=19900,
                    allow_promotion_code=True,
                ),
            ),
            is_lifetime=True,
            credits=PlanCredits(amount=1000, expire_days=30),
        ),
    ]

    package_specs = [
        ("basic", "Basic", 100, 990, config.stripe_price_credits_basic, False),
        ("standard", "Standard", 200, 1490, config.stripe_price_credits_standard, True),
        ("premium", "Premium", 500, 3990, config.stripe_price_credits_premium, False),
        ("enterprise", "Enterprise", 1000, 6990, config.stripe_price_credits_enterprise, False),
    ]
    packages = [
        CreditPackage(
            id=package_id,
            name=name,
            credits=credits,
            price=Price(price_id=price_id, type=PaymentType.ONE_TIME, amount=amount),
            expire_days=30,
            popular=popular,
        )
        for package_id, name, credits, amount, price_id, popular in package_specs
        if price_id
    ]

    return PlanCatalog(plans=plans, credit_packages=packages)


plan_catalog = build_catalog(settings)
