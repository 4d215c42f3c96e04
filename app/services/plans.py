"""Plan resolution: catalogue plans, the computed custom plan, and tamper ceilings."""
import time
from dataclasses import dataclass, field

from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import ValidationError
from app.models import PaymentRecord, Plan

# name -> (price INR, days); seeded into the Plan table and used when a row is missing
DEFAULT_PLANS = {
    "monthly": (499, 30),
    "quarterly": (1299, 90),
    "halfyearly": (2499, 180),
    "yearly": (4499, 365),
}
TRIAL_PLAN = "trial"
CUSTOM_PLAN = "custom"
MANUAL_PLAN = "manual"
DAYS_PER_MONTH = 30

# Catalogue days cache for the tamper check: name -> days
_catalog_cache: dict[str, int] = {}
_catalog_cache_time: float = 0.0
_CATALOG_CACHE_TTL = 60.0


@dataclass(frozen=True)
class PlanQuote:
    name: str
    price: int
    days: int
    modules: tuple[str, ...] = field(default_factory=tuple)

    @property
    def amount_paise(self) -> int:
        return self.price * 100


def custom_quote(modules: list[str] | None, period: int | None) -> PlanQuote:
    """
    Custom plan: sum of selected module prices, clamped to the configured
    monthly min/max, multiplied by the period in months.
    """
    prices = settings.custom_module_prices
    selected = sorted({(m or "").strip().lower() for m in (modules or []) if (m or "").strip()})
    if not selected:
        raise ValidationError("Select at least one module for a custom plan.")
    unknown = [m for m in selected if m not in prices]
    if unknown:
        raise ValidationError(f"Unknown module: {unknown[0]}")
    months = period or 1
    if months < 1 or months > settings.custom_max_period_months:
        raise ValidationError(f"Period must be between 1 and {settings.custom_max_period_months} months.")
    monthly = sum(prices[m] for m in selected)
    monthly = max(settings.custom_min_monthly, min(settings.custom_max_monthly, monthly))
    return PlanQuote(name=CUSTOM_PLAN, price=monthly * months, days=DAYS_PER_MONTH * months, modules=tuple(selected))


def resolve_plan(db: Session, name: str, modules: list[str] | None = None, period: int | None = None) -> PlanQuote:
    """Price and days for a purchasable plan. Trial and manual plans cannot be bought."""
    name = (name or "").strip().lower()
    if name == CUSTOM_PLAN:
        return custom_quote(modules, period)
    plan = db.exec(select(Plan).where(Plan.name == name, Plan.is_active == True)).first()  # noqa: E712
    if plan:
        return PlanQuote(name=plan.name, price=plan.price, days=plan.days)
    if name in DEFAULT_PLANS and not db.exec(select(Plan).where(Plan.name == name)).first():
        price, days = DEFAULT_PLANS[name]
        return PlanQuote(name=name, price=price, days=days)
    raise ValidationError("Invalid plan selected.")


def quote_for_record(db: Session, record: PaymentRecord) -> PlanQuote:
    """Entitlement for a payment: the amount actually charged, the plan's days at activation time."""
    if record.plan == CUSTOM_PLAN:
        modules = tuple(m for m in (record.custom_modules or "").split(",") if m)
        return PlanQuote(name=CUSTOM_PLAN, price=record.amount, days=record.custom_days or DAYS_PER_MONTH, modules=modules)
    plan = db.exec(select(Plan).where(Plan.name == record.plan)).first()
    if plan:
        return PlanQuote(name=plan.name, price=record.amount, days=plan.days)
    if record.plan in DEFAULT_PLANS:
        return PlanQuote(name=record.plan, price=record.amount, days=DEFAULT_PLANS[record.plan][1])
    raise ValidationError(f"Plan no longer exists: {record.plan}")


def list_plans(db: Session) -> list[Plan]:
    stmt = select(Plan).where(Plan.is_active == True).order_by(Plan.sort_order, Plan.id)  # noqa: E712
    return list(db.exec(stmt).all())


def _catalog_days(db: Session) -> dict[str, int]:
    global _catalog_cache, _catalog_cache_time
    now = time.monotonic()
    if _catalog_cache and now - _catalog_cache_time < _CATALOG_CACHE_TTL:
        return _catalog_cache
    days = {name: d for name, (_, d) in DEFAULT_PLANS.items()}
    for plan in db.exec(select(Plan)).all():
        days[plan.name] = plan.days
    _catalog_cache = days
    _catalog_cache_time = now
    return days


def clear_catalog_cache() -> None:
    global _catalog_cache, _catalog_cache_time
    _catalog_cache = {}
    _catalog_cache_time = 0.0


def max_days_for(db: Session, plan_name: str, payment_id: int | None = None) -> int:
    """
    Longest duration a subscription of this plan may legitimately span.
    A custom subscription is held to the days bought by its own payment.
    """
    if plan_name == TRIAL_PLAN:
        return settings.trial_max_days
    if plan_name == CUSTOM_PLAN:
        record = db.get(PaymentRecord, payment_id) if payment_id else None
        if record is not None and record.custom_days:
            return record.custom_days + settings.tamper_buffer_days
        return settings.custom_max_period_months * DAYS_PER_MONTH + settings.tamper_buffer_days
    catalog = _catalog_days(db)
    if plan_name in catalog:
        return catalog[plan_name] + settings.tamper_buffer_days
    # Unknown / legacy names and admin grants
    return settings.tamper_fallback_max_days
