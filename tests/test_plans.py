"""Plan resolution and custom pricing."""
import pytest
from sqlmodel import select

from app.core.errors import ValidationError
from app.models import PaymentRecord, Plan
from app.services.plans import clear_catalog_cache, custom_quote, max_days_for, quote_for_record, resolve_plan


def test_custom_quote_clamps_and_multiplies():
    quote = custom_quote(["Milk", "milk", " cattle "], 1)
    assert quote.modules == ("cattle", "milk")
    assert quote.price == 199
    assert quote.days == 30

    quote = custom_quote(["cattle", "milk", "health", "breeding", "feed", "finance"], 12)
    assert quote.price == 254 * 12
    assert quote.days == 360
    assert quote.amount_paise == 254 * 12 * 100


def test_custom_quote_requires_modules():
    with pytest.raises(ValidationError):
        custom_quote([], 1)
    with pytest.raises(ValidationError):
        custom_quote(["milk"], 13)


def test_resolve_uses_plan_table(client, db):
    plan = db.exec(select(Plan).where(Plan.name == "monthly")).one()
    plan.price = 549
    db.add(plan)
    db.commit()
    assert resolve_plan(db, "monthly").price == 549


def test_inactive_plan_cannot_be_bought(client, db):
    plan = db.exec(select(Plan).where(Plan.name == "halfyearly")).one()
    plan.is_active = False
    db.add(plan)
    db.commit()
    with pytest.raises(ValidationError):
        resolve_plan(db, "halfyearly")


def test_quote_for_record_keeps_charged_amount(client, db):
    plan = db.exec(select(Plan).where(Plan.name == "quarterly")).one()
    plan.price = 1499
    db.add(plan)
    db.commit()
    quote = quote_for_record(db, PaymentRecord(user_id=1, plan="quarterly", amount=1299))
    assert (quote.price, quote.days) == (1299, 90)
    custom = quote_for_record(db, PaymentRecord(user_id=1, plan="custom", amount=597, custom_days=90, custom_modules="cattle,milk"))
    assert (custom.days, custom.modules) == (90, ("cattle", "milk"))


def test_tamper_ceiling_cache(client, db):
    assert max_days_for(db, "monthly") == 35
    plan = db.exec(select(Plan).where(Plan.name == "monthly")).one()
    plan.days = 60
    db.add(plan)
    db.commit()
    # Cached until cleared
    assert max_days_for(db, "monthly") == 35
    clear_catalog_cache()
    assert max_days_for(db, "monthly") == 65
