import logging
from datetime import datetime, date as date_type, timedelta
from decimal import Decimal

import httpx
from sqlalchemy.orm import Session

from tripspend.config import get_settings
from tripspend.currency import ONE, SUPPORTED_CURRENCIES, validate_rate
from tripspend.exceptions import InvalidRateError
from tripspend.models import ExchangeRate

logger = logging.getLogger("tripspend")


def get_rate(db: Session, base: str, target: str) -> tuple[Decimal, date_type]:
    """Get exchange rate from cache or fetch from frankfurter.dev.

    Returns (rate, date) tuple where rate converts 1 unit of base to target.
    Cached rates are reused until they are older than FX_CACHE_HOURS.
    """
    if base == target:
        return ONE, date_type.today()
    for code in (base, target):
        if code not in SUPPORTED_CURRENCIES:
            raise InvalidRateError(f"Unsupported currency: {code}")

    settings = get_settings()
    now = datetime.utcnow()
    cutoff = now - timedelta(hours=settings.fx_cache_hours)

    cached = (
        db.query(ExchangeRate)
        .filter(
            ExchangeRate.base_currency == base,
            ExchangeRate.target_currency == target,
            ExchangeRate.fetched_at >= cutoff,
        )
        .order_by(ExchangeRate.fetched_at.desc())
        .first()
    )
    if cached:
        return Decimal(cached.rate), cached.date

    resp = httpx.get(
        f"{settings.fx_api_base}/latest",
        params={"from": base, "to": target},
        timeout=10,
    )
    resp.raise_for_status()
    data = resp.json()

    rate_value = validate_rate(str(data["rates"][target]))
    rate_date = date_type.fromisoformat(data["date"])
    logger.info(
        "Exchange rate fetched",
        extra={"extra_data": {"base": base, "target": target, "rate": str(rate_value)}},
    )

    # Upsert into cache. A concurrent insert of the same rate surfaces as an
    # IntegrityError on flush; the caller's unit of work rolls back and retries.
    existing = (
        db.query(ExchangeRate)
        .filter(
            ExchangeRate.date == rate_date,
            ExchangeRate.base_currency == base,
            ExchangeRate.target_currency == target,
        )
        .first()
    )
    if existing:
        existing.rate = rate_value
        existing.fetched_at = now
    else:
        db.add(
            ExchangeRate(
                date=rate_date,
                base_currency=base,
                target_currency=target,
                rate=rate_value,
                fetched_at=now,
            )
        )
    db.flush()

    return rate_value, rate_date
