from __future__ import annotations

from datetime import date, timezone

from sqlalchemy.orm import Session

from db import models
from services.rate_store import RateStore
from services.rate_types import RateQuote


class SqlRateStore(RateStore):
    """Rate cache persisted through SQLAlchemy. Writing an existing key replaces it."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def write(self, quote: RateQuote) -> None:
        orm_rate = models.CachedRateOrm(
            currency=quote.currency.upper(),
            quote_currency=quote.quote_currency.upper(),
            rate_date=quote.rate_date,
            rate=quote.rate,
            source=quote.source,
            fetched_at=quote.fetched_at,
        )
        self._session.merge(orm_rate)
        self._session.commit()

    def read(self, currency: str, quote_currency: str, rate_date: date) -> RateQuote | None:
        orm_rate = self._session.get(models.CachedRateOrm, (currency.upper(), quote_currency.upper(), rate_date))
        if orm_rate is None:
            return None
        return self._to_domain(orm_rate)

    def list(self) -> list[RateQuote]:
        orm_rates = (
            self._session.query(models.CachedRateOrm)
            .order_by(models.CachedRateOrm.currency.asc(), models.CachedRateOrm.rate_date.asc())
            .all()
        )
        return [self._to_domain(orm_rate) for orm_rate in orm_rates]

    @staticmethod
    def _to_domain(orm_rate: models.CachedRateOrm) -> RateQuote:
        fetched_at = orm_rate.fetched_at
        # sqlite drops the offset on DateTime(timezone=True).
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        return RateQuote(
            currency=orm_rate.currency,
            quote_currency=orm_rate.quote_currency,
            rate_date=orm_rate.rate_date,
            rate=orm_rate.rate,
            source=orm_rate.source,
            fetched_at=fetched_at,
        )
