"""Persistent cumulative-usage ledger.

One row per (user, tracking id, instrument, period type, year, month,
statement day). Increments are single ``INSERT ... ON CONFLICT DO UPDATE``
statements that add to the stored value, so concurrent writers to the same
period never lose an update.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    case,
    literal,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from cardpoints.domain.errors import ConfigurationError, LookupFailure
from cardpoints.domain.models import UsageKey

logger = logging.getLogger(__name__)

metadata = MetaData()

# Spend caps track currency amounts, so usage is kept as an exact decimal.
USAGE_TYPE = Numeric(precision=18, scale=4)

KEY_COLUMNS = (
    "user_id",
    "tracking_id",
    "instrument_id",
    "period_type",
    "period_year",
    "period_month",
    "statement_day",
)

usage_records = Table(
    "usage_records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("tracking_id", String(128), nullable=False),
    Column("instrument_id", String(64), nullable=False),
    Column("period_type", String(16), nullable=False),
    Column("period_year", Integer, nullable=False),
    Column("period_month", Integer, nullable=False),
    Column("statement_day", Integer, nullable=False, default=1),
    Column("used_value", USAGE_TYPE, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint(*KEY_COLUMNS, name="uq_usage_records_period"),
)

ZERO = Decimal(0)

_INSERT_BY_DIALECT = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class UsageLedger(Protocol):
    async def get(self, key: UsageKey) -> Decimal | None: ...

    async def add(self, key: UsageKey, delta: Decimal, floor_at_zero: bool = False) -> Decimal: ...

    async def set(self, key: UsageKey, value: Decimal) -> Decimal: ...


def _key_values(key: UsageKey) -> dict:
    return {
        "user_id": key.user_id,
        "tracking_id": key.tracking_id,
        "instrument_id": key.instrument_id,
        "period_type": key.period_type.value,
        "period_year": key.period_year,
        "period_month": key.period_month,
        "statement_day": key.statement_day,
    }


class SqlUsageLedger:
    def __init__(self, engine: AsyncEngine):
        insert = _INSERT_BY_DIALECT.get(engine.dialect.name)
        if insert is None:
            raise ConfigurationError(
                f"Usage ledger needs an upsert-capable database, got '{engine.dialect.name}'"
            )
        self.engine = engine
        self._insert = insert

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def get(self, key: UsageKey) -> Decimal | None:
        conditions = [usage_records.c[name] == value for name, value in _key_values(key).items()]
        stmt = select(usage_records.c.used_value).where(*conditions)
        try:
            async with self.engine.connect() as conn:
                value = (await conn.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise LookupFailure(f"Could not read usage for {key.tracking_id}") from exc
        return None if value is None else Decimal(value)

    async def _upsert(self, key: UsageKey, initial: Decimal, updated) -> Decimal:
        now = datetime.now(timezone.utc)
        stmt = self._insert(usage_records).values(
            **_key_values(key),
            used_value=initial,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=list(KEY_COLUMNS),
            set_={"used_value": updated, "updated_at": now},
        ).returning(usage_records.c.used_value)

        try:
            async with self.engine.begin() as conn:
                value = (await conn.execute(stmt)).scalar_one()
        except SQLAlchemyError as exc:
            raise LookupFailure(f"Could not write usage for {key.tracking_id}") from exc
        return Decimal(value)

    async def add(self, key: UsageKey, delta: Decimal, floor_at_zero: bool = False) -> Decimal:
        updated = usage_records.c.used_value + literal(delta, USAGE_TYPE)
        initial = delta
        if floor_at_zero:
            updated = case((updated < 0, literal(ZERO, USAGE_TYPE)), else_=updated)
            initial = max(ZERO, delta)
        return await self._upsert(key, initial, updated)

    async def set(self, key: UsageKey, value: Decimal) -> Decimal:
        return await self._upsert(key, value, literal(value, USAGE_TYPE))


class InMemoryUsageLedger:
    """Ledger kept in process memory, for tests and single-process tools."""

    def __init__(self) -> None:
        self._values: dict[UsageKey, Decimal] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: UsageKey) -> Decimal | None:
        return self._values.get(key)

    async def add(self, key: UsageKey, delta: Decimal, floor_at_zero: bool = False) -> Decimal:
        async with self._lock:
            value = self._values.get(key, ZERO) + delta
            if floor_at_zero:
                value = max(ZERO, value)
            self._values[key] = value
            return value

    async def set(self, key: UsageKey, value: Decimal) -> Decimal:
        async with self._lock:
            self._values[key] = value
            return value
