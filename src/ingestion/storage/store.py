"""
Idempotent persistence for ingested entities.

Every write is a single native upsert statement (INSERT .. ON CONFLICT DO
UPDATE) on PostgreSQL or SQLite, executed in its own transaction:

- users, orders, payments, product_reviews: last-write-wins on mutable
  columns, created_at preserved
- inventory: additive, quantity = quantity + delta

Failures surface as PersistenceError. Constraint violations (foreign key,
check, not-null) are permanent; connectivity problems are transient. The
store does not retry; the caller decides.

Usage:
    store = EntityStore.from_config(config, metrics=metrics)
    await store.connect()
    await store.upsert_user(user)
    await store.close()
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Table, event, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from config.config import IngestConfig
from core.errors.exceptions import PersistenceError
from core.resilience.retry import STARTUP_RETRY, with_retry_async
from ingestion.common.metrics import MetricsSink, NoOpMetrics
from ingestion.schemas.entities import (
    Inventory,
    InventoryAdjustment,
    Order,
    Payment,
    ProductReview,
    User,
)
from ingestion.storage.models import (
    inventory,
    metadata,
    orders,
    payments,
    product_reviews,
    users,
)

logger = logging.getLogger(__name__)

RECENT_ORDERS_LIMIT = 5

_SUPPORTED_DIALECTS = ("postgresql", "sqlite")


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands datetimes back naive; everything is stored as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class EntityStore:
    """Relational store for ingested entities, backed by an async SQLAlchemy engine.

    The engine's pool is shared by every partition task.
    """

    def __init__(self, engine: AsyncEngine, metrics: MetricsSink | None = None):
        self.engine = engine
        self.metrics = metrics or NoOpMetrics()
        self.dialect = engine.dialect.name

        if self.dialect not in _SUPPORTED_DIALECTS:
            raise ValueError(
                f"Unsupported database dialect '{self.dialect}', "
                f"expected one of {list(_SUPPORTED_DIALECTS)}"
            )

        if self.dialect == "sqlite":
            event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    @classmethod
    def from_config(cls, config: IngestConfig, metrics: MetricsSink | None = None) -> "EntityStore":
        engine_kwargs: dict[str, Any] = {"echo": config.db_echo}
        if not config.database_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=config.db_pool_size,
                max_overflow=config.db_max_overflow,
                pool_timeout=config.db_pool_timeout,
                pool_recycle=config.db_pool_recycle,
                pool_pre_ping=True,
            )
        engine = create_async_engine(config.database_url, **engine_kwargs)
        logger.info(
            "Created database engine",
            extra={"database_url": config.redacted_database_url(), "dialect": engine.dialect.name},
        )
        return cls(engine, metrics=metrics)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @with_retry_async(config=STARTUP_RETRY)
    async def _ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def connect(self) -> None:
        """Verify the database is reachable.

        Raises:
            PersistenceError: Unreachable after startup retries.
        """
        try:
            await self._ping()
        except Exception as e:
            raise PersistenceError("Database unreachable", operation="connect", cause=e) from e
        logger.info("Database connection verified", extra={"dialect": self.dialect})

    async def create_schema(self) -> None:
        """Create all tables that don't exist yet (local and test use)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _insert(self, table: Table):
        if self.dialect == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    @asynccontextmanager
    async def _operation(self, operation: str, write: bool = True) -> AsyncIterator[AsyncConnection]:
        """Run one atomic unit, map driver errors, record latency."""
        start = time.perf_counter()
        try:
            if write:
                async with self.engine.begin() as conn:
                    yield conn
            else:
                async with self.engine.connect() as conn:
                    yield conn
        except IntegrityError as e:
            raise PersistenceError(
                f"{operation} violated a constraint: {e.orig}",
                operation=operation,
                cause=e,
                permanent=True,
            ) from e
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"{operation} failed: {e}", operation=operation, cause=e) from e
        finally:
            self.metrics.observe_db_latency(operation, time.perf_counter() - start)

    async def _upsert(self, operation: str, table: Table, key: str, values: dict[str, Any]) -> None:
        stmt = self._insert(table).values(**values)
        mutable = [col for col in values if col not in (key, "created_at")]
        stmt = stmt.on_conflict_do_update(
            index_elements=[key],
            set_={col: stmt.excluded[col] for col in mutable},
        )
        async with self._operation(operation) as conn:
            await conn.execute(stmt)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_user(self, user: User) -> None:
        await self._upsert(
            "upsert_user",
            users,
            "user_id",
            {
                "user_id": user.user_id,
                "name": user.name,
                "email": user.email,
                "created_at": user.created_at,
                "updated_at": user.updated_at,
            },
        )

    async def upsert_order(self, order: Order) -> None:
        await self._upsert(
            "upsert_order",
            orders,
            "order_id",
            {
                "order_id": order.order_id,
                "user_id": order.user_id,
                "total": order.total,
                "status": order.status,
                "created_at": order.created_at,
                "updated_at": order.updated_at,
            },
        )

    async def upsert_payment(self, payment: Payment) -> None:
        await self._upsert(
            "upsert_payment",
            payments,
            "order_id",
            {
                "order_id": payment.order_id,
                "status": payment.status,
                "amount": payment.amount,
                "settled_at": payment.settled_at,
                "updated_at": payment.updated_at,
            },
        )

    async def upsert_product_review(self, review: ProductReview) -> None:
        await self._upsert(
            "upsert_product_review",
            product_reviews,
            "review_id",
            {
                "review_id": review.review_id,
                "product_name": review.product_name,
                "username": review.username,
                "rating": review.rating,
                "remarks": review.remarks,
                "created_at": review.created_at,
                "updated_at": review.updated_at,
            },
        )

    async def adjust_inventory(self, adjustment: InventoryAdjustment) -> None:
        """Apply a delta to the SKU's quantity, creating the row at 0 + delta."""
        stmt = self._insert(inventory).values(
            sku=adjustment.sku,
            quantity=adjustment.delta,
            last_adjusted_at=adjustment.adjusted_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["sku"],
            set_={
                "quantity": inventory.c.quantity + stmt.excluded.quantity,
                "last_adjusted_at": stmt.excluded.last_adjusted_at,
            },
        )
        async with self._operation("adjust_inventory") as conn:
            await conn.execute(stmt)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> User | None:
        async with self._operation("get_user", write=False) as conn:
            row = (await conn.execute(select(users).where(users.c.user_id == user_id))).first()
        if row is None:
            return None
        return User(
            user_id=row.user_id,
            name=row.name,
            email=row.email,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    @staticmethod
    def _order_from_row(row: Any) -> Order:
        return Order(
            order_id=row.order_id,
            user_id=row.user_id,
            total=row.total,
            status=row.status,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    async def get_order(self, order_id: str) -> Order | None:
        async with self._operation("get_order", write=False) as conn:
            row = (await conn.execute(select(orders).where(orders.c.order_id == order_id))).first()
        return self._order_from_row(row) if row is not None else None

    async def get_user_recent_orders(self, user_id: str, limit: int = RECENT_ORDERS_LIMIT) -> list[Order]:
        """Newest first by created_at."""
        query = (
            select(orders)
            .where(orders.c.user_id == user_id)
            .order_by(orders.c.created_at.desc())
            .limit(limit)
        )
        async with self._operation("get_user_recent_orders", write=False) as conn:
            rows = (await conn.execute(query)).all()
        return [self._order_from_row(row) for row in rows]

    async def get_payment(self, order_id: str) -> Payment | None:
        async with self._operation("get_payment", write=False) as conn:
            row = (await conn.execute(select(payments).where(payments.c.order_id == order_id))).first()
        if row is None:
            return None
        return Payment(
            order_id=row.order_id,
            status=row.status,
            amount=row.amount,
            settled_at=_as_utc(row.settled_at),
            updated_at=_as_utc(row.updated_at),
        )

    async def get_inventory(self, sku: str) -> Inventory | None:
        async with self._operation("get_inventory", write=False) as conn:
            row = (await conn.execute(select(inventory).where(inventory.c.sku == sku))).first()
        if row is None:
            return None
        return Inventory(
            sku=row.sku,
            quantity=row.quantity,
            last_adjusted_at=_as_utc(row.last_adjusted_at),
        )

    @staticmethod
    def _review_from_row(row: Any) -> ProductReview:
        return ProductReview(
            review_id=row.review_id,
            product_name=row.product_name,
            username=row.username,
            rating=row.rating,
            remarks=row.remarks or "",
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    async def get_product_review(self, review_id: str) -> ProductReview | None:
        query = select(product_reviews).where(product_reviews.c.review_id == review_id)
        async with self._operation("get_product_review", write=False) as conn:
            row = (await conn.execute(query)).first()
        return self._review_from_row(row) if row is not None else None

    async def get_product_reviews_by_product(self, product_name: str) -> list[ProductReview]:
        """Newest first by created_at."""
        query = (
            select(product_reviews)
            .where(product_reviews.c.product_name == product_name)
            .order_by(product_reviews.c.created_at.desc())
        )
        async with self._operation("get_product_reviews_by_product", write=False) as conn:
            rows = (await conn.execute(query)).all()
        return [self._review_from_row(row) for row in rows]


__all__ = ["EntityStore", "RECENT_ORDERS_LIMIT"]
