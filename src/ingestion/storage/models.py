"""
Relational schema for ingested entities (SQLAlchemy Core).

Tables:
    - users
    - orders            (FK user_id -> users.user_id)
    - payments          (keyed by order_id, no FK)
    - inventory
    - product_reviews   (CHECK rating BETWEEN 1 AND 5)
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)

metadata = MetaData()

# DECIMAL(18,2)
MONEY = Numeric(18, 2, asdecimal=True)

users = Table(
    "users",
    metadata,
    Column("user_id", String(100), primary_key=True),
    Column("name", String(255)),
    Column("email", String(255)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

orders = Table(
    "orders",
    metadata,
    Column("order_id", String(100), primary_key=True),
    Column("user_id", String(100), ForeignKey("users.user_id", name="fk_orders_users")),
    Column("total", MONEY),
    Column("status", String(50)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    Index("ix_orders_user_id", "user_id"),
    Index("ix_orders_created_at", "created_at"),
)

payments = Table(
    "payments",
    metadata,
    Column("order_id", String(100), primary_key=True),
    Column("status", String(50)),
    Column("amount", MONEY),
    Column("settled_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

inventory = Table(
    "inventory",
    metadata,
    Column("sku", String(100), primary_key=True),
    Column("quantity", Integer, nullable=False, default=0),
    Column("last_adjusted_at", DateTime(timezone=True)),
)

product_reviews = Table(
    "product_reviews",
    metadata,
    Column("review_id", String(100), primary_key=True),
    Column("product_name", String(255), nullable=False),
    Column("username", String(255), nullable=False),
    Column("rating", Integer, nullable=False),
    Column("remarks", Text),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    CheckConstraint("rating >= 1 AND rating <= 5", name="ck_product_reviews_rating"),
    Index("ix_product_reviews_product_name", "product_name"),
    Index("ix_product_reviews_username", "username"),
    Index("ix_product_reviews_rating", "rating"),
)


__all__ = [
    "metadata",
    "users",
    "orders",
    "payments",
    "inventory",
    "product_reviews",
]
