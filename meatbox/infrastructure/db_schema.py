from sqlalchemy import Table, Column, String, Float, Boolean, DateTime, JSON, MetaData
from sqlalchemy.sql import func

metadata = MetaData()


# Статусы хранятся строковыми кодами (BoxStatus/OrderStatus.value);
# устаревшие значения нормализуются при чтении
boxes_tbl = Table(
    "boxes",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("brand", String, nullable=False, default=""),
    Column("price_per_kg", Float, nullable=False),
    Column("cost_per_kg", Float, nullable=False, default=0.0),
    Column("total_kg", Float, nullable=False),
    Column("remaining_kg", Float, nullable=False),
    Column("min_kg_per_person", Float, nullable=False, default=0.0),
    Column("payment_type", String(16), nullable=False),
    Column("status", String(64), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    Column("deleted_at", DateTime(timezone=True), nullable=True)
)


purchases_tbl = Table(
    "purchases",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_number", String, nullable=False, index=True),
    Column("box_id", String, nullable=False, index=True),
    Column("user_id", String, nullable=False, index=True),
    Column("kg_purchased", Float, nullable=False),
    Column("total_amount", Float, nullable=False),
    Column("status", String(64), nullable=False),
    Column("payment_status", String(16), nullable=False, default="pending"),
    Column("payment_link", String, nullable=True),
    Column("payment_expires_at", DateTime(timezone=True), nullable=True),
    Column("dispatch_steps", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


# Индекс только по entity_id: фильтрация по типу и сортировка в коде
status_logs_tbl = Table(
    "status_logs",
    metadata,
    Column("id", String, primary_key=True),
    Column("entity_type", String(16), nullable=False),
    Column("entity_id", String, nullable=False, index=True),
    Column("previous_status", String(64), nullable=False),
    Column("next_status", String(64), nullable=False),
    Column("forced", Boolean, nullable=False, default=False),
    Column("reason", String, nullable=True),
    Column("performed_by", String, nullable=False),
    Column("performed_at", DateTime(timezone=True), nullable=False)
)
