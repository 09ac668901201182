import logging
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

metadata = MetaData()


def new_id() -> str:
    return str(uuid4())


users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

financial_categories = Table(
    "financial_categories",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(100), nullable=False),
    Column("type", String(20), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "name", "type", name="uq_financial_categories_user_name_type"),
)

shopping_categories = Table(
    "shopping_categories",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(100), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

products = Table(
    "products",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("category_id", String(36), ForeignKey("shopping_categories.id"), nullable=False),
    Column("name", String(200), nullable=False),
    Column("unit", String(5), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

shopping_lists = Table(
    "shopping_lists",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("name", String(200), nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("total_amount", Numeric(12, 2)),
    Column("completed_at", Date),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

shopping_list_items = Table(
    "shopping_list_items",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column(
        "shopping_list_id",
        String(36),
        ForeignKey("shopping_lists.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("product_id", String(36), ForeignKey("products.id"), nullable=False),
    Column("quantity", Numeric(10, 3), nullable=False),
    Column("price", Numeric(12, 2), nullable=False),
    Column("checked", Boolean, nullable=False, default=False),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("category_id", String(36), ForeignKey("financial_categories.id"), nullable=False),
    Column("description", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("type", String(20), nullable=False),
    Column("transaction_date", Date, nullable=False),
    Column("payment_method", String(50)),
    Column("is_installment", Boolean, nullable=False, default=False),
    Column("is_recurrent", Boolean, nullable=False, default=False),
    Column("total_installments", Integer, nullable=False, default=1),
    Column("installment_number", Integer, nullable=False, default=1),
    Column("start_date", Date),
    Column("recurrence_start_date", Date),
    Column("installments", Text),
    Column(
        "shopping_list_id",
        String(36),
        ForeignKey("shopping_lists.id", ondelete="SET NULL"),
    ),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
)


def create_database_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)
    logger.info("Database schema ready on %s", engine.url.render_as_string(hide_password=True))
