import logging
from datetime import date, datetime
from decimal import Decimal

import bcrypt
from fastapi import Body, Depends, FastAPI, HTTPException, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend import config
from backend.database import (
    create_database_engine,
    financial_categories,
    init_db,
    products,
    shopping_categories,
    shopping_list_items,
    shopping_lists,
    transactions,
    users,
)
from backend.ledger_records import TRANSACTION_TYPES, encode_installments, parse_installments
from backend.ledger_service import LedgerService
from backend.ledger_store import SqlTransactionStore

logger = logging.getLogger(__name__)

app = FastAPI(title="FinControl API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = create_database_engine(config.DATABASE_URL)

DEFAULT_FINANCIAL_CATEGORIES = [
    ("Salary", "revenue"),
    ("Freelance", "revenue"),
    ("Investments", "revenue"),
    ("Sales", "revenue"),
    ("Groceries", "expense"),
    ("Housing", "expense"),
    ("Transport", "expense"),
    ("Health", "expense"),
    ("Education", "expense"),
    ("Leisure", "expense"),
]
PRODUCT_UNITS = {"un", "kg", "l", "dz", "m", "cx"}
SHOPPING_LIST_STATUSES = {"pending", "completed"}
SHOPPING_DESCRIPTION_PREFIX = "Shopping: "


@app.on_event("startup")
def on_startup() -> None:
    config.setup_logging()
    init_db(engine)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Database error."})


def get_engine() -> Engine:
    return engine


def get_ledger_service(db: Engine = Depends(get_engine)) -> LedgerService:
    return LedgerService(SqlTransactionStore(db))


class CredentialsPayload(BaseModel):
    email: str
    password: str

    @classmethod
    def validate_payload(cls, payload: "CredentialsPayload") -> "CredentialsPayload":
        payload.email = payload.email.strip().lower()
        if not payload.email or not payload.password:
            raise ValueError("Email and password required.")
        if "@" not in payload.email:
            raise ValueError("Invalid email.")
        return payload


class UserResponse(BaseModel):
    id: str
    email: str
    created_at: datetime | None = None


def validate_transaction_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in TRANSACTION_TYPES:
        raise ValueError("Invalid transaction type.")
    return normalized


class FinancialCategoryPayload(BaseModel):
    name: str
    type: str

    @classmethod
    def validate_payload(
        cls, payload: "FinancialCategoryPayload"
    ) -> "FinancialCategoryPayload":
        payload.name = payload.name.strip()
        if not payload.name or len(payload.name) > 100:
            raise ValueError("Category name must have between 1 and 100 characters.")
        payload.type = validate_transaction_type(payload.type)
        return payload


class FinancialCategoryResponse(BaseModel):
    id: str
    user_id: str
    name: str
    type: str
    created_at: datetime | None = None


class InstallmentsPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_installments: int | None = None
    paid_installments: int | None = None
    start_date: date | None = None


class TransactionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str
    amount: Decimal
    type: str
    category_id: str
    transaction_date: date
    payment_method: str | None = None
    is_installment: bool = False
    is_recurrent: bool = False
    recurrence_start_date: date | None = None
    installments: InstallmentsPayload | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.description = payload.description.strip()
        if not payload.description:
            raise ValueError("Description required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.type = validate_transaction_type(payload.type)
        payload.payment_method = payload.payment_method.strip() if payload.payment_method else None
        if payload.is_installment and payload.is_recurrent:
            raise ValueError("A transaction cannot be both an installment plan and recurring.")

        installments = payload.installments or InstallmentsPayload()
        if payload.is_installment:
            payload.recurrence_start_date = None
            total = installments.total_installments
            if total is None or not 2 <= total <= config.MAX_INSTALLMENTS:
                raise ValueError(
                    f"Installment plans need between 2 and {config.MAX_INSTALLMENTS} installments."
                )
            if installments.start_date is None:
                installments.start_date = payload.transaction_date
            if installments.paid_installments is None:
                installments.paid_installments = 0
            if not 0 <= installments.paid_installments <= total:
                raise ValueError("Paid installments must be between 0 and the total.")
        elif payload.is_recurrent:
            if payload.recurrence_start_date is None:
                raise ValueError("Recurring transactions require a recurrence_start_date.")
            installments = InstallmentsPayload(
                total_installments=1,
                paid_installments=1,
                start_date=payload.recurrence_start_date,
            )
        else:
            payload.recurrence_start_date = None
            installments = InstallmentsPayload(
                total_installments=1,
                paid_installments=1,
                start_date=payload.transaction_date,
            )
        payload.installments = installments
        return payload


class TransactionResponse(BaseModel):
    id: str
    user_id: str
    description: str
    amount: Decimal
    type: str
    category_id: str
    transaction_date: date
    payment_method: str | None = None
    is_installment: bool
    is_recurrent: bool
    total_installments: int
    paid_installments: int
    start_date: date | None = None
    recurrence_start_date: date | None = None
    shopping_list_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ShoppingCategoryPayload(BaseModel):
    name: str

    @classmethod
    def validate_payload(
        cls, payload: "ShoppingCategoryPayload"
    ) -> "ShoppingCategoryPayload":
        payload.name = payload.name.strip()
        if not payload.name or len(payload.name) > 100:
            raise ValueError("Category name must have between 1 and 100 characters.")
        return payload


class ShoppingCategoryResponse(BaseModel):
    id: str
    user_id: str
    name: str
    created_at: datetime | None = None


class ProductPayload(BaseModel):
    name: str
    unit: str
    category_id: str

    @classmethod
    def validate_payload(cls, payload: "ProductPayload") -> "ProductPayload":
        payload.name = payload.name.strip()
        if not payload.name or len(payload.name) > 200:
            raise ValueError("Product name must have between 1 and 200 characters.")
        payload.unit = payload.unit.strip().lower()
        if payload.unit not in PRODUCT_UNITS:
            raise ValueError("Invalid unit.")
        return payload


class ProductResponse(BaseModel):
    id: str
    user_id: str
    category_id: str
    name: str
    unit: str
    created_at: datetime | None = None


class ShoppingListPayload(BaseModel):
    name: str

    @classmethod
    def validate_payload(cls, payload: "ShoppingListPayload") -> "ShoppingListPayload":
        payload.name = payload.name.strip()
        if not payload.name or len(payload.name) > 200:
            raise ValueError("List name must have between 1 and 200 characters.")
        return payload


class ShoppingItemPayload(BaseModel):
    product_id: str
    quantity: Decimal
    price: Decimal = Decimal("0")
    checked: bool = False

    @classmethod
    def validate_payload(cls, payload: "ShoppingItemPayload") -> "ShoppingItemPayload":
        if payload.quantity <= 0:
            raise ValueError("Quantity must be greater than zero.")
        if payload.price < 0:
            raise ValueError("Price cannot be negative.")
        return payload


class ShoppingItemUpdatePayload(BaseModel):
    quantity: Decimal | None = None
    price: Decimal | None = None
    checked: bool | None = None

    @classmethod
    def validate_payload(
        cls, payload: "ShoppingItemUpdatePayload"
    ) -> "ShoppingItemUpdatePayload":
        if payload.quantity is not None and payload.quantity <= 0:
            raise ValueError("Quantity must be greater than zero.")
        if payload.price is not None and payload.price < 0:
            raise ValueError("Price cannot be negative.")
        return payload


class CompletedItemPayload(ShoppingItemUpdatePayload):
    id: str


class ShoppingListCompletePayload(BaseModel):
    items: list[CompletedItemPayload] | None = None


class ShoppingListSyncPayload(BaseModel):
    name: str | None = None
    status: str | None = None
    items: list[ShoppingItemPayload] | None = None

    @classmethod
    def validate_payload(
        cls, payload: "ShoppingListSyncPayload"
    ) -> "ShoppingListSyncPayload":
        if payload.name is not None:
            payload.name = payload.name.strip()
            if not payload.name:
                raise ValueError("List name required.")
        if payload.status is not None:
            payload.status = payload.status.strip().lower()
            if payload.status not in SHOPPING_LIST_STATUSES:
                raise ValueError("Invalid list status.")
        if payload.items is not None:
            payload.items = [ShoppingItemPayload.validate_payload(item) for item in payload.items]
        return payload


class ShoppingItemResponse(BaseModel):
    id: str
    shopping_list_id: str
    product_id: str
    product_name: str | None = None
    category_name: str | None = None
    quantity: Decimal
    price: Decimal
    checked: bool


class ShoppingListResponse(BaseModel):
    id: str
    user_id: str
    name: str
    status: str
    total_amount: Decimal | None = None
    completed_at: date | None = None
    created_at: datetime | None = None


class ShoppingListDetailResponse(ShoppingListResponse):
    items: list[ShoppingItemResponse]


class ShoppingListCompleteResponse(BaseModel):
    list: ShoppingListDetailResponse
    transaction: TransactionResponse


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(db: Engine, x_user_id: str | None) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    user_id = x_user_id.strip()
    with db.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def ensure_default_categories(conn, user_id: str) -> None:
    existing = conn.execute(
        select(financial_categories.c.id)
        .where(financial_categories.c.user_id == user_id)
        .limit(1)
    ).first()
    if existing:
        return
    conn.execute(
        insert(financial_categories),
        [
            {"user_id": user_id, "name": name, "type": category_type}
            for name, category_type in DEFAULT_FINANCIAL_CATEGORIES
        ],
    )


def financial_category_exists(conn, user_id: str, category_id: str) -> bool:
    return bool(
        conn.execute(
            select(financial_categories.c.id).where(
                financial_categories.c.id == category_id,
                financial_categories.c.user_id == user_id,
            )
        ).first()
    )


def transaction_values(payload: TransactionPayload) -> dict:
    installments = payload.installments
    if payload.is_installment:
        start_date = installments.start_date
        total_installments = installments.total_installments
    elif payload.is_recurrent:
        start_date = payload.recurrence_start_date
        total_installments = 1
    else:
        start_date = payload.transaction_date
        total_installments = 1
    return {
        "description": payload.description,
        "amount": payload.amount,
        "type": payload.type,
        "category_id": payload.category_id,
        "transaction_date": payload.transaction_date,
        "payment_method": payload.payment_method,
        "is_installment": payload.is_installment,
        "is_recurrent": payload.is_recurrent,
        "total_installments": total_installments,
        "installment_number": 1,
        "start_date": start_date,
        "recurrence_start_date": payload.recurrence_start_date,
        "installments": encode_installments(
            total_installments, installments.paid_installments, start_date
        ),
    }


def transaction_response(row) -> TransactionResponse:
    installments = parse_installments(row["installments"]) or {}
    paid_installments = installments.get("paidInstallments")
    if paid_installments is None:
        paid_installments = max(0, (row["installment_number"] or 1) - 1)
    return TransactionResponse(
        id=row["id"],
        user_id=row["user_id"],
        description=row["description"],
        amount=row["amount"],
        type=row["type"],
        category_id=row["category_id"],
        transaction_date=row["transaction_date"],
        payment_method=row["payment_method"],
        is_installment=bool(row["is_installment"]),
        is_recurrent=bool(row["is_recurrent"]),
        total_installments=row["total_installments"],
        paid_installments=paid_installments,
        start_date=row["start_date"],
        recurrence_start_date=row["recurrence_start_date"],
        shopping_list_id=row["shopping_list_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def shopping_list_response(row) -> ShoppingListResponse:
    return ShoppingListResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        status=row["status"],
        total_amount=row["total_amount"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
    )


def fetch_shopping_list(conn, user_id: str, list_id: str):
    row = conn.execute(
        select(shopping_lists).where(
            shopping_lists.c.id == list_id, shopping_lists.c.user_id == user_id
        )
    ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Shopping list not found.")
    return row


def fetch_shopping_items(conn, list_id: str) -> list[ShoppingItemResponse]:
    join_stmt = shopping_list_items.join(
        products, products.c.id == shopping_list_items.c.product_id
    ).outerjoin(
        shopping_categories, shopping_categories.c.id == products.c.category_id
    )
    rows = conn.execute(
        select(
            shopping_list_items,
            products.c.name.label("product_name"),
            shopping_categories.c.name.label("category_name"),
        )
        .select_from(join_stmt)
        .where(shopping_list_items.c.shopping_list_id == list_id)
        .order_by(products.c.name.asc(), shopping_list_items.c.id.asc())
    ).mappings().all()
    return [
        ShoppingItemResponse(
            id=row["id"],
            shopping_list_id=row["shopping_list_id"],
            product_id=row["product_id"],
            product_name=row["product_name"],
            category_name=row["category_name"],
            quantity=row["quantity"],
            price=row["price"],
            checked=bool(row["checked"]),
        )
        for row in rows
    ]


def shopping_list_detail(conn, user_id: str, list_id: str) -> ShoppingListDetailResponse:
    row = fetch_shopping_list(conn, user_id, list_id)
    base = shopping_list_response(row)
    return ShoppingListDetailResponse(
        **base.model_dump(),
        items=fetch_shopping_items(conn, list_id),
    )


def insert_shopping_items(
    conn, user_id: str, list_id: str, items: list[ShoppingItemPayload]
) -> list[str]:
    product_ids = {item.product_id for item in items}
    owned = conn.execute(
        select(products.c.id).where(
            products.c.user_id == user_id, products.c.id.in_(list(product_ids))
        )
    ).scalars().all()
    if len(owned) != len(product_ids):
        raise HTTPException(status_code=404, detail="Product not found.")
    item_ids: list[str] = []
    for item in items:
        item_id = conn.execute(
            insert(shopping_list_items)
            .values(
                shopping_list_id=list_id,
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                checked=item.checked,
            )
            .returning(shopping_list_items.c.id)
        ).scalar_one()
        item_ids.append(item_id)
    return item_ids


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/register", response_model=UserResponse, status_code=201)
def register(payload: CredentialsPayload, db: Engine = Depends(get_engine)) -> UserResponse:
    try:
        payload = CredentialsPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if len(payload.password) < 6:
        raise HTTPException(status_code=400, detail="Password must have at least 6 characters.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=payload.email, hashed_password=hashed_password)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with db.begin() as conn:
            row = conn.execute(stmt).mappings().first()
            if row:
                ensure_default_categories(conn, row["id"])
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("Registered user %s", row["id"])
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload, db: Engine = Depends(get_engine)) -> UserResponse:
    email = payload.email.strip().lower()
    with db.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/financial/categories", response_model=list[FinancialCategoryResponse])
def list_financial_categories(
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[FinancialCategoryResponse]:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        rows = conn.execute(
            select(financial_categories)
            .where(financial_categories.c.user_id == user_id)
            .order_by(financial_categories.c.type.asc(), financial_categories.c.name.asc())
        ).mappings().all()
    return [
        FinancialCategoryResponse(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            type=row["type"],
            created_at=row["created_at"],
        )
        for row in rows
    ]


@app.post(
    "/financial/categories", response_model=FinancialCategoryResponse, status_code=201
)
def create_financial_category(
    payload: FinancialCategoryPayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> FinancialCategoryResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = FinancialCategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(financial_categories)
        .values(user_id=user_id, name=payload.name, type=payload.type)
        .returning(
            financial_categories.c.id,
            financial_categories.c.user_id,
            financial_categories.c.name,
            financial_categories.c.type,
            financial_categories.c.created_at,
        )
    )
    try:
        with db.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Category already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create category.")
    return FinancialCategoryResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=row["type"],
        created_at=row["created_at"],
    )


@app.get("/financial/transactions", response_model=list[TransactionResponse])
def list_transactions(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    category_id: str | None = Query(None),
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[TransactionResponse]:
    user_id = get_user_id(db, x_user_id)
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="Start date must be on or before end date.")
    conditions = [transactions.c.user_id == user_id]
    if start_date is not None:
        conditions.append(transactions.c.transaction_date >= start_date)
    if end_date is not None:
        conditions.append(transactions.c.transaction_date <= end_date)
    if category_id is not None:
        conditions.append(transactions.c.category_id == category_id)
    with db.begin() as conn:
        rows = conn.execute(
            select(transactions)
            .where(*conditions)
            .order_by(transactions.c.transaction_date.desc(), transactions.c.created_at.desc())
        ).mappings().all()
    return [transaction_response(row) for row in rows]


@app.post("/financial/transactions", response_model=TransactionResponse, status_code=201)
def create_transaction(
    payload: TransactionPayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with db.begin() as conn:
        if not financial_category_exists(conn, user_id, payload.category_id):
            raise HTTPException(status_code=404, detail="Category not found.")
        row = conn.execute(
            insert(transactions)
            .values(user_id=user_id, **transaction_values(payload))
            .returning(*transactions.c)
        ).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create transaction.")
    return transaction_response(row)


@app.put("/financial/transactions/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: str,
    payload: TransactionPayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with db.begin() as conn:
        if not financial_category_exists(conn, user_id, payload.category_id):
            raise HTTPException(status_code=404, detail="Category not found.")
        row = conn.execute(
            update(transactions)
            .where(transactions.c.id == transaction_id, transactions.c.user_id == user_id)
            .values(**transaction_values(payload))
            .returning(*transactions.c)
        ).mappings().first()

    if not row:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return transaction_response(row)


@app.delete("/financial/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        result = conn.execute(
            delete(transactions).where(
                transactions.c.id == transaction_id, transactions.c.user_id == user_id
            )
        )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return {"status": "deleted"}


@app.get("/financial/summary/monthly-view")
def monthly_view(
    year: int = Query(...),
    month: int = Query(...),
    db: Engine = Depends(get_engine),
    ledger: LedgerService = Depends(get_ledger_service),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    if not 1 <= month <= 12 or not 1 <= year <= 9999:
        raise HTTPException(status_code=400, detail="Invalid year or month.")
    user_id = get_user_id(db, x_user_id)
    return ledger.monthly_view(user_id, year, month).to_dict()


@app.get("/financial/summary/installment-plans")
def installment_plans(
    db: Engine = Depends(get_engine),
    ledger: LedgerService = Depends(get_ledger_service),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(db, x_user_id)
    plans = ledger.installment_plans(user_id)
    return {"installmentPlans": [plan.to_dict() for plan in plans]}


@app.get("/shopping/categories", response_model=list[ShoppingCategoryResponse])
def list_shopping_categories(
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ShoppingCategoryResponse]:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        rows = conn.execute(
            select(shopping_categories)
            .where(shopping_categories.c.user_id == user_id)
            .order_by(shopping_categories.c.name.asc())
        ).mappings().all()
    return [
        ShoppingCategoryResponse(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            created_at=row["created_at"],
        )
        for row in rows
    ]


@app.post("/shopping/categories", response_model=ShoppingCategoryResponse, status_code=201)
def create_shopping_category(
    payload: ShoppingCategoryPayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ShoppingCategoryResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = ShoppingCategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with db.begin() as conn:
        row = conn.execute(
            insert(shopping_categories)
            .values(user_id=user_id, name=payload.name)
            .returning(*shopping_categories.c)
        ).mappings().first()
    return ShoppingCategoryResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        created_at=row["created_at"],
    )


@app.put("/shopping/categories/{category_id}", response_model=ShoppingCategoryResponse)
def update_shopping_category(
    category_id: str,
    payload: ShoppingCategoryPayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ShoppingCategoryResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = ShoppingCategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with db.begin() as conn:
        row = conn.execute(
            update(shopping_categories)
            .where(
                shopping_categories.c.id == category_id,
                shopping_categories.c.user_id == user_id,
            )
            .values(name=payload.name)
            .returning(*shopping_categories.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Category not found.")
    return ShoppingCategoryResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        created_at=row["created_at"],
    )


@app.delete("/shopping/categories/{category_id}")
def delete_shopping_category(
    category_id: str,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        in_use = conn.execute(
            select(products.c.id).where(products.c.category_id == category_id).limit(1)
        ).first()
        if in_use:
            raise HTTPException(status_code=409, detail="Category is used by products.")
        result = conn.execute(
            delete(shopping_categories).where(
                shopping_categories.c.id == category_id,
                shopping_categories.c.user_id == user_id,
            )
        )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Category not found.")
    return {"status": "deleted"}


@app.get("/shopping/products", response_model=list[ProductResponse])
def list_products(
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ProductResponse]:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        rows = conn.execute(
            select(products)
            .where(products.c.user_id == user_id)
            .order_by(products.c.name.asc())
        ).mappings().all()
    return [ProductResponse(**row) for row in rows]


@app.post("/shopping/products", response_model=ProductResponse, status_code=201)
def create_product(
    payload: ProductPayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ProductResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = ProductPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with db.begin() as conn:
        category_exists = conn.execute(
            select(shopping_categories.c.id).where(
                shopping_categories.c.id == payload.category_id,
                shopping_categories.c.user_id == user_id,
            )
        ).first()
        if not category_exists:
            raise HTTPException(status_code=404, detail="Category not found.")
        row = conn.execute(
            insert(products)
            .values(
                user_id=user_id,
                category_id=payload.category_id,
                name=payload.name,
                unit=payload.unit,
            )
            .returning(*products.c)
        ).mappings().first()
    return ProductResponse(**row)


@app.put("/shopping/products/{product_id}", response_model=ProductResponse)
def update_product(
    product_id: str,
    payload: ProductPayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ProductResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = ProductPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with db.begin() as conn:
        category_exists = conn.execute(
            select(shopping_categories.c.id).where(
                shopping_categories.c.id == payload.category_id,
                shopping_categories.c.user_id == user_id,
            )
        ).first()
        if not category_exists:
            raise HTTPException(status_code=404, detail="Category not found.")
        row = conn.execute(
            update(products)
            .where(products.c.id == product_id, products.c.user_id == user_id)
            .values(name=payload.name, unit=payload.unit, category_id=payload.category_id)
            .returning(*products.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Product not found.")
    return ProductResponse(**row)


@app.delete("/shopping/products/{product_id}")
def delete_product(
    product_id: str,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        in_use = conn.execute(
            select(shopping_list_items.c.id)
            .where(shopping_list_items.c.product_id == product_id)
            .limit(1)
        ).first()
        if in_use:
            raise HTTPException(status_code=409, detail="Product is used by shopping lists.")
        result = conn.execute(
            delete(products).where(products.c.id == product_id, products.c.user_id == user_id)
        )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Product not found.")
    return {"status": "deleted"}


@app.get("/shopping/lists", response_model=list[ShoppingListResponse])
def list_shopping_lists(
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ShoppingListResponse]:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        rows = conn.execute(
            select(shopping_lists)
            .where(shopping_lists.c.user_id == user_id)
            .order_by(shopping_lists.c.created_at.desc(), shopping_lists.c.name.asc())
        ).mappings().all()
    return [shopping_list_response(row) for row in rows]


@app.post("/shopping/lists", response_model=ShoppingListResponse, status_code=201)
def create_shopping_list(
    payload: ShoppingListPayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ShoppingListResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = ShoppingListPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with db.begin() as conn:
        row = conn.execute(
            insert(shopping_lists)
            .values(user_id=user_id, name=payload.name, status="pending")
            .returning(*shopping_lists.c)
        ).mappings().first()
    return shopping_list_response(row)


@app.get("/shopping/lists/{list_id}", response_model=ShoppingListDetailResponse)
def get_shopping_list(
    list_id: str,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ShoppingListDetailResponse:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        return shopping_list_detail(conn, user_id, list_id)


@app.put("/shopping/lists/{list_id}", response_model=ShoppingListDetailResponse)
def sync_shopping_list(
    list_id: str,
    payload: ShoppingListSyncPayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ShoppingListDetailResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = ShoppingListSyncPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with db.begin() as conn:
        fetch_shopping_list(conn, user_id, list_id)
        changes = {}
        if payload.name is not None:
            changes["name"] = payload.name
        if payload.status is not None:
            changes["status"] = payload.status
        if changes:
            conn.execute(
                update(shopping_lists).where(shopping_lists.c.id == list_id).values(**changes)
            )
        if payload.items is not None:
            conn.execute(
                delete(shopping_list_items).where(
                    shopping_list_items.c.shopping_list_id == list_id
                )
            )
            if payload.items:
                insert_shopping_items(conn, user_id, list_id, payload.items)
        return shopping_list_detail(conn, user_id, list_id)


@app.delete("/shopping/lists/{list_id}")
def delete_shopping_list(
    list_id: str,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        fetch_shopping_list(conn, user_id, list_id)
        conn.execute(
            delete(transactions).where(
                transactions.c.shopping_list_id == list_id,
                transactions.c.user_id == user_id,
            )
        )
        conn.execute(
            delete(shopping_list_items).where(shopping_list_items.c.shopping_list_id == list_id)
        )
        conn.execute(delete(shopping_lists).where(shopping_lists.c.id == list_id))
    return {"status": "deleted"}


@app.post(
    "/shopping/lists/{list_id}/items",
    response_model=list[ShoppingItemResponse],
    status_code=201,
)
def add_shopping_items(
    list_id: str,
    payload: ShoppingItemPayload | list[ShoppingItemPayload],
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ShoppingItemResponse]:
    user_id = get_user_id(db, x_user_id)
    items = payload if isinstance(payload, list) else [payload]
    if not items:
        raise HTTPException(status_code=400, detail="No items to add.")
    try:
        items = [ShoppingItemPayload.validate_payload(item) for item in items]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with db.begin() as conn:
        fetch_shopping_list(conn, user_id, list_id)
        item_ids = set(insert_shopping_items(conn, user_id, list_id, items))
        return [item for item in fetch_shopping_items(conn, list_id) if item.id in item_ids]


@app.put(
    "/shopping/lists/{list_id}/items/{item_id}", response_model=ShoppingItemResponse
)
def update_shopping_item(
    list_id: str,
    item_id: str,
    payload: ShoppingItemUpdatePayload,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ShoppingItemResponse:
    user_id = get_user_id(db, x_user_id)
    try:
        payload = ShoppingItemUpdatePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update.")

    with db.begin() as conn:
        fetch_shopping_list(conn, user_id, list_id)
        result = conn.execute(
            update(shopping_list_items)
            .where(
                shopping_list_items.c.id == item_id,
                shopping_list_items.c.shopping_list_id == list_id,
            )
            .values(**changes)
        )
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Item not found.")
        for item in fetch_shopping_items(conn, list_id):
            if item.id == item_id:
                return item
    raise HTTPException(status_code=404, detail="Item not found.")


@app.delete("/shopping/lists/{list_id}/items/{item_id}")
def delete_shopping_item(
    list_id: str,
    item_id: str,
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(db, x_user_id)
    with db.begin() as conn:
        fetch_shopping_list(conn, user_id, list_id)
        result = conn.execute(
            delete(shopping_list_items).where(
                shopping_list_items.c.id == item_id,
                shopping_list_items.c.shopping_list_id == list_id,
            )
        )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Item not found.")
    return {"status": "deleted"}


@app.post(
    "/shopping/lists/{list_id}/complete", response_model=ShoppingListCompleteResponse
)
def complete_shopping_list(
    list_id: str,
    payload: ShoppingListCompletePayload | None = Body(None),
    db: Engine = Depends(get_engine),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ShoppingListCompleteResponse:
    user_id = get_user_id(db, x_user_id)
    updates = payload.items if payload and payload.items else []
    try:
        updates = [ShoppingItemUpdatePayload.validate_payload(item) for item in updates]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    completed_at = date.today()
    with db.begin() as conn:
        list_row = fetch_shopping_list(conn, user_id, list_id)
        if list_row["status"] == "completed":
            raise HTTPException(status_code=409, detail="Shopping list already completed.")

        for item in updates:
            changes = item.model_dump(exclude_none=True, exclude={"id"})
            if changes:
                conn.execute(
                    update(shopping_list_items)
                    .where(
                        shopping_list_items.c.id == item.id,
                        shopping_list_items.c.shopping_list_id == list_id,
                    )
                    .values(**changes)
                )

        item_rows = conn.execute(
            select(shopping_list_items.c.quantity, shopping_list_items.c.price).where(
                shopping_list_items.c.shopping_list_id == list_id
            )
        ).all()
        total_amount = sum(
            (Decimal(str(quantity)) * Decimal(str(price)) for quantity, price in item_rows),
            Decimal("0"),
        ).quantize(Decimal("0.01"))
        if total_amount <= 0:
            raise HTTPException(status_code=400, detail="Shopping list has no priced items.")

        category_id = conn.execute(
            select(financial_categories.c.id).where(
                financial_categories.c.user_id == user_id,
                financial_categories.c.name == config.SHOPPING_EXPENSE_CATEGORY,
                financial_categories.c.type == "expense",
            )
        ).scalar_one_or_none()
        if category_id is None:
            raise HTTPException(
                status_code=404,
                detail=f"Expense category '{config.SHOPPING_EXPENSE_CATEGORY}' not found.",
            )

        conn.execute(
            update(shopping_lists)
            .where(shopping_lists.c.id == list_id)
            .values(status="completed", completed_at=completed_at, total_amount=total_amount)
        )
        transaction_row = conn.execute(
            insert(transactions)
            .values(
                user_id=user_id,
                category_id=category_id,
                description=f"{SHOPPING_DESCRIPTION_PREFIX}{list_row['name']}",
                amount=total_amount,
                type="expense",
                transaction_date=completed_at,
                is_installment=False,
                is_recurrent=False,
                total_installments=1,
                installment_number=1,
                start_date=completed_at,
                installments=encode_installments(1, 1, completed_at),
                shopping_list_id=list_id,
            )
            .returning(*transactions.c)
        ).mappings().first()
        detail = shopping_list_detail(conn, user_id, list_id)

    logger.info("Completed shopping list %s with total %s", list_id, total_amount)
    return ShoppingListCompleteResponse(
        list=detail,
        transaction=transaction_response(transaction_row),
    )
