"""
SQLAlchemy Ledger Storage Implementation

DESIGN DECISION: A relational store with row-level atomic updates because:
1. Balance changes must be atomic increments (no read-modify-write)
2. The floored card payment needs a compare-and-swap, which a version
   column gives us on any SQL backend
3. SQLite for local use and tests, any SQLAlchemy URL in production

Money is stored as integer minor units (kuruş/cents). SQLite has no exact
decimal type, and integer arithmetic inside "balance = balance + :delta"
stays exact on every backend. Conversion to Decimal happens only in the
mappers at the bottom of this module.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pocketledger.config import DatabaseSettings, get_settings
from pocketledger.models.ledger import (
    Account,
    AccountRef,
    BalanceDelta,
    CardRef,
    CreditCard,
    ReceiptItem,
    Transaction,
    TransactionType,
    utc_now,
)
from pocketledger.services.storage.interface import (
    ConcurrentUpdateError,
    DuplicateError,
    LedgerStore,
    NotFoundError,
    StorageError,
)


Base = declarative_base()


# =============================================================================
# TABLES
# =============================================================================

class AccountRow(Base):
    """Deposit account."""

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    currency = Column(String(3), nullable=False, default="TRY")
    balance_cents = Column(Integer, nullable=False, default=0)
    overdraft_limit_cents = Column(Integer, nullable=False, default=0)
    overdraft_interest_rate = Column(String(20), nullable=False, default="0.00")
    version = Column(Integer, nullable=False, default=0)


class CardRow(Base):
    """Credit card. balance_cents is outstanding debt."""

    __tablename__ = "credit_cards"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    currency = Column(String(3), nullable=False, default="TRY")
    balance_cents = Column(Integer, nullable=False, default=0)
    limit_cents = Column(Integer, nullable=False, default=0)
    minimum_payment_cents = Column(Integer, nullable=False, default=0)
    due_day = Column(Integer, nullable=False, default=1)
    version = Column(Integer, nullable=False, default=0)


class TransactionRow(Base):
    """Ledger transaction."""

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    category = Column(String(100), nullable=False, default="")
    description = Column(String(500), nullable=False, default="")
    date = Column(Date, nullable=False)
    account_id = Column(String(36), nullable=True)
    card_id = Column(String(36), nullable=True)
    receipt_image_url = Column(String(2048), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)


class BalanceDeltaRow(Base):
    """A delta applied on behalf of a transaction."""

    __tablename__ = "balance_deltas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(36), ForeignKey("transactions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    entity_kind = Column(String(10), nullable=False)
    entity_id = Column(String(36), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    previous_minimum_payment_cents = Column(Integer, nullable=True)


class ReceiptItemRow(Base):
    """Receipt line item."""

    __tablename__ = "receipt_items"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    transaction_id = Column(String(36), nullable=True, index=True)
    name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price_cents = Column(Integer, nullable=True)
    total_price_cents = Column(Integer, nullable=False)
    category = Column(String(100), nullable=True)
    brand = Column(String(100), nullable=True)
    transaction_date = Column(Date, nullable=True)


def create_session_factory(database_url: str, echo: bool = False) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory, creating tables if needed."""
    engine = create_engine(database_url, echo=echo)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


# =============================================================================
# MONEY CONVERSION
# =============================================================================

def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


# =============================================================================
# STORE
# =============================================================================

class SQLAlchemyLedgerStore(LedgerStore):
    """
    LedgerStore backed by any SQLAlchemy database.

    Each public method runs in its own database transaction.
    """

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        settings: Optional[DatabaseSettings] = None
        if database_url is None or echo is None:
            settings = get_settings().database
        self.database_url = database_url or settings.url
        self._session_factory = create_session_factory(
            self.database_url,
            echo=settings.echo if echo is None else echo,
        )

    def _session(self) -> Session:
        return self._session_factory()

    @staticmethod
    def _row_type(entity: Union[AccountRef, CardRef]):
        return AccountRow if isinstance(entity, AccountRef) else CardRow

    # -------------------------------------------------------------------------
    # Accounts and cards
    # -------------------------------------------------------------------------

    async def save_account(self, account: Account) -> Account:
        try:
            with self._session() as session, session.begin():
                session.merge(_account_to_row(account))
            return account
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save account: {e}")

    async def save_card(self, card: CreditCard) -> CreditCard:
        try:
            with self._session() as session, session.begin():
                session.merge(_card_to_row(card))
            return card
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save card: {e}")

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        try:
            with self._session() as session:
                row = session.get(AccountRow, str(account_id))
                return _row_to_account(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get account: {e}")

    async def get_card(self, card_id: UUID) -> Optional[CreditCard]:
        try:
            with self._session() as session:
                row = session.get(CardRow, str(card_id))
                return _row_to_card(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get card: {e}")

    async def get_balance(self, entity: Union[AccountRef, CardRef]) -> Decimal:
        row_type = self._row_type(entity)
        try:
            with self._session() as session:
                cents = session.execute(
                    select(row_type.balance_cents).where(row_type.id == str(entity.id))
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read balance: {e}")
        if cents is None:
            raise NotFoundError(f"{entity.kind.capitalize()} not found: {entity.id}")
        return from_cents(cents)

    # -------------------------------------------------------------------------
    # Atomic balance primitives
    # -------------------------------------------------------------------------

    async def apply_delta(self, entity: Union[AccountRef, CardRef], amount: Decimal) -> Decimal:
        row_type = self._row_type(entity)
        try:
            with self._session() as session, session.begin():
                result = session.execute(
                    update(row_type)
                    .where(row_type.id == str(entity.id))
                    .values(
                        balance_cents=row_type.balance_cents + to_cents(amount),
                        version=row_type.version + 1,
                    )
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"{entity.kind.capitalize()} not found: {entity.id}")
                cents = session.execute(
                    select(row_type.balance_cents).where(row_type.id == str(entity.id))
                ).scalar_one()
            return from_cents(cents)
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to apply balance delta: {e}")

    @retry(
        retry=retry_if_exception_type(ConcurrentUpdateError),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.05, max=1),
        reraise=True,
    )
    def _pay_card_once(self, card_id: UUID, amount_cents: int) -> BalanceDelta:
        """One compare-and-swap attempt of a floored card payment."""
        with self._session() as session, session.begin():
            current = session.execute(
                select(CardRow.balance_cents, CardRow.minimum_payment_cents, CardRow.version)
                .where(CardRow.id == str(card_id))
            ).one_or_none()
            if current is None:
                raise NotFoundError(f"Card not found: {card_id}")

            new_balance = max(0, current.balance_cents - amount_cents)
            values = {"balance_cents": new_balance, "version": current.version + 1}
            previous_minimum: Optional[Decimal] = None
            if new_balance == 0:
                values["minimum_payment_cents"] = 0
                previous_minimum = from_cents(current.minimum_payment_cents)

            result = session.execute(
                update(CardRow)
                .where(CardRow.id == str(card_id), CardRow.version == current.version)
                .values(**values)
            )
            if result.rowcount == 0:
                raise ConcurrentUpdateError(f"Card changed during payment: {card_id}")

        return BalanceDelta(
            entity=CardRef(id=card_id),
            amount=from_cents(new_balance - current.balance_cents),
            previous_minimum_payment=previous_minimum,
        )

    async def apply_card_payment(self, card_id: UUID, amount: Decimal) -> BalanceDelta:
        try:
            return self._pay_card_once(card_id, to_cents(amount))
        except (NotFoundError, ConcurrentUpdateError):
            raise
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to apply card payment: {e}")

    async def restore_minimum_payment(self, card_id: UUID, minimum_payment: Decimal) -> None:
        try:
            with self._session() as session, session.begin():
                result = session.execute(
                    update(CardRow)
                    .where(CardRow.id == str(card_id))
                    .values(
                        minimum_payment_cents=to_cents(minimum_payment),
                        version=CardRow.version + 1,
                    )
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"Card not found: {card_id}")
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to restore minimum payment: {e}")

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            with self._session() as session:
                row = session.get(TransactionRow, str(transaction_id))
                return _row_to_transaction(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def get_deltas(self, transaction_id: UUID) -> list[BalanceDelta]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(BalanceDeltaRow)
                    .where(BalanceDeltaRow.transaction_id == str(transaction_id))
                    .order_by(BalanceDeltaRow.position)
                ).scalars().all()
                return [_row_to_delta(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get deltas: {e}")

    async def insert_transaction(
        self,
        transaction: Transaction,
        deltas: list[BalanceDelta],
    ) -> Transaction:
        try:
            with self._session() as session, session.begin():
                if session.get(TransactionRow, str(transaction.id)) is not None:
                    raise DuplicateError(f"Transaction already exists: {transaction.id}")
                session.add(_transaction_to_row(transaction))
                session.flush()
                session.add_all(_deltas_to_rows(transaction.id, deltas))
            return transaction
        except DuplicateError:
            raise
        except IntegrityError as e:
            raise DuplicateError(f"Transaction already exists: {e}")
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to insert transaction: {e}")

    async def update_transaction(
        self,
        transaction: Transaction,
        deltas: list[BalanceDelta],
    ) -> Transaction:
        updated = transaction.model_copy(update={"updated_at": utc_now()})
        try:
            with self._session() as session, session.begin():
                if session.get(TransactionRow, str(transaction.id)) is None:
                    raise NotFoundError(f"Transaction not found: {transaction.id}")
                session.merge(_transaction_to_row(updated))
                session.execute(
                    delete(BalanceDeltaRow).where(
                        BalanceDeltaRow.transaction_id == str(transaction.id)
                    )
                )
                session.add_all(_deltas_to_rows(transaction.id, deltas))
            return updated
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            with self._session() as session, session.begin():
                row = session.get(TransactionRow, str(transaction_id))
                if row is None:
                    raise NotFoundError(f"Transaction not found: {transaction_id}")
                session.execute(
                    delete(BalanceDeltaRow).where(
                        BalanceDeltaRow.transaction_id == str(transaction_id)
                    )
                )
                session.execute(
                    update(ReceiptItemRow)
                    .where(ReceiptItemRow.transaction_id == str(transaction_id))
                    .values(transaction_id=None)
                )
                session.delete(row)
            return True
        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    # -------------------------------------------------------------------------
    # Receipt items
    # -------------------------------------------------------------------------

    async def insert_receipt_items(self, items: list[ReceiptItem]) -> int:
        if not items:
            return 0
        try:
            with self._session() as session, session.begin():
                session.add_all(_item_to_row(item) for item in items)
            return len(items)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to insert receipt items: {e}")

    async def list_receipt_items(self, transaction_id: UUID) -> list[ReceiptItem]:
        try:
            with self._session() as session:
                rows = session.execute(
                    select(ReceiptItemRow)
                    .where(ReceiptItemRow.transaction_id == str(transaction_id))
                    .order_by(ReceiptItemRow.name)
                ).scalars().all()
                return [_row_to_item(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list receipt items: {e}")

    async def list_transactions_missing_items(self, user_id: UUID) -> list[Transaction]:
        has_items = (
            select(ReceiptItemRow.id)
            .where(ReceiptItemRow.transaction_id == TransactionRow.id)
            .exists()
        )
        try:
            with self._session() as session:
                rows = session.execute(
                    select(TransactionRow)
                    .where(
                        TransactionRow.user_id == str(user_id),
                        TransactionRow.receipt_image_url.is_not(None),
                        ~has_items,
                    )
                    .order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
                ).scalars().all()
                return [_row_to_transaction(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list transactions without items: {e}")


# =============================================================================
# MAPPERS
# =============================================================================

def _optional_uuid(value: Optional[str]) -> Optional[UUID]:
    return UUID(value) if value else None


def _optional_str(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value else None


def _account_to_row(account: Account) -> AccountRow:
    return AccountRow(
        id=str(account.id),
        user_id=str(account.user_id),
        name=account.name,
        currency=account.currency,
        balance_cents=to_cents(account.balance),
        overdraft_limit_cents=to_cents(account.overdraft_limit),
        overdraft_interest_rate=str(account.overdraft_interest_rate),
        version=0,
    )


def _row_to_account(row: AccountRow) -> Account:
    return Account(
        id=UUID(row.id),
        user_id=UUID(row.user_id),
        name=row.name,
        currency=row.currency,
        balance=from_cents(row.balance_cents),
        overdraft_limit=from_cents(row.overdraft_limit_cents),
        overdraft_interest_rate=Decimal(row.overdraft_interest_rate),
    )


def _card_to_row(card: CreditCard) -> CardRow:
    return CardRow(
        id=str(card.id),
        user_id=str(card.user_id),
        name=card.name,
        currency=card.currency,
        balance_cents=to_cents(card.balance),
        limit_cents=to_cents(card.limit),
        minimum_payment_cents=to_cents(card.minimum_payment),
        due_day=card.due_day,
        version=0,
    )


def _row_to_card(row: CardRow) -> CreditCard:
    return CreditCard(
        id=UUID(row.id),
        user_id=UUID(row.user_id),
        name=row.name,
        currency=row.currency,
        balance=from_cents(row.balance_cents),
        limit=from_cents(row.limit_cents),
        minimum_payment=from_cents(row.minimum_payment_cents),
        due_day=row.due_day,
    )


def _transaction_to_row(txn: Transaction) -> TransactionRow:
    return TransactionRow(
        id=str(txn.id),
        user_id=str(txn.user_id),
        type=txn.type.value,
        amount_cents=to_cents(txn.amount),
        currency=txn.currency,
        category=txn.category,
        description=txn.description,
        date=txn.date,
        account_id=_optional_str(txn.account_id),
        card_id=_optional_str(txn.card_id),
        receipt_image_url=txn.receipt_image_url,
        created_at=txn.created_at,
        updated_at=txn.updated_at,
    )


def _row_to_transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=UUID(row.id),
        user_id=UUID(row.user_id),
        type=TransactionType(row.type),
        amount=from_cents(row.amount_cents),
        currency=row.currency,
        category=row.category,
        description=row.description,
        date=row.date,
        account_id=_optional_uuid(row.account_id),
        card_id=_optional_uuid(row.card_id),
        receipt_image_url=row.receipt_image_url,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _deltas_to_rows(transaction_id: UUID, deltas: list[BalanceDelta]) -> list[BalanceDeltaRow]:
    return [
        BalanceDeltaRow(
            transaction_id=str(transaction_id),
            position=position,
            entity_kind=delta.entity.kind,
            entity_id=str(delta.entity.id),
            amount_cents=to_cents(delta.amount),
            previous_minimum_payment_cents=(
                to_cents(delta.previous_minimum_payment)
                if delta.previous_minimum_payment is not None
                else None
            ),
        )
        for position, delta in enumerate(deltas)
    ]


def _row_to_delta(row: BalanceDeltaRow) -> BalanceDelta:
    entity_id = UUID(row.entity_id)
    entity = AccountRef(id=entity_id) if row.entity_kind == "account" else CardRef(id=entity_id)
    return BalanceDelta(
        entity=entity,
        amount=from_cents(row.amount_cents),
        previous_minimum_payment=from_cents(row.previous_minimum_payment_cents),
    )


def _item_to_row(item: ReceiptItem) -> ReceiptItemRow:
    return ReceiptItemRow(
        id=str(item.id),
        user_id=str(item.user_id),
        transaction_id=_optional_str(item.transaction_id),
        name=item.name,
        quantity=item.quantity,
        unit_price_cents=to_cents(item.unit_price) if item.unit_price is not None else None,
        total_price_cents=to_cents(item.total_price),
        category=item.category,
        brand=item.brand,
        transaction_date=item.transaction_date,
    )


def _row_to_item(row: ReceiptItemRow) -> ReceiptItem:
    return ReceiptItem(
        id=UUID(row.id),
        user_id=UUID(row.user_id),
        transaction_id=_optional_uuid(row.transaction_id),
        name=row.name,
        quantity=row.quantity,
        unit_price=from_cents(row.unit_price_cents),
        total_price=from_cents(row.total_price_cents),
        category=row.category,
        brand=row.brand,
        transaction_date=row.transaction_date,
    )
