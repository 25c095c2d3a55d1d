"""
SQL Storage Implementation

DESIGN DECISION: The ledger lives in a relational database accessed
through SQLAlchemy. Every write is a single `sessionmaker.begin()` block,
so a failure anywhere inside it rolls the whole mutation back; there is
no compensating logic.

Balances are computed by the database in ONE statement built from scalar
subqueries. A balance read therefore never straddles a concurrent commit.

Works against PostgreSQL in production and in-memory SQLite in tests.
"""

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    create_engine,
    delete,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import retry, stop_after_attempt, wait_exponential

from balance_engine.config import DatabaseSettings, get_settings
from balance_engine.errors import NotFoundError, NotMemberError, StorageError
from balance_engine.models.ledger import (
    Expense,
    ExpenseSplit,
    Group,
    GroupRole,
    Membership,
    Settlement,
    SplitType,
    is_settled,
    to_cents,
)
from balance_engine.services.storage.interface import (
    ExpenseChange,
    LedgerStorageInterface,
    MembershipDirectory,
)


logger = structlog.get_logger(__name__)


# =============================================================================
# TABLES
# =============================================================================

class Base(DeclarativeBase):
    pass


class GroupRow(Base):
    __tablename__ = "groups"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    created_by: Mapped[UUID] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime)


class MembershipRow(Base):
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("groups.id"), index=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, index=True)
    role: Mapped[str] = mapped_column(String(20))
    joined_at: Mapped[datetime] = mapped_column(DateTime)


class ExpenseRow(Base):
    __tablename__ = "expenses"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    group_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("groups.id"), index=True)
    paid_by: Mapped[UUID] = mapped_column(Uuid)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expense_date: Mapped[date] = mapped_column(Date)
    split_type: Mapped[str] = mapped_column(String(20))
    created_by: Mapped[UUID] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


class ExpenseSplitRow(Base):
    __tablename__ = "expense_splits"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    expense_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("expenses.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(9, 4), nullable=True)
    # Order the caller supplied the splits in
    position: Mapped[int] = mapped_column(Integer)


class SettlementRow(Base):
    __tablename__ = "settlements"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    group_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("groups.id"), index=True)
    paid_by: Mapped[UUID] = mapped_column(Uuid)
    paid_to: Mapped[UUID] = mapped_column(Uuid)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    settlement_date: Mapped[date] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)


# =============================================================================
# DATABASE HANDLE
# =============================================================================

class Database:
    """
    Owns the SQLAlchemy engine and session factory.

    Construct once at process start and share between the ledger storage
    and the membership directory.
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None,
    ):
        self._settings = settings or get_settings().database
        self._engine = engine or self._create_engine()
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)

    def _create_engine(self) -> Engine:
        if self._settings.is_in_memory_sqlite:
            # One shared connection, otherwise every session sees an empty database
            return create_engine(
                self._settings.url,
                echo=self._settings.echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            self._settings.url,
            echo=self._settings.echo,
            pool_pre_ping=True,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> None:
        """
        Check connectivity and create any missing tables.

        Retried at startup only; per-operation failures are not retried.
        """
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to connect to ledger database: {e}")

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Scoped transaction: commits when the block exits normally, rolls
        back on any exception. Database errors surface as StorageError.
        """
        try:
            with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("ledger_transaction_failed", error=str(e))
            raise StorageError(f"Ledger transaction failed: {e}") from e

    def dispose(self) -> None:
        self._engine.dispose()


# =============================================================================
# ROW CONVERSION
# =============================================================================

def _split_from_row(row: ExpenseSplitRow) -> ExpenseSplit:
    return ExpenseSplit(
        id=row.id,
        expense_id=row.expense_id,
        user_id=row.user_id,
        amount=to_cents(row.amount),
        percentage=Decimal(str(row.percentage)) if row.percentage is not None else None,
    )


def _expense_from_row(row: ExpenseRow, split_rows: list[ExpenseSplitRow]) -> Expense:
    return Expense(
        id=row.id,
        group_id=row.group_id,
        paid_by=row.paid_by,
        amount=to_cents(row.amount),
        description=row.description,
        expense_date=row.expense_date,
        split_type=SplitType(row.split_type),
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
        splits=[_split_from_row(split) for split in split_rows],
    )


def _split_rows(expense_id: UUID, splits: list[ExpenseSplit]) -> list[ExpenseSplitRow]:
    return [
        ExpenseSplitRow(
            id=split.id,
            expense_id=expense_id,
            user_id=split.user_id,
            amount=split.amount,
            percentage=split.percentage,
            position=position,
        )
        for position, split in enumerate(splits)
    ]


def _settlement_from_row(row: SettlementRow) -> Settlement:
    return Settlement(
        id=row.id,
        group_id=row.group_id,
        paid_by=row.paid_by,
        paid_to=row.paid_to,
        amount=to_cents(row.amount),
        settlement_date=row.settlement_date,
        notes=row.notes,
        created_at=row.created_at,
    )


def _load_splits(session: Session, expense_ids: list[UUID]) -> dict[UUID, list[ExpenseSplitRow]]:
    by_expense: dict[UUID, list[ExpenseSplitRow]] = {expense_id: [] for expense_id in expense_ids}
    if not expense_ids:
        return by_expense
    stmt = (
        select(ExpenseSplitRow)
        .where(ExpenseSplitRow.expense_id.in_(expense_ids))
        .order_by(ExpenseSplitRow.expense_id, ExpenseSplitRow.position)
    )
    for split in session.execute(stmt).scalars():
        by_expense[split.expense_id].append(split)
    return by_expense


def _lock_members(session: Session, group_id: UUID, user_ids) -> None:
    """
    Share-lock the membership rows of user_ids, raising NotMemberError for
    the first user who is not in the group.

    Held until commit, so a member cannot leave while a ledger row naming
    them is being written.
    """
    wanted = set(user_ids)
    stmt = (
        select(MembershipRow.user_id)
        .where(MembershipRow.group_id == group_id, MembershipRow.user_id.in_(wanted))
        .with_for_update(read=True)
    )
    present = set(session.execute(stmt).scalars())
    missing = sorted(wanted - present)
    if missing:
        raise NotMemberError(missing[0], group_id)


# =============================================================================
# BALANCE QUERY
# =============================================================================

def _net_balance_expr(group_id: UUID, user_ref):
    """
    paid expenses + paid settlements - owed splits - received settlements.

    user_ref is either a bound user id or a column of an enclosing query,
    in which case the subqueries are correlated against it.
    """
    paid_expenses = (
        select(func.coalesce(func.sum(ExpenseRow.amount), 0))
        .where(ExpenseRow.group_id == group_id, ExpenseRow.paid_by == user_ref)
        .scalar_subquery()
    )
    paid_settlements = (
        select(func.coalesce(func.sum(SettlementRow.amount), 0))
        .where(SettlementRow.group_id == group_id, SettlementRow.paid_by == user_ref)
        .scalar_subquery()
    )
    owed_splits = (
        select(func.coalesce(func.sum(ExpenseSplitRow.amount), 0))
        .select_from(ExpenseSplitRow)
        .join(ExpenseRow, ExpenseSplitRow.expense_id == ExpenseRow.id)
        .where(ExpenseRow.group_id == group_id, ExpenseSplitRow.user_id == user_ref)
        .scalar_subquery()
    )
    received_settlements = (
        select(func.coalesce(func.sum(SettlementRow.amount), 0))
        .where(SettlementRow.group_id == group_id, SettlementRow.paid_to == user_ref)
        .scalar_subquery()
    )
    return (paid_expenses + paid_settlements) - (owed_splits + received_settlements)


# =============================================================================
# LEDGER STORAGE
# =============================================================================

class SqlLedgerStorage(LedgerStorageInterface):
    """
    SQLAlchemy implementation of the ledger store.
    """

    def __init__(self, database: Database):
        self._db = database

    async def insert_expense(self, expense: Expense) -> Expense:
        with self._db.transaction() as session:
            _lock_members(
                session, expense.group_id, [expense.paid_by, *expense.participant_ids]
            )
            session.add(ExpenseRow(
                id=expense.id,
                group_id=expense.group_id,
                paid_by=expense.paid_by,
                amount=expense.amount,
                description=expense.description,
                expense_date=expense.expense_date,
                split_type=expense.split_type.value,
                created_by=expense.created_by,
                created_at=expense.created_at,
                updated_at=expense.updated_at,
            ))
            # Parent row must exist before its splits reference it
            session.flush()
            session.add_all(_split_rows(expense.id, expense.splits))
        return expense

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        with self._db.transaction() as session:
            row = session.get(ExpenseRow, expense_id)
            if row is None:
                return None
            splits = _load_splits(session, [row.id])
            return _expense_from_row(row, splits[row.id])

    async def update_expense(
        self,
        expense_id: UUID,
        change: ExpenseChange,
    ) -> tuple[Expense, Expense]:
        with self._db.transaction() as session:
            row = session.get(ExpenseRow, expense_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Expense not found: {expense_id}")

            before = _expense_from_row(row, _load_splits(session, [expense_id])[expense_id])
            fields, splits = change(before)
            if not fields and splits is None:
                return before, before

            for name, value in fields.items():
                if name == "split_type":
                    value = SplitType(value).value
                setattr(row, name, value)
            row.updated_at = datetime.utcnow()

            if splits is not None:
                _lock_members(session, row.group_id, [split.user_id for split in splits])
                session.execute(
                    delete(ExpenseSplitRow).where(ExpenseSplitRow.expense_id == expense_id)
                )
                session.add_all(_split_rows(expense_id, splits))

            session.flush()
            split_rows = _load_splits(session, [expense_id])
            return before, _expense_from_row(row, split_rows[expense_id])

    async def delete_expense(self, expense_id: UUID) -> Optional[Expense]:
        with self._db.transaction() as session:
            row = session.get(ExpenseRow, expense_id, with_for_update=True)
            if row is None:
                return None
            before = _expense_from_row(row, _load_splits(session, [expense_id])[expense_id])

            session.execute(
                delete(ExpenseSplitRow).where(ExpenseSplitRow.expense_id == expense_id)
            )
            session.execute(delete(ExpenseRow).where(ExpenseRow.id == expense_id))
            return before

    async def list_group_expenses(
        self,
        group_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Expense]:
        stmt = (
            select(ExpenseRow)
            .where(ExpenseRow.group_id == group_id)
            .order_by(ExpenseRow.expense_date.desc(), ExpenseRow.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        with self._db.transaction() as session:
            rows = list(session.execute(stmt).scalars())
            splits = _load_splits(session, [row.id for row in rows])
            return [_expense_from_row(row, splits[row.id]) for row in rows]

    async def insert_settlement(self, settlement: Settlement) -> Settlement:
        with self._db.transaction() as session:
            _lock_members(session, settlement.group_id, settlement.party_ids)
            session.add(SettlementRow(
                id=settlement.id,
                group_id=settlement.group_id,
                paid_by=settlement.paid_by,
                paid_to=settlement.paid_to,
                amount=settlement.amount,
                settlement_date=settlement.settlement_date,
                notes=settlement.notes,
                created_at=settlement.created_at,
            ))
        return settlement

    async def get_settlement(self, settlement_id: UUID) -> Optional[Settlement]:
        with self._db.transaction() as session:
            row = session.get(SettlementRow, settlement_id)
            return _settlement_from_row(row) if row is not None else None

    async def delete_settlement(self, settlement_id: UUID) -> bool:
        with self._db.transaction() as session:
            result = session.execute(
                delete(SettlementRow).where(SettlementRow.id == settlement_id)
            )
            return result.rowcount > 0

    async def list_group_settlements(
        self,
        group_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Settlement]:
        stmt = (
            select(SettlementRow)
            .where(SettlementRow.group_id == group_id)
            .order_by(SettlementRow.settlement_date.desc(), SettlementRow.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        with self._db.transaction() as session:
            return [_settlement_from_row(row) for row in session.execute(stmt).scalars()]

    async def net_balance(self, user_id: UUID, group_id: UUID) -> Decimal:
        stmt = select(_net_balance_expr(group_id, user_id).label("net_balance"))
        with self._db.transaction() as session:
            value = session.execute(stmt).scalar_one()
        return to_cents(value)

    async def group_net_balances(self, group_id: UUID) -> dict[UUID, Decimal]:
        stmt = (
            select(
                MembershipRow.user_id,
                _net_balance_expr(group_id, MembershipRow.user_id).label("net_balance"),
            )
            .where(MembershipRow.group_id == group_id)
            .order_by(MembershipRow.user_id)
        )
        with self._db.transaction() as session:
            rows = session.execute(stmt).all()
        return {user_id: to_cents(balance) for user_id, balance in rows}


# =============================================================================
# MEMBERSHIP DIRECTORY
# =============================================================================

def _membership_from_row(row: MembershipRow) -> Membership:
    return Membership(
        group_id=row.group_id,
        user_id=row.user_id,
        role=GroupRole(row.role),
        joined_at=row.joined_at,
    )


class SqlMembershipDirectory(MembershipDirectory):
    """
    Membership oracle backed by the `groups` and `group_members` tables.
    """

    def __init__(self, database: Database):
        self._db = database

    def _membership_row(
        self,
        session: Session,
        group_id: UUID,
        user_id: UUID,
    ) -> Optional[MembershipRow]:
        stmt = select(MembershipRow).where(
            MembershipRow.group_id == group_id,
            MembershipRow.user_id == user_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    async def create_group(self, name: str, created_by: UUID) -> Group:
        group = Group(name=name, created_by=created_by)
        with self._db.transaction() as session:
            session.add(GroupRow(
                id=group.id,
                name=group.name,
                created_by=group.created_by,
                created_at=group.created_at,
            ))
            session.flush()
            session.add(MembershipRow(
                group_id=group.id,
                user_id=created_by,
                role=GroupRole.ADMIN.value,
                joined_at=group.created_at,
            ))
        logger.info("group_created", group_id=str(group.id), created_by=str(created_by))
        return group

    async def add_member(
        self,
        group_id: UUID,
        user_id: UUID,
        role: GroupRole = GroupRole.MEMBER,
    ) -> Membership:
        with self._db.transaction() as session:
            if session.get(GroupRow, group_id) is None:
                raise NotFoundError(f"Group not found: {group_id}")
            existing = self._membership_row(session, group_id, user_id)
            if existing is not None:
                return _membership_from_row(existing)
            row = MembershipRow(
                group_id=group_id,
                user_id=user_id,
                role=GroupRole(role).value,
                joined_at=datetime.utcnow(),
            )
            session.add(row)
            session.flush()
            return _membership_from_row(row)

    async def remove_member(self, group_id: UUID, user_id: UUID) -> bool:
        with self._db.transaction() as session:
            result = session.execute(
                delete(MembershipRow).where(
                    MembershipRow.group_id == group_id,
                    MembershipRow.user_id == user_id,
                )
            )
            return result.rowcount > 0

    async def remove_settled_member(
        self,
        group_id: UUID,
        user_id: UUID,
    ) -> tuple[bool, Decimal]:
        with self._db.transaction() as session:
            stmt = (
                select(MembershipRow)
                .where(
                    MembershipRow.group_id == group_id,
                    MembershipRow.user_id == user_id,
                )
                .with_for_update()
            )
            row = session.execute(stmt).scalar_one_or_none()
            if row is None:
                raise NotMemberError(user_id, group_id)

            balance = to_cents(
                session.execute(select(_net_balance_expr(group_id, user_id))).scalar_one()
            )
            if not is_settled(balance):
                return False, balance

            session.delete(row)

        logger.info("member_removed", group_id=str(group_id), user_id=str(user_id))
        return True, balance

    async def group_exists(self, group_id: UUID) -> bool:
        with self._db.transaction() as session:
            return session.get(GroupRow, group_id) is not None

    async def is_member(self, user_id: UUID, group_id: UUID) -> bool:
        with self._db.transaction() as session:
            return self._membership_row(session, group_id, user_id) is not None

    async def is_admin(self, user_id: UUID, group_id: UUID) -> bool:
        with self._db.transaction() as session:
            row = self._membership_row(session, group_id, user_id)
            return row is not None and row.role == GroupRole.ADMIN.value

    async def list_member_ids(self, group_id: UUID) -> list[UUID]:
        stmt = (
            select(MembershipRow.user_id)
            .where(MembershipRow.group_id == group_id)
            .order_by(MembershipRow.user_id)
        )
        with self._db.transaction() as session:
            return list(session.execute(stmt).scalars())
