"""
Database operations module for budget record storage.

This module handles database connections, schema creation and the reads
and writes behind the budget records using SQLAlchemy ORM. Reads return
validated record types from records.py so the aggregation engine never
touches ORM objects. SQLite is the default backend.
"""

import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import Iterable, List, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from exceptions import DatabaseError, ValidationError
from records import (
    BudgetSnapshot,
    ExpenseKind,
    ExpenseRecord,
    FixedExpenseDefinition,
    FixedExpenseOverride,
    IncomeBase,
    IncomeKey,
    MonthlyIncomeOverride,
    attach_overrides,
    coerce_enum,
    validate_month,
    validate_year,
)

# Configure logging
logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone awareness.

    All timestamps in the database are stored in UTC.
    """
    return datetime.now(UTC)


# Base class for declarative models
Base = declarative_base()


class ExpenseModel(Base):
    """
    SQLAlchemy model for an ad-hoc expense.

    Attributes:
        id: Auto-incrementing primary key
        user_id: Owner of the record
        name: Expense name
        amount: Positive amount
        kind: "yearly" or "monthly"
        month: Month (1-12) for monthly expenses
        date: Optional ISO date string
        year: Year the expense belongs to
    """

    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    amount = Column(Float, nullable=False)
    kind = Column(String(10), nullable=False, default=ExpenseKind.YEARLY.value)
    month = Column(Integer, nullable=True)
    date = Column(String(10), nullable=True)
    year = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_expenses_user_year_kind", "user_id", "year", "kind"),
        Index("idx_expenses_user_month", "user_id", "month"),
    )

    def __repr__(self) -> str:
        return (
            f"<ExpenseModel(id={self.id}, name='{self.name}', amount={self.amount}, "
            f"kind={self.kind}, month={self.month}, year={self.year})>"
        )


class FixedExpenseModel(Base):
    """SQLAlchemy model for a recurring expense template."""

    __tablename__ = "fixed_expenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    amount = Column(Float, nullable=False)
    applicable_months = Column(JSON, nullable=False, default=list)
    year = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    overrides = relationship(
        "FixedExpenseOverrideModel",
        back_populates="fixed_expense",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<FixedExpenseModel(id={self.id}, name='{self.name}', amount={self.amount}, "
            f"months={self.applicable_months}, year={self.year})>"
        )


class FixedExpenseOverrideModel(Base):
    """Per-month replacement amount for a fixed expense."""

    __tablename__ = "fixed_expense_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    fixed_expense_id = Column(Integer, ForeignKey("fixed_expenses.id"), nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    override_amount = Column(Float, nullable=False)
    date = Column(String(10), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    fixed_expense = relationship("FixedExpenseModel", back_populates="overrides")

    __table_args__ = (
        UniqueConstraint("fixed_expense_id", "month", "year", name="uq_fixed_override_month"),
    )

    def __repr__(self) -> str:
        return (
            f"<FixedExpenseOverrideModel(fixed_expense_id={self.fixed_expense_id}, "
            f"month={self.month}, year={self.year}, amount={self.override_amount})>"
        )


class SettingModel(Base):
    """Key/value settings per user and year (base income lives here)."""

    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    key = Column(String(50), nullable=False)
    year = Column(Integer, nullable=False)
    value = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "key", "year", name="uq_setting_key_year"),
    )


class MonthlyIncomeOverrideModel(Base):
    """Replacement for the base monthly income in one month."""

    __tablename__ = "monthly_income_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    override_amount = Column(Float, nullable=False)
    date = Column(String(10), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "month", "year", name="uq_income_override_month"),
    )

    def __repr__(self) -> str:
        return (
            f"<MonthlyIncomeOverrideModel(month={self.month}, year={self.year}, "
            f"amount={self.override_amount})>"
        )


def _is_memory_sqlite(connection_string: str) -> bool:
    url = make_url(connection_string)
    return url.drivername.startswith("sqlite") and url.database in (None, "", ":memory:")


def _expense_record(row: ExpenseModel) -> Optional[ExpenseRecord]:
    try:
        return ExpenseRecord(
            id=str(row.id),
            name=row.name,
            amount=row.amount,
            year=row.year,
            kind=row.kind,
            month=row.month,
            date=row.date,
        )
    except ValidationError as exc:
        logger.warning("Skipping invalid expense row %s: %s", row.id, exc)
        return None


def _override_record(row: FixedExpenseOverrideModel) -> Optional[FixedExpenseOverride]:
    try:
        return FixedExpenseOverride(
            fixed_expense_id=str(row.fixed_expense_id),
            month=row.month,
            year=row.year,
            amount=row.override_amount,
            date=row.date,
        )
    except ValidationError as exc:
        logger.warning("Skipping invalid fixed expense override row %s: %s", row.id, exc)
        return None


def _income_override_record(row: MonthlyIncomeOverrideModel) -> Optional[MonthlyIncomeOverride]:
    try:
        return MonthlyIncomeOverride(
            month=row.month,
            year=row.year,
            amount=row.override_amount,
            date=row.date,
        )
    except ValidationError as exc:
        logger.warning("Skipping invalid income override row %s: %s", row.id, exc)
        return None


class DatabaseManager:
    """
    Data-access context for budget records.

    Construct one per process (or per test) and pass it to whatever needs
    records. Reads return record types from records.py; callers should use
    load_snapshot once per logical request so every view sees the same data.
    """

    def __init__(self, connection_string: str, user_id: str = "local"):
        """
        Initialize the database manager.

        Args:
            connection_string: SQLAlchemy connection string (e.g., 'sqlite:///data/budget.db')
            user_id: Owner whose records are read and written

        Raises:
            DatabaseError: If the engine cannot be created
        """
        try:
            if _is_memory_sqlite(connection_string):
                # One shared connection so every session sees the same in-memory database
                self.engine = create_engine(
                    connection_string,
                    echo=False,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            else:
                self.engine = create_engine(connection_string, echo=False)
            self.SessionLocal = sessionmaker(bind=self.engine)
            self.user_id = user_id
            logger.info(f"Database manager initialized with connection: {connection_string}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError("Failed to initialize database", original_error=e) from e

    def create_tables(self) -> None:
        """
        Create all database tables if they don't exist.

        Raises:
            DatabaseError: If table creation fails
        """
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseError("Failed to create database tables", original_error=e) from e

    def get_session(self) -> Session:
        """
        Get a new database session.

        Note:
            Caller is responsible for closing the session.
        """
        return self.SessionLocal()

    def close(self) -> None:
        """Dispose of the engine and its connections."""
        self.engine.dispose()
        logger.debug("Database engine disposed")

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    def add_expense(
        self,
        name: str,
        amount: float,
        year: int,
        kind: str = ExpenseKind.YEARLY.value,
        month: Optional[int] = None,
        date: Optional[str] = None
    ) -> ExpenseRecord:
        """
        Store a new ad-hoc expense.

        Returns:
            The stored expense as an ExpenseRecord

        Raises:
            ValidationError: If the expense fields are invalid
            DatabaseError: If the insert fails
        """
        validate_year(year)
        record = ExpenseRecord(
            id="", name=name, amount=amount, year=year, kind=kind, month=month, date=date
        )
        session = self.get_session()
        try:
            row = ExpenseModel(
                user_id=self.user_id,
                name=record.name,
                amount=record.amount,
                kind=record.kind.value,
                month=record.month,
                date=record.date,
                year=record.year,
            )
            session.add(row)
            session.commit()
            logger.info(f"Added {record.kind.value} expense '{record.name}': {record.amount}")
            return replace(record, id=str(row.id))
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to add expense: {e}")
            raise DatabaseError("Failed to add expense", details={"name": name}, original_error=e) from e
        finally:
            session.close()

    def delete_expense(self, expense_id: int) -> bool:
        """Delete an expense; returns False when it does not exist."""
        session = self.get_session()
        try:
            deleted = session.query(ExpenseModel).filter(
                ExpenseModel.id == expense_id,
                ExpenseModel.user_id == self.user_id
            ).delete()
            session.commit()
            return bool(deleted)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to delete expense {expense_id}: {e}")
            raise DatabaseError("Failed to delete expense", original_error=e) from e
        finally:
            session.close()

    def get_expenses(
        self,
        year: int,
        kind: Optional[str] = None,
        month: Optional[int] = None,
        session: Optional[Session] = None
    ) -> List[ExpenseRecord]:
        """
        Read expenses for a year, optionally filtered by kind and month.

        Rows that fail validation are skipped with a warning.
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            query = session.query(ExpenseModel).filter(
                ExpenseModel.user_id == self.user_id,
                ExpenseModel.year == year
            )
            if kind is not None:
                query = query.filter(ExpenseModel.kind == coerce_enum(ExpenseKind, kind, "kind").value)
            if month is not None:
                query = query.filter(ExpenseModel.month == validate_month(month))
            rows = query.order_by(ExpenseModel.id).all()
            records = [_expense_record(row) for row in rows]
            return [r for r in records if r is not None]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read expenses: {e}")
            raise DatabaseError("Failed to read expenses", details={"year": year}, original_error=e) from e
        finally:
            if close_session:
                session.close()

    # ------------------------------------------------------------------
    # Fixed expenses
    # ------------------------------------------------------------------

    def add_fixed_expense(
        self,
        name: str,
        amount: float,
        applicable_months: Iterable[int],
        year: int
    ) -> FixedExpenseDefinition:
        """
        Store a new fixed expense definition.

        Raises:
            ValidationError: If the definition is invalid
            DatabaseError: If the insert fails
        """
        validate_year(year)
        definition = FixedExpenseDefinition(
            id="", name=name, amount=amount, applicable_months=tuple(applicable_months), year=year
        )
        session = self.get_session()
        try:
            row = FixedExpenseModel(
                user_id=self.user_id,
                name=definition.name,
                amount=definition.amount,
                applicable_months=list(definition.applicable_months),
                year=definition.year,
            )
            session.add(row)
            session.commit()
            logger.info(
                f"Added fixed expense '{definition.name}': {definition.amount} "
                f"for months {list(definition.applicable_months)}"
            )
            return replace(definition, id=str(row.id))
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to add fixed expense: {e}")
            raise DatabaseError("Failed to add fixed expense", details={"name": name}, original_error=e) from e
        finally:
            session.close()

    def delete_fixed_expense(self, fixed_expense_id: int) -> bool:
        """Delete a fixed expense together with its overrides."""
        session = self.get_session()
        try:
            row = session.query(FixedExpenseModel).filter(
                FixedExpenseModel.id == fixed_expense_id,
                FixedExpenseModel.user_id == self.user_id
            ).first()
            if row is None:
                return False
            session.delete(row)
            session.commit()
            logger.info("Deleted fixed expense %s", fixed_expense_id)
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to delete fixed expense {fixed_expense_id}: {e}")
            raise DatabaseError("Failed to delete fixed expense", original_error=e) from e
        finally:
            session.close()

    def upsert_fixed_expense_override(
        self,
        fixed_expense_id: int,
        month: int,
        year: int,
        amount: float,
        date: Optional[str] = None
    ) -> FixedExpenseOverride:
        """
        Create or update the override of a fixed expense for one month.

        Raises:
            ValidationError: If month or amount is invalid
            DatabaseError: If the fixed expense does not exist or the write fails
        """
        validate_year(year)
        record = FixedExpenseOverride(
            fixed_expense_id=str(fixed_expense_id), month=month, year=year, amount=amount, date=date
        )
        session = self.get_session()
        try:
            parent = session.query(FixedExpenseModel).filter(
                FixedExpenseModel.id == fixed_expense_id,
                FixedExpenseModel.user_id == self.user_id
            ).first()
            if parent is None:
                raise DatabaseError(
                    "Fixed expense not found",
                    details={"fixed_expense_id": fixed_expense_id}
                )

            override = session.query(FixedExpenseOverrideModel).filter(
                FixedExpenseOverrideModel.fixed_expense_id == fixed_expense_id,
                FixedExpenseOverrideModel.month == month,
                FixedExpenseOverrideModel.year == year
            ).first()

            if override:
                override.override_amount = record.amount
                override.date = date
                override.updated_at = utc_now()
            else:
                session.add(FixedExpenseOverrideModel(
                    user_id=self.user_id,
                    fixed_expense_id=fixed_expense_id,
                    month=month,
                    year=year,
                    override_amount=record.amount,
                    date=date,
                ))

            session.commit()
            logger.info("Fixed expense override saved for %s month %s: %s", fixed_expense_id, month, amount)
            return record
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to upsert fixed expense override: {e}")
            raise DatabaseError("Failed to save fixed expense override", original_error=e) from e
        finally:
            session.close()

    def delete_fixed_expense_override(self, fixed_expense_id: int, month: int, year: int) -> bool:
        """Revert a fixed expense to its base amount for one month."""
        session = self.get_session()
        try:
            deleted = session.query(FixedExpenseOverrideModel).filter(
                FixedExpenseOverrideModel.user_id == self.user_id,
                FixedExpenseOverrideModel.fixed_expense_id == fixed_expense_id,
                FixedExpenseOverrideModel.month == month,
                FixedExpenseOverrideModel.year == year
            ).delete()
            session.commit()
            if deleted:
                logger.info("Fixed expense override cleared for %s month %s", fixed_expense_id, month)
            return bool(deleted)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to delete fixed expense override: {e}")
            raise DatabaseError("Failed to delete fixed expense override", original_error=e) from e
        finally:
            session.close()

    def get_fixed_expenses(self, year: int, session: Optional[Session] = None) -> List[FixedExpenseDefinition]:
        """
        Read fixed expense definitions for a year with their overrides.

        Overrides are attached newest first, so when legacy data holds more
        than one override for a month the most recently updated one wins.
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            rows = session.query(FixedExpenseModel).filter(
                FixedExpenseModel.user_id == self.user_id,
                FixedExpenseModel.year == year
            ).order_by(FixedExpenseModel.id).all()

            definitions: List[FixedExpenseDefinition] = []
            for row in rows:
                try:
                    definitions.append(FixedExpenseDefinition(
                        id=str(row.id),
                        name=row.name,
                        amount=row.amount,
                        applicable_months=tuple(row.applicable_months or ()),
                        year=row.year,
                    ))
                except ValidationError as exc:
                    logger.warning("Skipping invalid fixed expense row %s: %s", row.id, exc)

            override_rows = session.query(FixedExpenseOverrideModel).filter(
                FixedExpenseOverrideModel.user_id == self.user_id,
                FixedExpenseOverrideModel.year == year
            ).order_by(
                FixedExpenseOverrideModel.updated_at.desc(),
                FixedExpenseOverrideModel.id.desc()
            ).all()
            overrides = [_override_record(o) for o in override_rows]
            return attach_overrides(definitions, [o for o in overrides if o is not None])
        except SQLAlchemyError as e:
            logger.error(f"Failed to read fixed expenses: {e}")
            raise DatabaseError("Failed to read fixed expenses", details={"year": year}, original_error=e) from e
        finally:
            if close_session:
                session.close()

    # ------------------------------------------------------------------
    # Income
    # ------------------------------------------------------------------

    def set_income(self, value: float, year: int, key: str = IncomeKey.MONTHLY.value) -> IncomeBase:
        """
        Store the base income for a year.

        Raises:
            ValidationError: If the value or key is invalid
            DatabaseError: If the write fails
        """
        validate_year(year)
        income = IncomeBase(value=value, year=year, key=key)
        session = self.get_session()
        try:
            setting = session.query(SettingModel).filter(
                SettingModel.user_id == self.user_id,
                SettingModel.key == income.key.value,
                SettingModel.year == year
            ).first()
            if setting:
                setting.value = income.value
                setting.updated_at = utc_now()
            else:
                session.add(SettingModel(
                    user_id=self.user_id, key=income.key.value, year=year, value=income.value
                ))
            session.commit()
            logger.info("Income saved for %s (%s): %s", year, income.key.value, income.value)
            return income
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to save income: {e}")
            raise DatabaseError("Failed to save income", original_error=e) from e
        finally:
            session.close()

    def get_income_base(self, year: int, session: Optional[Session] = None) -> Optional[IncomeBase]:
        """
        Read the base income for a year.

        A monthly income setting takes precedence over a yearly one.
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            for key in (IncomeKey.MONTHLY, IncomeKey.YEARLY):
                setting = session.query(SettingModel).filter(
                    SettingModel.user_id == self.user_id,
                    SettingModel.key == key.value,
                    SettingModel.year == year
                ).first()
                if setting is None:
                    continue
                try:
                    return IncomeBase(value=setting.value, year=year, key=key)
                except ValidationError as exc:
                    logger.warning("Ignoring invalid %s setting for %s: %s", key.value, year, exc)
            return None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read income: {e}")
            raise DatabaseError("Failed to read income", details={"year": year}, original_error=e) from e
        finally:
            if close_session:
                session.close()

    def upsert_income_override(
        self,
        month: int,
        year: int,
        amount: float,
        date: Optional[str] = None
    ) -> MonthlyIncomeOverride:
        """Create or update the income override for one month."""
        validate_year(year)
        record = MonthlyIncomeOverride(month=month, year=year, amount=amount, date=date)
        session = self.get_session()
        try:
            override = session.query(MonthlyIncomeOverrideModel).filter(
                MonthlyIncomeOverrideModel.user_id == self.user_id,
                MonthlyIncomeOverrideModel.month == month,
                MonthlyIncomeOverrideModel.year == year
            ).first()

            if override:
                override.override_amount = record.amount
                override.date = date
                override.updated_at = utc_now()
            else:
                session.add(MonthlyIncomeOverrideModel(
                    user_id=self.user_id,
                    month=month,
                    year=year,
                    override_amount=record.amount,
                    date=date,
                ))

            session.commit()
            logger.info("Income override saved for %s-%02d: %s", year, month, amount)
            return record
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to upsert income override: {e}")
            raise DatabaseError("Failed to save income override", original_error=e) from e
        finally:
            session.close()

    def delete_income_override(self, month: int, year: int) -> bool:
        """Delete the income override for one month."""
        session = self.get_session()
        try:
            deleted = session.query(MonthlyIncomeOverrideModel).filter(
                MonthlyIncomeOverrideModel.user_id == self.user_id,
                MonthlyIncomeOverrideModel.month == month,
                MonthlyIncomeOverrideModel.year == year
            ).delete()
            session.commit()
            if deleted:
                logger.info("Income override cleared for %s-%02d", year, month)
            return bool(deleted)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to delete income override: {e}")
            raise DatabaseError("Failed to delete income override", original_error=e) from e
        finally:
            session.close()

    def get_income_overrides(self, year: int, session: Optional[Session] = None) -> List[MonthlyIncomeOverride]:
        """Read income overrides for a year, newest first."""
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            rows = session.query(MonthlyIncomeOverrideModel).filter(
                MonthlyIncomeOverrideModel.user_id == self.user_id,
                MonthlyIncomeOverrideModel.year == year
            ).order_by(
                MonthlyIncomeOverrideModel.updated_at.desc(),
                MonthlyIncomeOverrideModel.id.desc()
            ).all()
            records = [_income_override_record(row) for row in rows]
            return [r for r in records if r is not None]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read income overrides: {e}")
            raise DatabaseError("Failed to read income overrides", details={"year": year}, original_error=e) from e
        finally:
            if close_session:
                session.close()

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def load_snapshot(self, year: int) -> BudgetSnapshot:
        """
        Read every record for a year in a single session.

        Returns:
            BudgetSnapshot to pass to every aggregation call of a request
        """
        validate_year(year)
        session = self.get_session()
        try:
            snapshot = BudgetSnapshot(
                year=year,
                expenses=tuple(self.get_expenses(year, session=session)),
                fixed_expenses=tuple(self.get_fixed_expenses(year, session=session)),
                income=self.get_income_base(year, session=session),
                income_overrides=tuple(self.get_income_overrides(year, session=session)),
            )
            logger.info(
                "Loaded snapshot for %s: %d expenses, %d fixed expenses, %d income overrides",
                year, len(snapshot.expenses), len(snapshot.fixed_expenses), len(snapshot.income_overrides)
            )
            return snapshot
        finally:
            session.close()
