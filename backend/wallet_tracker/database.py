from decimal import Decimal
from typing import Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from .config import settings
from .errors import PersistenceError
from .logger import get_logger

logger = get_logger(__name__)


def build_engine(url: str, echo: bool = False):
    """Create an engine; SQLite URLs get settings usable from request threads."""
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=echo, **kwargs)


engine = build_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)


def create_db_and_tables(bind=None) -> None:
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session


class UnitOfWork:
    """
    One database transaction around a multi-row mutation.

    Commits on a clean exit. Any error rolls back every flushed write
    (transaction rows and balances alike), so the database is left exactly
    as it was before the operation started. Storage failures are re-raised
    as PersistenceError; ledger errors propagate unchanged.

    Balances read while the unit is open are remembered so that a failed
    rollback can still be reconciled by hand from the error details.
    """

    def __init__(self, session: Session, operation: str):
        self.session = session
        self.operation = operation
        self.balances_read: Dict[int, Decimal] = {}

    def remember(self, account) -> None:
        self.balances_read.setdefault(account.id, account.balance)

    def _details(self, exc: BaseException) -> dict:
        return {
            "operation": self.operation,
            "reason": str(exc),
            "balances_read": {
                str(account_id): str(balance)
                for account_id, balance in self.balances_read.items()
            },
        }

    def _rollback(self, cause: BaseException) -> None:
        try:
            self.session.rollback()
        except SQLAlchemyError as rollback_exc:
            details = self._details(cause)
            details["compensation_failed"] = True
            logger.error(
                f"Rollback failed during {self.operation}; manual reconciliation "
                f"needed for balances {details['balances_read']}: {rollback_exc}"
            )
            raise PersistenceError(
                f"Failed to {self.operation} and could not restore balances",
                details=details,
            ) from rollback_exc

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            try:
                self.session.commit()
            except SQLAlchemyError as commit_exc:
                logger.error(f"Commit failed during {self.operation}: {commit_exc}")
                self._rollback(commit_exc)
                raise PersistenceError(
                    f"Failed to {self.operation}", details=self._details(commit_exc)
                ) from commit_exc
            return False

        self._rollback(exc)
        if isinstance(exc, SQLAlchemyError):
            logger.error(f"Storage error during {self.operation}, rolled back: {exc}")
            raise PersistenceError(
                f"Failed to {self.operation}", details=self._details(exc)
            ) from exc
        return False
