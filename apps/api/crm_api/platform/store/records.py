from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

from opentelemetry import trace
from sqlalchemy import ColumnElement, delete, inspect, select, update
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from crm_api.core.database import Base
from crm_api.metrics import observe_store_condition_failure, observe_store_retry
from crm_api.platform.security.errors import Conflict, StoreUnavailable, ValidationFailed


logger = logging.getLogger("crm_api.store")
tracer = trace.get_tracer("crm_api.store")

ModelT = TypeVar("ModelT", bound=Base)
ResultT = TypeVar("ResultT")


class WriteOutcome(StrEnum):
    APPLIED = "applied"
    CONDITION_FAILED = "condition_failed"


@dataclass(slots=True)
class WriteResult(Generic[ModelT]):
    outcome: WriteOutcome
    record: ModelT | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == WriteOutcome.APPLIED


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


class RecordStore:
    """Key-addressed access to the relational store with conditional writes.

    Every call runs in its own short transaction. Conditional writes report
    their outcome as a ``WriteResult`` instead of raising, transient driver
    failures are retried, and nothing from SQLAlchemy escapes: callers only
    ever see ``Conflict``, ``ValidationFailed`` or ``StoreUnavailable``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        retry_attempts: int = 3,
        retry_wait_max_seconds: float = 2.0,
    ) -> None:
        self._session_factory = session_factory
        self._retry_attempts = max(1, retry_attempts)
        self._retry_wait_max_seconds = retry_wait_max_seconds

    async def get(self, model: type[ModelT], key: Any) -> ModelT | None:
        async def work(session: AsyncSession) -> ModelT | None:
            return await session.get(model, key)

        return await self._run("get", model, work)

    async def find_one(self, model: type[ModelT], *criteria: ColumnElement[bool]) -> ModelT | None:
        async def work(session: AsyncSession) -> ModelT | None:
            return (await session.scalars(select(model).where(*criteria).limit(1))).first()

        return await self._run("find_one", model, work)

    async def query(
        self,
        model: type[ModelT],
        *criteria: ColumnElement[bool],
        order_by: Any = None,
    ) -> list[ModelT]:
        async def work(session: AsyncSession) -> list[ModelT]:
            stmt = select(model).where(*criteria)
            if order_by is not None:
                stmt = stmt.order_by(order_by)
            return list((await session.scalars(stmt)).all())

        return await self._run("query", model, work)

    async def put_if_absent(self, record: ModelT) -> WriteResult[ModelT]:
        async def work(session: AsyncSession) -> WriteResult[ModelT]:
            session.add(record)
            await session.flush()
            return WriteResult(WriteOutcome.APPLIED, record)

        try:
            return await self._run("put_if_absent", type(record), work)
        except Conflict:
            observe_store_condition_failure(record.__tablename__, "put_if_absent")
            return WriteResult(WriteOutcome.CONDITION_FAILED)

    async def update_where(
        self,
        model: type[ModelT],
        key: Any,
        expected: dict[str, Any],
        values: dict[str, Any],
    ) -> WriteResult[ModelT]:
        """Apply ``values`` to the row at ``key`` only if it matches ``expected``."""

        pk = self._primary_key(model)
        missing = self._nulled_required(model, values)
        if missing:
            raise ValidationFailed(
                "Required fields cannot be null", details={"table": model.__tablename__, "fields": missing}
            )

        async def work(session: AsyncSession) -> WriteResult[ModelT]:
            stmt = (
                update(model)
                .where(pk == key, *self._conditions(model, expected))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                return WriteResult(WriteOutcome.CONDITION_FAILED)
            refreshed = await session.get(model, key, populate_existing=True)
            return WriteResult(WriteOutcome.APPLIED, refreshed)

        outcome = await self._run("update_where", model, work)
        if not outcome.applied:
            observe_store_condition_failure(model.__tablename__, "update_where")
        return outcome

    async def delete_where(
        self,
        model: type[ModelT],
        key: Any,
        expected: dict[str, Any] | None = None,
    ) -> WriteResult[ModelT]:
        pk = self._primary_key(model)

        async def work(session: AsyncSession) -> WriteResult[ModelT]:
            stmt = delete(model).where(pk == key, *self._conditions(model, expected or {}))
            result = await session.execute(stmt.execution_options(synchronize_session=False))
            if result.rowcount == 0:
                return WriteResult(WriteOutcome.CONDITION_FAILED)
            return WriteResult(WriteOutcome.APPLIED)

        outcome = await self._run("delete_where", model, work)
        if not outcome.applied:
            observe_store_condition_failure(model.__tablename__, "delete_where")
        return outcome

    async def delete_many(self, model: type[ModelT], *criteria: ColumnElement[bool]) -> int:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(delete(model).where(*criteria).execution_options(synchronize_session=False))
            return int(result.rowcount or 0)

        return await self._run("delete_many", model, work)

    async def _run(
        self,
        operation: str,
        model: type[Base],
        work: Callable[[AsyncSession], Awaitable[ResultT]],
    ) -> ResultT:
        table = model.__tablename__
        with tracer.start_as_current_span(f"store.{operation}") as span:
            span.set_attribute("db.table", table)
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self._retry_attempts),
                    wait=wait_exponential(multiplier=0.05, max=self._retry_wait_max_seconds),
                    retry=retry_if_exception(_is_transient),
                    before_sleep=self._log_retry(operation, table),
                    reraise=True,
                ):
                    with attempt:
                        async with self._session_factory() as session:
                            async with session.begin():
                                return await work(session)
            except IntegrityError as exc:
                raise Conflict("Record conflicts with an existing record", details={"table": table}) from exc
            except DataError as exc:
                raise ValidationFailed(details={"table": table}) from exc
            except SQLAlchemyError as exc:
                logger.error(
                    "store_unavailable",
                    extra={"entity_type": table, "reason": operation, "error": str(exc)},
                )
                raise StoreUnavailable(details={"table": table, "operation": operation}) from exc
        raise StoreUnavailable(details={"table": table, "operation": operation})

    @staticmethod
    def _log_retry(operation: str, table: str) -> Callable[[RetryCallState], None]:
        def before_sleep(state: RetryCallState) -> None:
            observe_store_retry(operation)
            error = state.outcome.exception() if state.outcome is not None else None
            logger.warning(
                "store_retry",
                extra={
                    "entity_type": table,
                    "reason": operation,
                    "attempt": state.attempt_number,
                    "error": str(error) if error is not None else None,
                },
            )

        return before_sleep

    @staticmethod
    def _primary_key(model: type[Base]) -> Any:
        return inspect(model).primary_key[0]

    @staticmethod
    def _conditions(model: type[Base], expected: dict[str, Any]) -> list[ColumnElement[bool]]:
        return [getattr(model, name) == value for name, value in expected.items()]

    @staticmethod
    def _nulled_required(model: type[Base], values: dict[str, Any]) -> list[str]:
        columns = model.__table__.columns
        return sorted(name for name, value in values.items() if value is None and name in columns and not columns[name].nullable)
