"""
Unit of work: stages writes and commits them together.

Writes are registered with add() and only reach the database in
save_changes(actor_tag), which also records an audit entry for the
change-set. Two modes, mutually exclusive:

- transactional: every staged write plus the audit entry runs inside one
  MongoDB multi-document transaction. Nothing is retried; any failure
  aborts the transaction and nothing is persisted. Used as an async
  context manager, the transaction opens on entry so reads made with
  uow.session see the snapshot the writes commit against; leaving the
  block without save_changes aborts it.
- retrying (transactional=False): writes are flushed one by one and
  transient errors are retried per statement. Used by bulk operations that
  trade atomicity for throughput. Writes staged under the same group key
  are flushed together: if one of them fails, the undo operations of the
  ones already written run in reverse order, the group is recorded in
  failed_groups and the remaining groups are still written.

Retrying a statement inside an open transaction after partial effects is
unsafe, so asking for both raises ValueError.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Hashable, List, NamedTuple, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from poultry_pos.core.config import settings
from poultry_pos.core.errors import is_retryable
from poultry_pos.repositories.audit_repo import AuditLogRepository
from poultry_pos.repositories.customer_repo import CustomerRepository
from poultry_pos.repositories.invoice_repo import InvoiceRepository
from poultry_pos.repositories.payment_repo import PaymentRepository
from poultry_pos.repositories.stores import AuditStore, CustomerStore, InvoiceStore, PaymentStore

logger = logging.getLogger(__name__)

# Called with session=<client session or None>
Operation = Callable[..., Awaitable[Any]]


class Change(NamedTuple):
    description: str
    operation: Operation
    group: Optional[Hashable] = None
    undo: Optional[Operation] = None


class UnitOfWork:
    def __init__(
        self,
        customers: CustomerStore,
        invoices: InvoiceStore,
        payments: PaymentStore,
        audit: AuditStore,
        client: Optional[AsyncIOMotorClient] = None,
        *,
        transactional: bool = True,
        retry_attempts: int = 0,
        retry_backoff: float = settings.RETRY_BACKOFF_SECONDS,
    ):
        if transactional and retry_attempts:
            raise ValueError("Statement retries cannot be combined with an explicit transaction")
        if transactional and client is None:
            raise ValueError("A database client is required for transactional saves")
        if retry_attempts < 0:
            raise ValueError("retry_attempts must be >= 0")

        self.customers = customers
        self.invoices = invoices
        self.payments = payments
        self.audit = audit
        self.transactional = transactional
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.failed_groups: Dict[Hashable, BaseException] = {}
        self._client = client
        self._session: Any = None
        self._transaction_open = False
        self._pending: List[Change] = []

    @property
    def session(self) -> Any:
        """Session of the open transaction; reads pass it to see the same snapshot."""
        return self._session if self._transaction_open else None

    @property
    def has_changes(self) -> bool:
        return bool(self._pending)

    @property
    def pending_changes(self) -> List[str]:
        return [change.description for change in self._pending]

    def add(
        self,
        description: str,
        operation: Operation,
        *,
        group: Optional[Hashable] = None,
        undo: Optional[Operation] = None,
    ) -> None:
        """Stage a write; operation is awaited with session=... at commit."""
        self._pending.append(Change(description, operation, group, undo))

    def discard(self) -> None:
        if self._pending:
            logger.warning("Discarding %d uncommitted change(s): %s", len(self._pending), self.pending_changes)
        self._pending = []

    async def save_changes(self, actor_tag: str) -> int:
        """Commit all staged writes and return how many were written."""
        self.failed_groups = {}
        if not self._pending:
            return 0

        pending, self._pending = self._pending, []

        if self.transactional:
            changes = [change.description for change in pending]
            if self._transaction_open:
                await self._apply(pending, actor_tag, changes, self._session)
                # A failed commit cannot be aborted afterwards
                self._transaction_open = False
                await self._session.commit_transaction()
            else:
                async with await self._client.start_session() as session:
                    async with session.start_transaction():
                        await self._apply(pending, actor_tag, changes, session)
        else:
            changes = await self._flush(pending)
            if changes:
                await self._run_with_retry("audit", partial(self.audit.record, actor_tag, changes))

        logger.info("Committed %d change(s) as %s", len(changes), actor_tag)
        return len(changes)

    async def _apply(self, pending: List[Change], actor_tag: str, changes: List[str], session: Any) -> None:
        for change in pending:
            await change.operation(session=session)
        await self.audit.record(actor_tag, changes, session=session)

    async def _flush(self, pending: List[Change]) -> List[str]:
        written = []
        for group, changes in _grouped(pending):
            try:
                await self._flush_group(changes)
            except Exception as exc:
                if group is None:
                    raise
                logger.warning("Group %s was not written: %s", group, exc)
                self.failed_groups[group] = exc
                continue
            written.extend(change.description for change in changes)
        return written

    async def _flush_group(self, changes: List[Change]) -> None:
        done: List[Change] = []
        for change in changes:
            try:
                await self._run_with_retry(change.description, change.operation)
            except Exception:
                for applied in reversed(done):
                    if applied.undo is not None:
                        await self._undo(applied)
                raise
            done.append(change)

    async def _undo(self, change: Change) -> None:
        try:
            await self._run_with_retry(f"undo {change.description}", change.undo)
        except Exception:
            logger.exception("Could not undo %s; the stored data needs a manual fix", change.description)

    async def _run_with_retry(self, description: str, operation: Operation) -> Any:
        attempt = 0
        while True:
            try:
                return await operation(session=None)
            except Exception as exc:
                if attempt >= self.retry_attempts or not is_retryable(exc):
                    raise
                attempt += 1
                logger.warning(
                    "Transient error on %s (attempt %d/%d): %s",
                    description, attempt, self.retry_attempts, exc,
                )
                await asyncio.sleep(self.retry_backoff * attempt)

    async def __aenter__(self) -> "UnitOfWork":
        # Transactional work reads and writes inside one transaction from the start
        if self.transactional:
            self._session = await self._client.start_session()
            self._session.start_transaction()
            self._transaction_open = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        # Anything still staged was never committed
        self.discard()
        session, self._session = self._session, None
        if session is not None:
            try:
                if self._transaction_open:
                    await session.abort_transaction()
            finally:
                self._transaction_open = False
                await session.end_session()
        return False


def _grouped(pending: List[Change]) -> List[Tuple[Optional[Hashable], List[Change]]]:
    """Changes split into groups in staging order; ungrouped changes stand alone."""
    groups: List[Tuple[Optional[Hashable], List[Change]]] = []
    index: Dict[Hashable, int] = {}
    for change in pending:
        if change.group is None:
            groups.append((None, [change]))
        elif change.group in index:
            groups[index[change.group]][1].append(change)
        else:
            index[change.group] = len(groups)
            groups.append((change.group, [change]))
    return groups


def make_unit_of_work(
    db: AsyncIOMotorDatabase,
    *,
    transactional: bool = True,
) -> UnitOfWork:
    """Unit of work over the Motor repositories; bulk callers pass transactional=False."""
    return UnitOfWork(
        customers=CustomerRepository(db),
        invoices=InvoiceRepository(db),
        payments=PaymentRepository(db),
        audit=AuditLogRepository(db),
        client=db.client,
        transactional=transactional,
        retry_attempts=0 if transactional else settings.BULK_RETRY_ATTEMPTS,
    )
