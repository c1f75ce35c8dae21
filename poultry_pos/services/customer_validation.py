"""
Live validation for the customer entry form.

Each edit restarts a debounce for its field; when input has been quiet for
VALIDATION_DEBOUNCE_MS the field is checked structurally and then for
uniqueness against the store. Every edit bumps a per-field generation, and
results computed for an older generation are dropped, so a slow lookup can
never overwrite the state of newer input.

The pipeline is the only writer of its state. Consumers read
`pipeline.snapshot` or subscribe to a queue that receives an immutable
ValidationSnapshot after every transition.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.errors import PyMongoError

from poultry_pos.core.config import settings
from poultry_pos.models.customer import Customer
from poultry_pos.repositories.stores import CustomerStore
from poultry_pos.utils.customer_rules import check_address, check_name, check_phone, normalize_text

logger = logging.getLogger(__name__)

CUSTOMER_NAME = "customer_name"
PHONE_NUMBER = "phone_number"
ADDRESS = "address"

FIELDS = (CUSTOMER_NAME, PHONE_NUMBER, ADDRESS)
DEBOUNCED_FIELDS = (CUSTOMER_NAME, PHONE_NUMBER)

DUPLICATE_NAME = "A customer with this name already exists."
DUPLICATE_PHONE = "This phone number is already used by another customer."
DATABASE_CHECKS_DISABLED = "Database checks are unavailable; only basic validation is applied."
SUBMIT_TIMEOUT = "Validation did not finish in time. Please try again."
LOOKUP_FAILED = "Could not check this value against existing customers. Please try again."


class FieldState(str, Enum):
    IDLE = "IDLE"
    PENDING_DEBOUNCE = "PENDING_DEBOUNCE"
    VALIDATING = "VALIDATING"
    VALID = "VALID"
    INVALID = "INVALID"


@dataclass(frozen=True)
class FieldStatus:
    state: FieldState = FieldState.IDLE
    errors: Tuple[str, ...] = ()
    generation: int = 0

    @property
    def is_busy(self) -> bool:
        return self.state in (FieldState.PENDING_DEBOUNCE, FieldState.VALIDATING)


@dataclass(frozen=True)
class ValidationSnapshot:
    customer_name: FieldStatus = field(default_factory=FieldStatus)
    phone_number: FieldStatus = field(default_factory=FieldStatus)
    address: FieldStatus = field(default_factory=FieldStatus)
    warning: Optional[str] = None
    is_saving: bool = False
    is_loading: bool = False
    is_structurally_complete: bool = False

    @property
    def fields(self) -> Dict[str, FieldStatus]:
        return {name: getattr(self, name) for name in FIELDS}

    @property
    def errors(self) -> List[str]:
        return [error for status in self.fields.values() for error in status.errors]

    @property
    def has_validation_errors(self) -> bool:
        return any(status.errors for status in self.fields.values())

    @property
    def is_validating(self) -> bool:
        return any(status.is_busy for status in self.fields.values())

    @property
    def can_save(self) -> bool:
        return (
            not self.has_validation_errors
            and not self.is_saving
            and not self.is_validating
            and not self.is_loading
            and self.is_structurally_complete
        )


def _structural_errors(field_name: str, value: str) -> List[str]:
    if field_name == CUSTOMER_NAME:
        return check_name(value)
    if field_name == PHONE_NUMBER:
        return check_phone(value)
    return check_address(value)


class CustomerValidationPipeline:
    # Shared by every form in the process; switched off the first time the
    # store is unreachable.
    database_checks_enabled: ClassVar[bool] = True

    def __init__(
        self,
        customers: CustomerStore,
        editing_id: Optional[ObjectId] = None,
        debounce_ms: int = settings.VALIDATION_DEBOUNCE_MS,
        submit_timeout: float = settings.SUBMIT_VALIDATION_TIMEOUT_SECONDS,
    ):
        self._customers = customers
        self.editing_id = editing_id
        self.debounce_seconds = debounce_ms / 1000
        self.submit_timeout = submit_timeout

        self._values: Dict[str, str] = {name: "" for name in FIELDS}
        self._status: Dict[str, FieldStatus] = {name: FieldStatus() for name in FIELDS}
        self._generations: Dict[str, int] = {name: 0 for name in FIELDS}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._subscribers: List[asyncio.Queue] = []
        self._warning: Optional[str] = None
        self._saving = False
        self._loading = False
        self.snapshot = ValidationSnapshot()

    @classmethod
    def enable_database_checks(cls) -> None:
        cls.database_checks_enabled = True

    @property
    def values(self) -> Dict[str, str]:
        return dict(self._values)

    # ---- Subscription -----------------------------------------------------

    def subscribe(self) -> asyncio.Queue:
        """Queue that receives the current snapshot now and every later one."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self.snapshot)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self) -> None:
        self.snapshot = ValidationSnapshot(
            warning=self._warning,
            is_saving=self._saving,
            is_loading=self._loading,
            is_structurally_complete=self._is_structurally_complete(),
            **self._status,
        )
        for queue in self._subscribers:
            queue.put_nowait(self.snapshot)

    def _is_structurally_complete(self) -> bool:
        return not any(_structural_errors(name, self._values[name]) for name in FIELDS)

    # ---- Edits ------------------------------------------------------------

    def edit(self, field_name: str, value: Optional[str]) -> None:
        """Record new input for a field; must be called from the event loop."""
        if field_name not in FIELDS:
            raise ValueError(f"Unknown field: {field_name}")

        self._values[field_name] = value or ""
        generation = self._supersede(field_name)

        if field_name == ADDRESS:
            errors = check_address(value)
            state = FieldState.INVALID if errors else FieldState.VALID
            self._transition(field_name, generation, state, errors)
            return

        self._transition(field_name, generation, FieldState.PENDING_DEBOUNCE)
        self._tasks[field_name] = asyncio.create_task(self._debounce(field_name, generation))

    def load(self, customer: Customer) -> None:
        """Fill the form from an existing customer being edited."""
        self.set_loading(True)
        try:
            self.editing_id = customer.id
            for name in FIELDS:
                value = getattr(customer, name) or ""
                self._values[name] = value
                generation = self._supersede(name)
                errors = _structural_errors(name, value)
                state = FieldState.INVALID if errors else FieldState.VALID
                self._transition(name, generation, state, errors)
        finally:
            self.set_loading(False)

    def _supersede(self, field_name: str) -> int:
        self._generations[field_name] += 1
        task = self._tasks.pop(field_name, None)
        if task is not None and not task.done():
            task.cancel()
        return self._generations[field_name]

    def _transition(
        self,
        field_name: str,
        generation: int,
        state: FieldState,
        errors: Optional[List[str]] = None,
    ) -> bool:
        """Apply a field state unless a newer edit has superseded it."""
        if generation != self._generations[field_name]:
            return False
        self._status[field_name] = FieldStatus(state, tuple(errors or ()), generation)
        self._publish()
        return True

    # ---- Validation -------------------------------------------------------

    async def _debounce(self, field_name: str, generation: int) -> None:
        await asyncio.sleep(self.debounce_seconds)
        await self._validate(field_name, generation)

    async def _validate(self, field_name: str, generation: int) -> None:
        if generation != self._generations[field_name]:
            return

        value = self._values[field_name]
        errors = _structural_errors(field_name, value)
        if errors:
            self._transition(field_name, generation, FieldState.INVALID, errors)
            return

        self._transition(field_name, generation, FieldState.VALIDATING)
        errors = await self._uniqueness_errors(field_name, value)
        state = FieldState.INVALID if errors else FieldState.VALID
        if not self._transition(field_name, generation, state, errors):
            logger.debug("Dropped stale %s result for generation %d", field_name, generation)

    async def _uniqueness_errors(self, field_name: str, value: str) -> List[str]:
        value = normalize_text(value)
        if not value or not CustomerValidationPipeline.database_checks_enabled:
            return []

        try:
            if field_name == CUSTOMER_NAME:
                match = await self._customers.get_by_name(value, exclude_id=self.editing_id)
                return [DUPLICATE_NAME] if match else []
            match = await self._customers.get_by_phone(value, exclude_id=self.editing_id)
            return [DUPLICATE_PHONE] if match else []
        except PyMongoError as exc:
            logger.warning(
                "Database validation failed for %s, continuing with basic validation: %s",
                field_name, exc,
            )
            CustomerValidationPipeline.database_checks_enabled = False
            self._warning = DATABASE_CHECKS_DISABLED
            return []
        except Exception:
            logger.exception("Uniqueness check for %s failed", field_name)
            return [LOOKUP_FAILED]

    async def validate_for_submit(self) -> bool:
        """
        Validate every field now, bypassing the debounce.

        Pending debounces are cancelled and the checks re-run with a bounded
        wait; a timeout rejects the save.
        """
        generations = {name: self._supersede(name) for name in DEBOUNCED_FIELDS}
        address_generation = self._supersede(ADDRESS)
        address_errors = check_address(self._values[ADDRESS])
        self._transition(
            ADDRESS,
            address_generation,
            FieldState.INVALID if address_errors else FieldState.VALID,
            address_errors,
        )

        try:
            await asyncio.wait_for(
                asyncio.gather(*(self._validate(name, generations[name]) for name in DEBOUNCED_FIELDS)),
                timeout=self.submit_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Customer validation exceeded %ss; save rejected", self.submit_timeout)
            for name in DEBOUNCED_FIELDS:
                if self._status[name].is_busy:
                    self._transition(name, generations[name], FieldState.INVALID, [SUBMIT_TIMEOUT])
            return False

        return not self.snapshot.has_validation_errors and self.snapshot.is_structurally_complete

    # ---- Save gate --------------------------------------------------------

    def set_saving(self, saving: bool) -> None:
        self._saving = saving
        self._publish()

    def set_loading(self, loading: bool) -> None:
        self._loading = loading
        self._publish()

    @property
    def can_save(self) -> bool:
        return self.snapshot.can_save

    def close(self) -> None:
        """Cancel any outstanding validation."""
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        self._tasks.clear()

    def reset(self) -> None:
        """Clear the form and give the database checks another chance."""
        self.close()
        for name in FIELDS:
            self._values[name] = ""
            self._generations[name] += 1
            self._status[name] = FieldStatus(generation=self._generations[name])
        self._warning = None
        self._saving = False
        self._loading = False
        CustomerValidationPipeline.enable_database_checks()
        self._publish()
