"""
Optimistic reservation over a list of candidates.

There is no client-side lock. Each candidate is tried in order after a short
random delay; the inventory's answer to `reserve` is authoritative:

    READY -> ATTEMPTING -> RESERVED
                  |   ^
          conflict|   |next candidate
                  v   |
               (loop) -> FAILED (fatal error or candidates exhausted)
"""
import random
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

from .exceptions import AllocationExhaustedError, ConflictError, InventoryError
from .inventory import Inventory
from .logger import log_allocation_attempt, log_operation
from .models import ResourceKind


class ReservationState(str, Enum):
    READY = "ready"
    ATTEMPTING = "attempting"
    RESERVED = "reserved"
    FAILED = "failed"


@dataclass(frozen=True)
class Reservation:
    entity_id: int
    candidate: int
    attempts: int


class OptimisticReservation:
    """One allocation request: drives candidates through `reserve` until one sticks."""

    def __init__(
        self,
        inventory: Inventory,
        kind: ResourceKind,
        candidates: Iterable[int],
        attributes: Dict[str, Any],
        name: str = "",
        max_jitter: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        describe: Callable[[int], str] = str,
    ):
        self.inventory = inventory
        self.kind = kind
        self.attributes = attributes
        self.name = name or attributes.get("name", "")
        self.max_jitter = max_jitter
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.describe = describe

        self.state = ReservationState.READY
        self.attempts = 0
        self.result: Optional[Reservation] = None
        self.error: Optional[Exception] = None
        self._pending = deque(candidates)
        self._current: Optional[int] = None

    @property
    def done(self) -> bool:
        return self.state in (ReservationState.RESERVED, ReservationState.FAILED)

    def step(self) -> ReservationState:
        """Run exactly one transition."""
        if self.state is ReservationState.READY:
            self._next_candidate()
        elif self.state is ReservationState.ATTEMPTING:
            self._attempt()
        return self.state

    def run(self) -> Reservation:
        while not self.done:
            self.step()
        if self.state is ReservationState.FAILED:
            raise self.error
        return self.result

    def _next_candidate(self):
        if not self._pending:
            self.error = AllocationExhaustedError(self.kind.value, self.name, self.attempts)
            self.state = ReservationState.FAILED
            log_operation(f"reserve_{self.kind.value}", "exhausted", {"name": self.name, "attempts": self.attempts})
            return
        self._current = self._pending.popleft()
        self.state = ReservationState.ATTEMPTING

    def _attempt(self):
        candidate = self._current
        label = self.describe(candidate)

        # Spread simultaneous callers before hitting the same candidates
        if self.max_jitter > 0:
            self.sleep(self.rng.uniform(0, self.max_jitter))

        self.attempts += 1
        try:
            entity_id = self.inventory.reserve(self.kind, candidate, self.attributes)
        except ConflictError as e:
            log_allocation_attempt(self.kind.value, label, self.attempts, "conflict", {"reason": e.message})
            self.state = ReservationState.READY
            return
        except InventoryError as e:
            if e.write_applied is False:
                log_allocation_attempt(self.kind.value, label, self.attempts, "not_applied", {"reason": e.message})
                self.state = ReservationState.READY
                return
            self._fail(e, label)
            return
        except Exception as e:
            self._fail(e, label)
            return

        self.result = Reservation(entity_id=entity_id, candidate=candidate, attempts=self.attempts)
        self.state = ReservationState.RESERVED
        log_allocation_attempt(self.kind.value, label, self.attempts, "reserved", {"id": entity_id})
        log_operation(f"reserve_{self.kind.value}", "success", {"name": self.name, "candidate": label, "id": entity_id})

    def _fail(self, error: Exception, label: str):
        self.error = error
        self.state = ReservationState.FAILED
        log_allocation_attempt(self.kind.value, label, self.attempts, "failed", {"error": str(error)})
        log_operation(f"reserve_{self.kind.value}", "failed", {"name": self.name, "candidate": label})


def reserve_first_available(
    inventory: Inventory,
    kind: ResourceKind,
    candidates: Iterable[int],
    attributes: Dict[str, Any],
    **options,
) -> Reservation:
    return OptimisticReservation(inventory, kind, candidates, attributes, **options).run()
