"""Partition a doctor's day into available and booked hourly slots."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol, TypeVar

from medibook.core import config
from medibook.scheduling.slots import BUSINESS_HOURS, format_instant, is_day_available, slot_instant

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SlotChecker(Protocol):
    async def check_slot_available(self, doctor_id: str, instant: datetime) -> bool:
        ...


@dataclass(frozen=True)
class SlotPartition:
    day: date
    available: tuple[str, ...] = ()
    booked: tuple[str, ...] = ()

    @classmethod
    def closed(cls, day: date) -> 'SlotPartition':
        return cls(day=day, available=(), booked=BUSINESS_HOURS)

    @classmethod
    def open(cls, day: date) -> 'SlotPartition':
        return cls(day=day, available=BUSINESS_HOURS, booked=())

    def is_available(self, label: str) -> bool:
        return label in self.available


async def gather_bounded(
    factories: Sequence[Callable[[], Awaitable[T]]],
    limit: int,
) -> list[T | BaseException]:
    """Run every factory with at most ``limit`` in flight and wait for all of them.

    Results come back in input order; a task that raised contributes its
    exception instead of a value.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    return await asyncio.gather(*(run(factory) for factory in factories), return_exceptions=True)


class AvailabilityResolver:
    def __init__(self, checker: SlotChecker, concurrency: int | None = None):
        self.checker = checker
        self.concurrency = concurrency or config.SLOT_CHECK_CONCURRENCY

    async def check_slot(self, doctor_id: str, day: date, label: str) -> bool:
        return await self.checker.check_slot_available(doctor_id, slot_instant(day, label))

    async def resolve(self, doctor_id: str, availability: Iterable[str], day: date) -> SlotPartition:
        if not is_day_available(availability, day):
            return SlotPartition.closed(day)

        try:
            results = await self._check_all(doctor_id, day)
        except Exception:
            logger.exception('Slot checks for doctor %s on %s failed; showing every slot', doctor_id, day)
            return SlotPartition.open(day)

        available: list[str] = []
        booked: list[str] = []
        for label, result in zip(BUSINESS_HOURS, results):
            if isinstance(result, BaseException):
                logger.warning(
                    'Slot check for doctor %s at %s failed (%s); treating it as available',
                    doctor_id, format_instant(slot_instant(day, label)), result,
                )
                available.append(label)
            elif result:
                available.append(label)
            else:
                booked.append(label)

        return SlotPartition(day=day, available=tuple(available), booked=tuple(booked))

    async def _check_all(self, doctor_id: str, day: date) -> list[Any]:
        factories = [
            (lambda label=label: self.check_slot(doctor_id, day, label))
            for label in BUSINESS_HOURS
        ]
        return await gather_bounded(factories, self.concurrency)
