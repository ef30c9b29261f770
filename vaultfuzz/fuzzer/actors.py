"""Fixed, ordered set of simulated users plus reserved sink accounts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterator, Sequence, TypeVar

from vaultfuzz.core.errors import ConfigurationError
from vaultfuzz.sut.deploy import DEAD, TREASURY

T = TypeVar("T")


def actor_address(index: int) -> str:
    return f"0x{index + 1:040x}"


@dataclass(frozen=True)
class ActorRegistry:
    """Immutable after construction; size and identities are fixed for a run."""

    actors: tuple[str, ...]
    dead: str = DEAD
    treasury: str = TREASURY

    def __post_init__(self) -> None:
        if not self.actors:
            raise ConfigurationError("actor registry cannot be empty")
        if len(set(self.actors)) != len(self.actors):
            raise ConfigurationError("actor identities must be unique")
        if self.dead in self.actors or self.treasury in self.actors:
            raise ConfigurationError("sink accounts cannot double as actors")

    @classmethod
    def create(cls, count: int) -> ActorRegistry:
        return cls(actors=tuple(actor_address(i) for i in range(count)))

    def __len__(self) -> int:
        return len(self.actors)

    def __iter__(self) -> Iterator[str]:
        return iter(self.actors)

    def __getitem__(self, index: int) -> str:
        return self.actors[index]

    @property
    def sinks(self) -> tuple[str, str]:
        return (self.dead, self.treasury)

    def pick(self, selector: int) -> str:
        """Deterministically map a random selector onto an actor."""
        return self.actors[selector % len(self.actors)]

    def scan(self, selector: int, predicate: Callable[[str], bool]) -> str | None:
        """First actor satisfying *predicate*, scanning cyclically from ``selector``.

        Visits each actor at most once. Returns ``None`` if nobody qualifies.
        """
        return cyclic_scan(self.actors, selector, predicate)


def cyclic_scan(items: Sequence[T], selector: int, predicate: Callable[[T], bool]) -> T | None:
    """First item satisfying *predicate*, starting at ``selector % len(items)``."""
    size = len(items)
    if size == 0:
        return None
    start = selector % size
    for offset in range(size):
        item = items[(start + offset) % size]
        if predicate(item):
            return item
    return None
