"""Ghost bookkeeping: outstanding withdrawal requests per actor.

Mutated only by handlers and the settlement hook; never read by the vault.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from vaultfuzz.core.errors import GhostDesyncError


@dataclass(frozen=True)
class GhostRequest:
    owner: str
    request_index: int
    expected_timestamp: int


class GhostStore:
    """Mapping from actor to an unordered list of pending request ids.

    Removal is find-by-id, swap-with-last, pop, so it never shifts the list.
    """

    def __init__(self, actors: Iterable[str]) -> None:
        self._requests: dict[str, list[GhostRequest]] = {actor: [] for actor in actors}
        self._owners: dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._owners)

    def __iter__(self) -> Iterator[GhostRequest]:
        for requests in self._requests.values():
            yield from requests

    def _list(self, owner: str) -> list[GhostRequest]:
        try:
            return self._requests[owner]
        except KeyError:
            raise GhostDesyncError(f"unknown actor {owner!r}") from None

    def add(self, owner: str, request_index: int, expected_timestamp: int) -> GhostRequest:
        requests = self._list(owner)
        if request_index in self._owners:
            raise GhostDesyncError(
                f"request {request_index} already tracked for {self._owners[request_index]}"
            )
        request = GhostRequest(owner, request_index, expected_timestamp)
        requests.append(request)
        self._owners[request_index] = owner
        return request

    def remove(self, owner: str, request_index: int) -> GhostRequest:
        requests = self._list(owner)
        for position, request in enumerate(requests):
            if request.request_index == request_index:
                requests[position] = requests[-1]
                requests.pop()
                del self._owners[request_index]
                return request
        raise GhostDesyncError(f"{owner} has no ghost request {request_index}")

    def requests_of(self, owner: str) -> list[GhostRequest]:
        return list(self._list(owner))

    def ids_of(self, owner: str) -> list[int]:
        return [r.request_index for r in self._list(owner)]

    def has_pending(self, owner: str) -> bool:
        return bool(self._list(owner))

    def owner_of(self, request_index: int) -> str | None:
        return self._owners.get(request_index)

    def latest_maturity(self) -> int:
        return max((r.expected_timestamp for r in self), default=0)

    def snapshot(self) -> dict[str, tuple[int, ...]]:
        return {
            owner: tuple(r.request_index for r in requests)
            for owner, requests in self._requests.items()
        }
