"""Counterexample minimization for failing sequences.

Two passes, repeated until neither makes progress or the replay budget runs
out:

  1. Delta debugging: remove chunks of calls, halving the chunk size each
     round, keeping any removal that still reproduces the failure.
  2. Argument simplification: replace each raw argument with 0, 1 or half
     its value, keeping any replacement that still reproduces.

Every candidate is re-executed from scratch against a fresh system.
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import TYPE_CHECKING, Callable

from vaultfuzz.fuzzer.handlers import RawArgs

if TYPE_CHECKING:
    from vaultfuzz.fuzzer.driver import HandlerCall

logger = logging.getLogger(__name__)

# Returns the executed calls if the candidate reproduces the failure, else None.
Reproducer = Callable[["list[HandlerCall]"], "list[HandlerCall] | None"]

_RAW_FIELDS = tuple(f.name for f in fields(RawArgs))


class ShrinkBudgetExhausted(Exception):
    pass


class SequenceShrinker:
    def __init__(self, reproduce: Reproducer, max_replays: int = 500) -> None:
        self._reproduce = reproduce
        self._max_replays = max_replays
        self.replays = 0
        self._best: list[HandlerCall] = []

    def _try(self, candidate: list[HandlerCall]) -> list[HandlerCall] | None:
        if self.replays >= self._max_replays:
            raise ShrinkBudgetExhausted
        self.replays += 1
        executed = self._reproduce(candidate)
        if executed is not None:
            self._best = executed
        return executed

    def shrink(self, calls: list[HandlerCall]) -> list[HandlerCall]:
        transitions = list(calls)
        original = len(transitions)
        self._best = transitions
        try:
            while True:
                before = _weight(transitions)
                transitions = self._remove_chunks(transitions)
                transitions = self._simplify_arguments(transitions)
                if _weight(transitions) >= before:
                    break
        except ShrinkBudgetExhausted:
            transitions = self._best
            logger.info("Shrink budget of %d replays exhausted", self._max_replays)

        logger.info(
            "Minimized sequence: %d → %d calls in %d replays",
            original, len(transitions), self.replays,
        )
        return transitions

    def _remove_chunks(self, transitions: list[HandlerCall]) -> list[HandlerCall]:
        chunk_size = max(1, len(transitions) // 2)
        while chunk_size >= 1:
            i = 0
            while i < len(transitions):
                candidate = transitions[:i] + transitions[i + chunk_size:]
                executed = self._try(candidate) if candidate else None
                if executed is not None:
                    transitions = executed
                else:
                    i += chunk_size
            chunk_size //= 2
        return transitions

    def _simplify_arguments(self, transitions: list[HandlerCall]) -> list[HandlerCall]:
        index = 0
        while index < len(transitions):
            for name in _RAW_FIELDS:
                current = getattr(transitions[index].raw, name)
                for simpler in _simpler_values(current):
                    call = transitions[index]
                    candidate = list(transitions)
                    candidate[index] = replace(call, raw=replace(call.raw, **{name: simpler}))
                    executed = self._try(candidate)
                    if executed is not None:
                        transitions = executed
                        break
                if index >= len(transitions):
                    break
            index += 1
        return transitions


def _simpler_values(value: int) -> list[int]:
    return [v for v in dict.fromkeys((0, 1, value // 2)) if v < value]


def _weight(calls: list[HandlerCall]) -> tuple[int, int]:
    return len(calls), sum(sum(c.raw.as_list()) for c in calls)
