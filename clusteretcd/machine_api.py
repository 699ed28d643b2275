"""Detection of a functional Machine API from the master machines it manages."""

from __future__ import annotations

from typing import Callable, Mapping

from .resources import Machine


class MachineAPI:
    """Reports whether the Machine API is functional.

    ``selector`` restricts the machines considered to master machines, in case
    the store holds others.
    """

    def __init__(self, has_synced: Callable[[], bool], store, selector: Mapping[str, str]) -> None:
        self._has_synced = has_synced
        self._store = store
        self._selector = dict(selector)

    def is_functional(self) -> bool:
        """True when at least one master machine is in the Running phase."""
        if not self._has_synced():
            return False
        machines = self._store.list(Machine, self._selector)
        return any((machine.phase or "") == "Running" for machine in machines)