"""Capabilities the compliance engine consumes from its host.

Each provider is a structural ``Protocol``; any object with the listed
methods can be injected. Storage technology, sanctions matching and event
transport all live behind these seams.
"""

from typing import Protocol, runtime_checkable

from .models import Party, SanctionsResult, SAREvent, SuspiciousActivityReport


@runtime_checkable
class PartyProvider(Protocol):
    def get_party(self, party_id: str) -> Party | None: ...


@runtime_checkable
class SanctionsProvider(Protocol):
    def get_sanctions_result(self, party: Party) -> SanctionsResult | None: ...


@runtime_checkable
class SARRepository(Protocol):
    def load(self, sar_id: str) -> SuspiciousActivityReport | None: ...

    def save(self, sar: SuspiciousActivityReport) -> None: ...

    def exists(self, sar_id: str) -> bool: ...


@runtime_checkable
class EventSink(Protocol):
    def publish(self, event: SAREvent) -> None: ...


class InMemorySARRepository:
    """Dict-backed repository. Keeps every saved version for audit."""

    def __init__(self) -> None:
        self._current: dict[str, SuspiciousActivityReport] = {}
        self._history: dict[str, list[SuspiciousActivityReport]] = {}

    def load(self, sar_id: str) -> SuspiciousActivityReport | None:
        return self._current.get(sar_id)

    def save(self, sar: SuspiciousActivityReport) -> None:
        self._current[sar.sar_id] = sar
        self._history.setdefault(sar.sar_id, []).append(sar)

    def exists(self, sar_id: str) -> bool:
        return sar_id in self._current

    def history(self, sar_id: str) -> list[SuspiciousActivityReport]:
        return list(self._history.get(sar_id, []))

    def __len__(self) -> int:
        return len(self._current)


class InMemoryPartyProvider:
    def __init__(self, parties: list[Party] | None = None) -> None:
        self._parties = {p.party_id: p for p in parties or []}

    def add(self, party: Party) -> None:
        self._parties[party.party_id] = party

    def get_party(self, party_id: str) -> Party | None:
        return self._parties.get(party_id)


class CollectingEventSink:
    """Keeps published events in memory, in publish order."""

    def __init__(self) -> None:
        self.events: list[SAREvent] = []

    def publish(self, event: SAREvent) -> None:
        self.events.append(event)
