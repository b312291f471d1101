"""Service-account client id allocation.

Client ids are the configured prefix followed by the next value of a
database sequence. The sequence increment is the only shared mutable state
of service-account creation; it is delegated to the store's atomic
nextval, never read-modified-written here.
"""

from typing import Protocol


class ClientSequenceSource(Protocol):
    """Anything that hands out an atomically incremented sequence value."""

    async def next_client_sequence(self) -> int: ...


class ClientIdAllocator:
    """Issues collision-free client ids of the form <prefix><sequence>."""

    def __init__(self, source: ClientSequenceSource, prefix: str) -> None:
        self._source = source
        self._prefix = prefix

    async def allocate(self) -> str:
        value = await self._source.next_client_sequence()
        return f"{self._prefix}{value}"
