from typing import Protocol, runtime_checkable


@runtime_checkable
class EventBusPort(Protocol):
    """Durable outbound channel for outbox rows; topics are `event.<id>`, `inbox.<recipient>` or `operators`."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...

    async def close(self) -> None: ...
