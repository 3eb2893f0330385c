import json
import logging
from clubreach.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Used in local runs and tests; the in-process hub still carries live updates."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        log.info(f"[NOOP BUS] topic={topic} key={key} kind={value.get('kind')} value={json.dumps(value, default=str)}")

    async def close(self) -> None:
        return None
