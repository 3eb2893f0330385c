from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from clubreach.core.channels import Channel

@dataclass
class SubmitResult:
    provider_message_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

@runtime_checkable
class GatewayPort(Protocol):
    channel: Channel
    async def submit(self, text: str, address: str, subject: str | None = None) -> SubmitResult: ...
