import uuid
import logging
from clubreach.core.channels import Channel
from clubreach.platform.ports.gateway import GatewayPort, SubmitResult

log = logging.getLogger("gateway.log")

class LoggingGateway(GatewayPort):
    """Stand-in for a channel whose provider credentials are not configured (local dev)."""

    def __init__(self, channel: Channel):
        self.channel = channel

    async def submit(self, text: str, address: str, subject: str | None = None) -> SubmitResult:
        log.info(f"[{self.channel.value.upper()} NOT CONFIGURED] would send to {address}: {text}")
        return SubmitResult(provider_message_id=f"log-{uuid.uuid4().hex}")
