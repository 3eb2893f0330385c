import uuid
import logging
from clubreach.core.channels import Channel
from clubreach.platform.ports.gateway import GatewayPort, SubmitResult
from clubreach.modules.realtime.hub import TopicHub, make_envelope

log = logging.getLogger("gateway.chat")

def inbox_topic(address: str) -> str:
    return f"inbox.{address}"

class InAppChatGateway(GatewayPort):
    """Delivers to a recipient's in-app inbox topic on the realtime hub."""
    channel = Channel.CHAT

    def __init__(self, hub: TopicHub):
        self.hub = hub

    async def submit(self, text: str, address: str, subject: str | None = None) -> SubmitResult:
        provider_id = f"chat-{uuid.uuid4().hex}"
        topic = inbox_topic(address)
        delivered = self.hub.publish(topic, make_envelope("message", topic, provider_id, {"text": text, "subject": subject}))
        log.debug(f"Chat message {provider_id} pushed to {delivered} live viewer(s) of {topic}")
        return SubmitResult(provider_message_id=provider_id)
