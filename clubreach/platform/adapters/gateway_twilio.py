import asyncio
import logging
from twilio.rest import Client
from twilio.http.http_client import TwilioHttpClient
from twilio.base.exceptions import TwilioRestException
from clubreach.core.channels import Channel
from clubreach.platform.ports.gateway import GatewayPort, SubmitResult

log = logging.getLogger("gateway.sms")

class TwilioSmsGateway(GatewayPort):
    channel = Channel.SMS

    def __init__(self, account_sid: str, auth_token: str, from_number: str, *,
                 status_callback: str | None = None, timeout: float | None = None, max_retries: int | None = None,
                 client: Client | None = None):
        self.from_number = from_number
        self.status_callback = status_callback
        # TwilioHttpClient retries at the transport level; nothing above this layer retries
        self.client = client or Client(account_sid, auth_token, http_client=TwilioHttpClient(timeout=timeout, max_retries=max_retries))

    async def submit(self, text: str, address: str, subject: str | None = None) -> SubmitResult:
        kwargs = {"body": text, "from_": self.from_number, "to": address}
        if self.status_callback:
            kwargs["status_callback"] = self.status_callback
        try:
            # the SDK is blocking; keep it off the event loop
            msg = await asyncio.to_thread(self.client.messages.create, **kwargs)
        except TwilioRestException as e:
            log.warning(f"Twilio rejected SMS to {address}: {e.status} {e.msg}")
            return SubmitResult(error=f"twilio {e.status}: {e.msg}")
        log.info(f"SMS submitted to {address} sid={msg.sid}")
        return SubmitResult(provider_message_id=msg.sid)
