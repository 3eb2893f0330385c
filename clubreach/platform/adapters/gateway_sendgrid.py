import uuid
import logging
import httpx
from clubreach.core.channels import Channel
from clubreach.platform.ports.gateway import GatewayPort, SubmitResult

log = logging.getLogger("gateway.email")

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"

class SendGridEmailGateway(GatewayPort):
    channel = Channel.EMAIL

    def __init__(self, api_key: str, from_email: str, *, timeout: float = 10.0, retries: int = 2,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout
        self.retries = retries
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        transport = self._transport or httpx.AsyncHTTPTransport(retries=self.retries)
        return httpx.AsyncClient(transport=transport, timeout=self.timeout)

    async def submit(self, text: str, address: str, subject: str | None = None) -> SubmitResult:
        payload = {
            "personalizations": [{"to": [{"email": address}]}],
            "from": {"email": self.from_email},
            "subject": subject or "Event notification",
            "content": [{"type": "text/plain", "value": text}],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with self._client() as client:
                r = await client.post(SENDGRID_SEND_URL, json=payload, headers=headers)
        except httpx.RequestError as e:
            log.warning(f"SendGrid transport error for {address}: {e}")
            return SubmitResult(error=f"sendgrid transport error: {e}")
        if r.status_code >= 400:
            log.warning(f"SendGrid rejected email to {address}: {r.status_code}")
            return SubmitResult(error=f"sendgrid {r.status_code}: {r.text[:200]}")
        # SendGrid reports the id only as a response header
        provider_id = r.headers.get("X-Message-Id") or f"sg-{uuid.uuid4().hex}"
        log.info(f"Email submitted to {address} id={provider_id}")
        return SubmitResult(provider_message_id=provider_id)
