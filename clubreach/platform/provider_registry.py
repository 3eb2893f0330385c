from clubreach.core.config import settings
from clubreach.core.channels import Channel
from clubreach.platform.ports.event_bus import EventBusPort
from clubreach.platform.ports.gateway import GatewayPort
from clubreach.platform.adapters.bus_noop import NoopEventBus
from clubreach.platform.adapters.bus_redis import RedisEventBus
from clubreach.platform.adapters.gateway_chat import InAppChatGateway
from clubreach.platform.adapters.gateway_log import LoggingGateway
from clubreach.platform.adapters.gateway_sendgrid import SendGridEmailGateway
from clubreach.platform.adapters.gateway_twilio import TwilioSmsGateway
from clubreach.modules.realtime.hub import TopicHub

class ProviderRegistry:
    _event_bus: EventBusPort | None = None
    _hub: TopicHub | None = None
    _gateways: dict[Channel, GatewayPort] | None = None
    _limiter = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def hub(cls) -> TopicHub:
        if cls._hub is None:
            cls._hub = TopicHub()
        return cls._hub

    @classmethod
    def gateways(cls) -> dict[Channel, GatewayPort]:
        if cls._gateways is None:
            gws: dict[Channel, GatewayPort] = {}
            if settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_PHONE_NUMBER:
                gws[Channel.SMS] = TwilioSmsGateway(
                    settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, settings.TWILIO_PHONE_NUMBER,
                    status_callback=f"{settings.APP_URL}{settings.API_PREFIX}/webhooks/twilio/status",
                    timeout=settings.GATEWAY_TIMEOUT_SECONDS, max_retries=settings.GATEWAY_MAX_RETRIES,
                )
            else:
                gws[Channel.SMS] = LoggingGateway(Channel.SMS)
            if settings.SENDGRID_API_KEY:
                gws[Channel.EMAIL] = SendGridEmailGateway(
                    settings.SENDGRID_API_KEY, settings.FROM_EMAIL,
                    timeout=settings.GATEWAY_TIMEOUT_SECONDS, retries=settings.GATEWAY_MAX_RETRIES,
                )
            else:
                gws[Channel.EMAIL] = LoggingGateway(Channel.EMAIL)
            gws[Channel.CHAT] = InAppChatGateway(cls.hub())
            cls._gateways = gws
        return cls._gateways

    @classmethod
    def channel_limiter(cls):
        # one limiter per process so the bound holds across concurrent batches
        from clubreach.modules.messaging.dispatcher import ChannelLimiter
        if cls._limiter is None:
            cls._limiter = ChannelLimiter({
                Channel.SMS: settings.SMS_MAX_CONCURRENCY,
                Channel.EMAIL: settings.EMAIL_MAX_CONCURRENCY,
                Channel.CHAT: settings.CHAT_MAX_CONCURRENCY,
            })
        return cls._limiter

registry = ProviderRegistry()
