from dataclasses import dataclass
from enum import Enum

class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    CHAT = "chat"

@dataclass(frozen=True)
class ChannelInfo:
    label: str
    icon: str
    address_field: str  # Contact attribute holding the address for this channel

# Single source of truth for per-channel presentation and addressing.
CHANNEL_INFO: dict[Channel, ChannelInfo] = {
    Channel.SMS: ChannelInfo(label="SMS", icon="message-square", address_field="phone"),
    Channel.EMAIL: ChannelInfo(label="Email", icon="mail", address_field="email"),
    Channel.CHAT: ChannelInfo(label="Chat", icon="message-circle", address_field="chat_handle"),
}

# order tried when a contact's preferred channel has no address
FALLBACK_ORDER: tuple[Channel, ...] = (Channel.EMAIL, Channel.SMS, Channel.CHAT)

CHANNEL_PATTERN = "^(" + "|".join(c.value for c in Channel) + ")$"

def channel_label(channel: Channel | str) -> str:
    return CHANNEL_INFO[Channel(channel)].label
