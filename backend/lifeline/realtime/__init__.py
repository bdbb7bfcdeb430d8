from .channels import (
    ChannelRouter,
    SocketIOConnection,
    WebSocketConnection,
    blood_type_channel,
    city_channel,
    user_channel,
)

__all__ = [
    "ChannelRouter",
    "SocketIOConnection",
    "WebSocketConnection",
    "blood_type_channel",
    "city_channel",
    "user_channel",
]
