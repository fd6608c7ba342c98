from enum import Enum


class PresenceStatus(str, Enum):

    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"
