from .gateway import CollaborationGateway
from .rooms import RoomRegistry, room_name

__all__ = [
    "CollaborationGateway",
    "RoomRegistry",
    "room_name",
]
