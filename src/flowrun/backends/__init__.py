from .base import Backend
from .local import LocalBackend
from .redis_queue import RedisQueueBackend

__all__ = ["Backend", "LocalBackend", "RedisQueueBackend"]
