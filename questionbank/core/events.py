"""
Domain event dispatch.

Every event is written to the audit log in the caller's session. When
PUBLISH_EVENTS is enabled the event is also published as JSON on a Redis
channel for cache invalidation and external auditing.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import redis
from sqlalchemy.orm import Session

from questionbank.core.clock import Clock, unix_now
from questionbank.core.config import settings
from questionbank.models.orm import AuditLog

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    name: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    context_id: Optional[int]
    user_id: Optional[int]
    snapshot: Dict[str, Any]
    time_created: int

    def to_json(self) -> str:
        return json.dumps({
            "event": self.name, "entity_type": self.entity_type, "entity_id": self.entity_id,
            "context_id": self.context_id, "user_id": self.user_id, "snapshot": self.snapshot,
            "time": self.time_created,
        }, default=str)


@dataclass
class EventDispatcher:
    db: Session
    user_id: Optional[int] = None
    redis_client: Optional[redis.Redis] = None
    channel: str = settings.EVENTS_CHANNEL
    clock: Clock = unix_now
    triggered: List[DomainEvent] = field(default_factory=list)

    def trigger(self, name: str, snapshot: Dict[str, Any], entity_type: Optional[str] = None,
                entity_id: Optional[int] = None, context_id: Optional[int] = None) -> DomainEvent:
        event = DomainEvent(name=name, entity_type=entity_type, entity_id=entity_id, context_id=context_id,
                            user_id=self.user_id, snapshot=snapshot, time_created=self.clock())
        self.db.add(AuditLog(user_id=event.user_id, action=name, entity_type=entity_type, entity_id=entity_id,
                             context_id=context_id, changes=json.loads(json.dumps(snapshot, default=str)),
                             time_created=event.time_created))
        self.triggered.append(event)
        if self.redis_client is not None:
            try:
                self.redis_client.publish(self.channel, event.to_json())
            except redis.RedisError as e:
                logger.error(f"Event publish error for {name}: {e}")
        return event


def get_redis_client() -> Optional[redis.Redis]:
    if not settings.PUBLISH_EVENTS:
        return None
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def make_dispatcher(db: Session, user_id: Optional[int] = None) -> EventDispatcher:
    return EventDispatcher(db=db, user_id=user_id, redis_client=get_redis_client())
