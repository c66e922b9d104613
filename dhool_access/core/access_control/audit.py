"""
In-memory audit trail of access decisions
"""
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from dhool_access.utils.logger import Logger
from .models import AccessContext

logger = Logger(__name__)


class AuditResult(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class AuditResourceType(str, Enum):
    DOCUMENT = "document"
    FIELD = "field"
    ACTION = "action"
    MODULE = "module"


class AuditResource(BaseModel):
    type: AuditResourceType
    id: str
    name: str


class AccessAuditEntry(BaseModel):
    """One recorded access decision"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    action: str
    resource: AuditResource
    result: AuditResult
    reason: Optional[str] = None

    # Request context (timestamp, ip, user_agent)
    context: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AccessAuditTrail:
    """Bounded, thread-safe log of access decisions; oldest entries drop first"""

    def __init__(self, max_entries: int = 1000):
        self._entries: deque = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def record(
        self,
        context: AccessContext,
        action: str,
        resource_type: AuditResourceType,
        resource_id: str,
        resource_name: str,
        granted: bool,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AccessAuditEntry:
        entry = AccessAuditEntry(
            user_id=context.user.id,
            action=action,
            resource=AuditResource(type=resource_type, id=resource_id, name=resource_name),
            result=AuditResult.GRANTED if granted else AuditResult.DENIED,
            reason=reason,
            context={
                "timestamp": context.timestamp.isoformat() if context.timestamp else None,
                "ip": context.ip,
                "user_agent": context.user_agent,
            },
            metadata=metadata or {},
        )
        with self._lock:
            self._entries.append(entry)

        logger.debug(
            f"Access {entry.result.value} for user '{entry.user_id}': "
            f"{action} on {resource_type.value} '{resource_name}'"
            + (f" ({reason})" if reason else "")
        )
        return entry

    def entries(
        self,
        user_id: Optional[str] = None,
        result: Optional[AuditResult] = None,
    ) -> List[AccessAuditEntry]:
        """Recorded entries, oldest first, optionally filtered"""
        with self._lock:
            items = list(self._entries)
        if user_id is not None:
            items = [entry for entry in items if entry.user_id == user_id]
        if result is not None:
            items = [entry for entry in items if entry.result == result]
        return items

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
