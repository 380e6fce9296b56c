"""
Activity Log Module

Hash-chained activity log with SHA-256 for tamper detection.
Loan creation, payment submission, approval and rejection, and flag resets
are recorded here with who did them.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, encode_value


class ActivityAction(Enum):
    """Types of recorded activity"""
    CREATE_LOAN_TYPE = "CREATE_LOAN_TYPE"
    UPDATE_LOAN_TYPE = "UPDATE_LOAN_TYPE"
    CREATE_LOAN = "CREATE_LOAN"
    SUBMIT_PAYMENT = "SUBMIT_PAYMENT"
    APPROVE_PAYMENT = "APPROVE_PAYMENT"
    REJECT_PAYMENT = "REJECT_PAYMENT"
    RESET_SMS_FLAGS = "RESET_SMS_FLAGS"


@dataclass
class ActivityEvent(StorageRecord):
    """
    Immutable activity entry with hash chaining
    """
    action: ActivityAction
    entity_type: str  # LOAN, PAYMENT, LOAN_TYPE, TERM
    entity_id: str
    description: str
    sequence: int
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None

    def __post_init__(self):
        self.metadata = encode_value(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except current_hash"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'action': self.action.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'description': self.description,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActivityEvent':
        data = dict(data)
        if isinstance(data.get('action'), str):
            data['action'] = ActivityAction(data['action'])
        return super().from_dict(data)


class ActivityLog:
    """
    Hash-chained activity log
    """

    def __init__(self, storage: StorageInterface, table_name: str = "activity_logs"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()

    def _chain_head(self) -> Optional[Dict[str, Any]]:
        events = self.storage.load_all(self.table_name)
        if not events:
            return None
        return max(events, key=lambda e: e.get('sequence', 0))

    def log_activity(
        self,
        action: ActivityAction,
        entity_type: str,
        entity_id: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> ActivityEvent:
        """
        Append an entry to the chain

        Args:
            action: What happened
            entity_type: Kind of record affected
            entity_id: ID of the record affected
            description: Human-readable summary
            metadata: Additional structured data
            user_id: Staff or borrower who initiated the action

        Returns:
            Created ActivityEvent
        """
        with self._lock:
            head = self._chain_head()
            now = datetime.now(timezone.utc)

            event = ActivityEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                description=description,
                sequence=(head['sequence'] + 1) if head else 1,
                previous_hash=head['current_hash'] if head else "",
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[ActivityEvent]:
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = sorted((ActivityEvent.from_dict(d) for d in events_data), key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]
        return events

    def get_all_events(self, action: Optional[ActivityAction] = None,
                       limit: Optional[int] = None) -> List[ActivityEvent]:
        events = [ActivityEvent.from_dict(d) for d in self.storage.load_all(self.table_name)]
        if action:
            events = [e for e in events if e.action == action]
        events.sort(key=lambda e: e.sequence)
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire chain

        Returns:
            Dictionary with 'valid', 'total_events', 'hash_errors' and 'chain_breaks'
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for event in events:
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append(event.id)
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append(event.id)
            previous_hash = event.current_hash

        return result
