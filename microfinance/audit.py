"""
Audit Trail Module

Hash-chained audit log of every back-office mutation. Each event stores the
SHA-256 of its predecessor so that edits to history can be detected.
"""

import hashlib
import json
import threading
import uuid
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
from decimal import Decimal

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    CUSTOMER_CREATED = "customer_created"
    CUSTOMER_UPDATED = "customer_updated"
    CUSTOMER_DEACTIVATED = "customer_deactivated"
    
    LOAN_CREATED = "loan_created"
    LOAN_UPDATED = "loan_updated"
    LOAN_RENEWED = "loan_renewed"
    LOAN_DELETED = "loan_deleted"
    LOAN_COMPLETED = "loan_completed"
    
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_CORRECTED = "payment_corrected"
    
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_UPDATED = "request_updated"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    
    TEAM_MEMBER_CREATED = "team_member_created"
    TEAM_MEMBER_UPDATED = "team_member_updated"
    CUSTOMER_ASSIGNED = "customer_assigned"


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event chained to its predecessor by hash"""
    event_type: AuditEventType
    entity_type: str
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None
    
    def __post_init__(self):
        self.metadata = _json_safe(self.metadata or {})
    
    def calculate_hash(self) -> str:
        """SHA-256 over every field except ``current_hash``"""
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()
    
    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()
    
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail
    
    Events are appended in order; the ``_seq`` metadata counter keeps ordering stable when two
    events share a timestamp.
    """
    
    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = threading.Lock()
    
    def _ordered(self) -> List[Dict[str, Any]]:
        events = self.storage.load_all(self.table_name)
        return sorted(events, key=lambda e: (e.get('metadata', {}).get('_seq', 0), e.get('created_at', '')))
    
    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Append an audit event
        
        Args:
            event_type: Type of audit event
            entity_type: Type of entity (customer, loan, request, team_member)
            entity_id: ID of the entity
            metadata: Event-specific data
            user_id: Operator or admin who initiated the action
            
        Returns:
            The stored AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None
        
        with self._lock:
            previous = self._ordered()
            now = datetime.now(timezone.utc)
            payload = dict(metadata or {})
            payload['_seq'] = len(previous) + 1
            
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=previous[-1]['current_hash'] if previous else "",
                current_hash="",
                metadata=payload,
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event
    
    def get_all_events(self) -> List[AuditEvent]:
        return [AuditEvent.from_dict(data) for data in self._ordered()]
    
    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        return [
            event for event in self.get_all_events()
            if event.entity_type == entity_type and event.entity_id == entity_id
        ]
    
    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every hash and the continuity of the chain
        
        Returns:
            Dictionary with ``valid``, ``total_events``, ``hash_errors`` and
            ``chain_breaks``
        """
        result = {'valid': True, 'total_events': 0, 'hash_errors': [], 'chain_breaks': []}
        events = self.get_all_events()
        result['total_events'] = len(events)
        
        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({'event_id': event.id, 'position': position})
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({'event_id': event.id, 'position': position})
            previous_hash = event.current_hash
        
        return result
