"""
Structured audit logging module for the LanWake backend.

This module provides an AuditLogger class that logs events to a dedicated 'audit' logger
in structured JSON format. It supports context-aware request_id propagation across async
calls using contextvars.ContextVar.

Key features:
- Async-safe request_id and actor tracking via ContextVar
- Structured JSON output with ISO8601 timestamps
- Convenience methods for authentication, device commands, inventory changes
  and reachability transitions
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Context variable for tracking request_id across async calls
_request_id_context: ContextVar[Optional[str]] = ContextVar(
    'request_id', default=None
)

# Context variable for tracking actor (authenticated user) across async calls
_actor_context: ContextVar[Optional[str]] = ContextVar(
    'actor', default=None
)


class AuditLogger:
    """
    Structured audit logger for tracking all significant backend operations.

    All events are written to a dedicated 'audit' logger as one JSON object
    per line.
    """

    def __init__(self):
        self.logger = logging.getLogger('audit')

    def set_request_id(self, request_id: str) -> None:
        _request_id_context.set(request_id)

    def get_request_id(self) -> Optional[str]:
        return _request_id_context.get()

    def set_actor(self, actor: str) -> None:
        """Set the authenticated user for this request context."""
        _actor_context.set(actor)

    def get_actor(self) -> Optional[str]:
        return _actor_context.get()

    def log(
        self,
        action: str,
        actor: str,
        resource: str,
        resource_id: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Core method to log a structured audit event.

        Args:
            action: Type of action performed (e.g., 'LOGIN', 'WAKE', 'DELETE')
            actor: User or service performing the action. ``'user'`` resolves
                to the actor bound to the current request.
            resource: Type of resource affected (e.g., 'Device', 'User')
            resource_id: Unique identifier of the affected resource
            status: Result status (e.g., 'success', 'failure')
            details: Optional dict of additional context
        """
        event = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'action': action,
            'actor': actor if actor != 'user' else (self.get_actor() or 'user'),
            'resource': resource,
            'resource_id': resource_id,
            'status': status,
            'request_id': self.get_request_id(),
            'details': details or {},
        }
        self.logger.info(json.dumps(event))

    def log_auth(
        self,
        action: str,
        username: str,
        user_id: Optional[int],
        status: str,
        reason: Optional[str] = None,
    ) -> None:
        """
        Log a login, logout or token refresh.

        Args:
            action: 'LOGIN', 'LOGOUT' or 'TOKEN_REFRESH'
            username: Username presented (may not exist)
            user_id: Resolved user id, if any
            status: 'success' or 'failure'
            reason: Optional failure reason
        """
        details = {}
        if reason:
            details['reason'] = reason
        self.log(
            action=action,
            actor=username,
            resource='User',
            resource_id=str(user_id) if user_id is not None else 'unknown',
            status=status,
            details=details,
        )

    def log_device_command(
        self,
        command: str,
        device_id: int,
        device_name: str,
        target: str,
    ) -> None:
        """Log a wake or shutdown command that was handed to the network."""
        self.log(
            action=command,
            actor='user',
            resource='Device',
            resource_id=str(device_id),
            status='success',
            details={'device_name': device_name, 'target': target},
        )

    def log_device_crud(
        self,
        operation: str,
        device_id: int,
        device_name: str,
        changes: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log device Create/Update/Delete operations.

        Args:
            operation: CRUD operation ('CREATE', 'UPDATE', 'DELETE')
            device_id: Device identifier
            device_name: Device display name
            changes: Optional dict of changed fields (for UPDATE operations)
        """
        details: Dict[str, Any] = {'device_name': device_name}
        if changes:
            details['changes'] = changes
        self.log(
            action=operation,
            actor='user',
            resource='Device',
            resource_id=str(device_id),
            status='success',
            details=details,
        )

    def log_user_change(
        self,
        operation: str,
        user_id: int,
        username: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log user management: CREATE, DELETE, UPDATE_ROLE, UPDATE_STATUS, RESET_PASSWORD."""
        self.log(
            action=operation,
            actor='user',
            resource='User',
            resource_id=str(user_id),
            status='success',
            details={'username': username, **(details or {})},
        )

    def log_reachability_change(self, device_id: int, device_name: str, is_online: bool) -> None:
        """Log a monitor-detected online/offline transition."""
        self.log(
            action='PROBE_ONLINE' if is_online else 'PROBE_OFFLINE',
            actor='system:monitor',
            resource='Device',
            resource_id=str(device_id),
            status='success',
            details={'device_name': device_name},
        )


# Global audit logger instance for convenient import
audit = AuditLogger()
