"""
Telemetry event emission.

Events go to the config server's /telemetry endpoint when one is
configured, and are always logged. Delivery failures never propagate.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .remote import RemoteConfigClient

logger = logging.getLogger(__name__)


class Telemetry:
    """Collects and forwards telemetry events."""

    def __init__(self, client: Optional[RemoteConfigClient] = None, enabled: bool = True,
                 correlation_id: Optional[str] = None):
        self.client = client
        self.enabled = enabled
        self.correlation_id = correlation_id or uuid.uuid4().hex
        self.sent: List[Dict[str, Any]] = []

    def send(self, event_type: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled:
            return
        event = {
            "eventType": event_type,
            "metadata": dict(metadata or {}),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.sent.append(event)
        logger.debug("[%s] telemetry %s %s", self.correlation_id, event_type, event["metadata"])
        if self.client is not None:
            self.client.post_telemetry(event, self.correlation_id)


# Disabled sink used when no telemetry is wanted
NULL_TELEMETRY = Telemetry(enabled=False)
