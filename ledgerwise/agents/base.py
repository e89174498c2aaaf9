"""Base agent for Ledgerwise workflows."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class AgentContext:
    requester: Optional[str] = None
    state: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)


class BaseAgent:
    name = "BaseAgent"

    def validate(self, ctx: AgentContext) -> None:
        """Validate inputs before execution."""

    def execute(self, ctx: AgentContext) -> Dict[str, Any]:
        """Execute agent logic."""
        raise NotImplementedError

    def log_event(
        self,
        ctx: AgentContext,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        event = {
            "agent": self.name,
            "requester": ctx.requester or "system",
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "metadata": metadata or {},
        }
        ctx.events.append(event)
        logger.debug(f"{self.name}: {action} {entity_type} {entity_id or ''}".rstrip())
