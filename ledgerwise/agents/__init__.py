from ledgerwise.agents.base import AgentContext, BaseAgent
from ledgerwise.agents.categorization import CategorizationAgent

__all__ = ["AgentContext", "BaseAgent", "CategorizationAgent"]
