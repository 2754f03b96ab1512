"""Per-user conversation memory, answer cache and operation monitor."""

from crmassist.memory.cache import AnswerCache
from crmassist.memory.conversation import ConversationMemory, ConversationTurn
from crmassist.memory.monitor import OperationMonitor

__all__ = ["AnswerCache", "ConversationMemory", "ConversationTurn", "OperationMonitor"]
