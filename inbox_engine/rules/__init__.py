from .actions import (
    ActionExecutor,
    ActionResult,
    ActionSkipped,
    AgentHandoffService,
    AssignmentService,
    MessagingService,
    TaggingService,
)
from .conditions import ConditionContext, evaluate_condition
from .engine import RuleEngine, RuleOutcome
from .state import ConversationRuleState, Engagement

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "ActionSkipped",
    "AgentHandoffService",
    "AssignmentService",
    "ConditionContext",
    "ConversationRuleState",
    "Engagement",
    "MessagingService",
    "RuleEngine",
    "RuleOutcome",
    "TaggingService",
    "evaluate_condition",
]
