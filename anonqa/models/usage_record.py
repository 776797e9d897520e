"""
anonqa/models/usage_record.py

UsageRecord: one completed AI generation, used for quota accounting.

Actions:
- generate_answer: streamed answer for a question (linked to group + question)
- generate_question: streamed question suggestions (linked to group)
- similar_questions: non-streaming similar-question lookup (linked to group)
"""

import math
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UsageAction(str, Enum):
    GENERATE_ANSWER = "generate_answer"
    GENERATE_QUESTION = "generate_question"
    SIMILAR_QUESTIONS = "similar_questions"


class UsageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    actor_id: str
    action: UsageAction
    group_id: Optional[str] = None
    question_id: Optional[str] = None
    prompt: str
    response: Optional[str] = None
    tokens_used: int = 0
    cost: float = 0.0
    created_at: datetime


class UsageSummary(BaseModel):
    """Token/cost totals for one completion."""
    model_config = ConfigDict(frozen=True)

    tokens_used: int
    cost: float

    @classmethod
    def for_text(cls, text: str, cost_per_token: float) -> "UsageSummary":
        """Estimate usage at four characters per token."""
        tokens = math.ceil(len(text) / 4)
        return cls(tokens_used=tokens, cost=tokens * cost_per_token)

    def to_wire(self) -> dict:
        return {"tokensUsed": self.tokens_used, "cost": self.cost}
