from pydantic import BaseModel, ConfigDict
from typing import List, Optional, Literal
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from examprep.models.orm import SessionKind, SessionStatus, PurchaseStatus

MatchKind = Literal["text", "letter", "none"]

class PackageOut(BaseModel):
  model_config = ConfigDict(from_attributes=True)
  id: int
  name: str
  description: Optional[str] = None
  price: Decimal
  kind: SessionKind
  session_qty: int
  total_questions: int

class PurchaseOut(BaseModel):
  model_config = ConfigDict(from_attributes=True)
  id: UUID
  user_id: str
  package: PackageOut
  payment_id: Optional[str] = None
  sessions_total: int
  sessions_used: int
  sessions_remaining: int
  status: PurchaseStatus
  purchased_at: datetime

class SessionSummary(BaseModel):
  model_config = ConfigDict(from_attributes=True)
  id: UUID
  user_id: str
  purchase_id: UUID
  kind: SessionKind
  status: SessionStatus
  total_questions: int
  correct_answers: Optional[int] = None
  score: Optional[int] = None
  started_at: datetime
  completed_at: Optional[datetime] = None
  time_spent_secs: Optional[int] = None
  variation_ids: List[int] = []

class AnswerOutcome(BaseModel):
  session_id: UUID
  variation_id: int
  is_correct: bool
  match: MatchKind

class AlternativeView(BaseModel):
  letter: str
  text: str
  order: int
  is_correct: Optional[bool] = None
  explanation: Optional[str] = None

class AnswerView(BaseModel):
  selected_answer: str
  is_correct: Optional[bool] = None
  answered_at: datetime

class QuestionView(BaseModel):
  question_order: int
  variation_id: int
  base_question_id: int
  variation_number: int
  display_code: Optional[str] = None
  topic_id: Optional[int] = None
  content: str
  explanation: Optional[str] = None
  alternatives: List[AlternativeView]
  correct_letter: Optional[str] = None
  answer: Optional[AnswerView] = None

class TopicScore(BaseModel):
  topic_id: Optional[int] = None
  topic_name: str
  correct: int
  total: int

class SessionView(BaseModel):
  session: SessionSummary
  questions: List[QuestionView]
  answered: int

class SessionResult(BaseModel):
  session: SessionSummary
  questions: List[QuestionView]
  answered: int
  unanswered: int
  topic_breakdown: List[TopicScore]

class TopicWeightRow(BaseModel):
  id: int
  name: str
  specialty_id: Optional[int] = None
  specialty_name: Optional[str] = None
  weight_percentage: Optional[float] = None
  question_count: int

class TopicWeightSummary(BaseModel):
  total: int
  with_percentage: int
  total_percentage: float
  is_valid: bool

class TopicWeightReport(BaseModel):
  topics: List[TopicWeightRow]
  summary: TopicWeightSummary

class HousekeepingResult(BaseModel):
  abandoned: int
  cutoff: datetime
