from pydantic import BaseModel, Field
from typing import List, Union, Optional, Literal
from uuid import UUID
from datetime import datetime
import enum


class QuestionType(str, enum.Enum):
    """Enums for valid question types."""
    choice = "choice"
    text = "text"


class Difficulty(str, enum.Enum):
    easy = "easy"
    medium = "medium"
    hard = "hard"


AnswerKey = Union[int, str, List[Union[int, str]]]


class QuestionData(BaseModel):
    """
    Raw question item as authored or generated.

    Loosely typed on purpose: the answer key may be an index, a letter or the answer text.
    The question bank normalizes it (zero-based index for choice questions) and rejects
    items whose key cannot be recovered.
    """
    prompt: str = Field(..., min_length=1, description="The question text shown to the candidate.")
    type: Optional[QuestionType] = Field(None, description="choice or text. Inferred from choices when omitted.")
    choices: List[str] = Field(default_factory=list, description="Options for choice questions, in display order.")
    answer_key: Optional[AnswerKey] = Field(None, description="Index, letter or literal answer text.")
    difficulty: Difficulty = Difficulty.medium
    category: str = "aptitude"
    is_active: bool = True


class QuestionImport(BaseModel):
    questions: List[QuestionData]
    # set to 1 when the batch uses 1-based answer indices
    index_base: Literal[0, 1] = 0


class GeneratePayload(BaseModel):
    topic: str = "General Technical Aptitude"
    count: int = Field(10, gt=0, le=50)


class QuestionRead(BaseModel):
    id: UUID
    prompt: str
    type: QuestionType
    choices: Optional[List[str]] = None
    answer_key: Union[int, str]
    difficulty: Difficulty
    category: str
    is_active: bool
    source: str
    created_at: datetime

    class Config:
        from_attributes = True


class ImportResult(BaseModel):
    saved: int
    skipped: List[dict] = []


class ActiveToggle(BaseModel):
    is_active: bool


class GeneratedReply(BaseModel):
    # raw generator output as pasted by the admin; may be fenced or wrapped
    content: str = Field(..., min_length=1)
