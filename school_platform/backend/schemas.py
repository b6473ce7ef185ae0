"""
School Platform Quiz Engine
Shared pydantic types for question options and answer payloads
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QuestionOption(BaseModel):
    """One selectable option of a multiple choice or true/false question"""

    id: str = Field(..., min_length=1, max_length=64)
    text: str = Field(..., min_length=1)
    is_correct: bool = Field(False, alias="isCorrect")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('id', 'text')
    @classmethod
    def strip_value(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Value must not be blank')
        return v


# Answer payload variants, one per question type
class SelectedOptionAnswer(BaseModel):
    """Multiple choice (or true/false) answer naming the chosen option"""

    selected_option: str = Field(..., alias="selectedOption", min_length=1)

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class TrueFalseAnswer(BaseModel):
    """True/false answer given as a boolean"""

    value: bool

    model_config = ConfigDict(extra="forbid")


class EssayAnswer(BaseModel):
    """Free text answer awaiting manual grading"""

    text: str

    model_config = ConfigDict(extra="forbid")


AnswerPayload = Union[SelectedOptionAnswer, TrueFalseAnswer, EssayAnswer]


class SubmittedAnswer(BaseModel):
    question_id: str = Field(..., alias="questionId", min_length=1)
    answer: AnswerPayload

    model_config = ConfigDict(populate_by_name=True)


class QuizSubmissionRequest(BaseModel):
    answers: List[SubmittedAnswer] = []
    time_spent_seconds: Optional[int] = Field(None, alias="timeSpent", ge=0)

    model_config = ConfigDict(populate_by_name=True)


class GradeEssayRequest(BaseModel):
    points_awarded: int = Field(..., alias="pointsAwarded", ge=0)
    feedback: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


def payload_to_json(payload: Optional[AnswerPayload]) -> Optional[dict]:
    """Serialize an answer payload for storage"""
    if payload is None:
        return None
    return payload.model_dump()


__all__ = [
    "QuestionOption",
    "SelectedOptionAnswer",
    "TrueFalseAnswer",
    "EssayAnswer",
    "AnswerPayload",
    "SubmittedAnswer",
    "QuizSubmissionRequest",
    "GradeEssayRequest",
    "payload_to_json"
]
