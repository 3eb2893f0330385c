import uuid
from datetime import datetime
from pydantic import BaseModel, Field, model_validator

class RankRequest(BaseModel):
    required_skills: list[str] = Field(default_factory=list)
    start: datetime
    end: datetime
    location: str | None = None
    limit: int | None = Field(None, ge=1, le=200)

    @model_validator(mode="after")
    def _ordered(self):
        if self.end < self.start:
            raise ValueError("end must not precede start")
        return self

class RankedCoachOut(BaseModel):
    recipient_id: uuid.UUID
    display_name: str
    score: float
