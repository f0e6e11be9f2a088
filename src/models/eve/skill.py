"""EVE Online skill data models."""

from datetime import datetime

from pydantic import BaseModel, Field


class EveSkill(BaseModel):
    """A trained skill as reported by ESI."""

    skill_id: int = Field(..., description="Skill type ID")
    skill_name: str | None = Field(None, description="Resolved skill name")
    active_skill_level: int = Field(..., ge=0, le=5, description="Usable level")
    trained_skill_level: int = Field(..., ge=0, le=5, description="Trained level")
    skillpoints_in_skill: int = Field(..., ge=0, description="Skill points invested")


class EveSkillQueueItem(BaseModel):
    """An entry of the character's skill training queue."""

    skill_id: int = Field(..., description="Skill type ID")
    skill_name: str | None = Field(None, description="Resolved skill name")
    finished_level: int = Field(..., ge=1, le=5, description="Level being trained")
    queue_position: int = Field(..., ge=0, description="Position in the queue")
    start_date: datetime | None = Field(None, description="Training start")
    finish_date: datetime | None = Field(None, description="Training finish")
    training_start_sp: int | None = Field(None, description="SP at training start")
    level_start_sp: int | None = Field(None, description="SP at level start")
    level_end_sp: int | None = Field(None, description="SP needed for the level")
