"""Skill views produced by the skills adapter."""

from datetime import datetime

from pydantic import BaseModel, Field

from models.eve import EveSkill, EveSkillQueueItem


class SkillData(BaseModel):
    """Trained skills, totals and the training queue together."""

    skills: list[EveSkill] = Field(default_factory=list)
    total_sp: int = 0
    unallocated_sp: int = 0
    queue: list[EveSkillQueueItem] = Field(default_factory=list)


class TrainingProgress(BaseModel):
    """Progress of the skill currently in training."""

    current: EveSkillQueueItem | None = None
    progress_percent: float = Field(0.0, ge=0.0, le=100.0)
    time_remaining_seconds: float = 0.0
    queue_length: int = 0
    queue_finishes_at: datetime | None = None
