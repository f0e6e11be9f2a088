"""Trained skills and the training queue."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from models.app import SkillData, TrainingProgress
from models.eve import EveSkill, EveSkillQueueItem

from .base import BaseAdapter

logger = logging.getLogger(__name__)

SKILLS_SCOPE = "esi-skills.read_skills.v1"
SKILL_QUEUE_SCOPE = "esi-skills.read_skillqueue.v1"
SKILLS_TTL = 3600
SKILL_QUEUE_TTL = 300


class SkillsAdapter(BaseAdapter):
    """Typed skill views for one character."""

    async def get_skills(self, entity_id: int) -> SkillData:
        """Trained skills with names and skill point totals (queue left empty)."""
        await self.validate_token(entity_id, [SKILLS_SCOPE])
        data = await self.fetch_with_retry(
            f"/characters/{entity_id}/skills/", entity_id, ttl=SKILLS_TTL
        ) or {}

        skills = [EveSkill.model_validate(row) for row in data.get("skills", [])]
        names = await self.resolve_names(skill.skill_id for skill in skills)
        for skill in skills:
            skill.skill_name = names.get(skill.skill_id)

        return SkillData(
            skills=skills,
            total_sp=data.get("total_sp") or 0,
            unallocated_sp=data.get("unallocated_sp") or 0,
        )

    async def get_skill_queue(self, entity_id: int) -> list[EveSkillQueueItem]:
        """Training queue ordered by queue position."""
        await self.validate_token(entity_id, [SKILL_QUEUE_SCOPE])
        rows = await self.fetch_with_retry(
            f"/characters/{entity_id}/skillqueue/", entity_id, ttl=SKILL_QUEUE_TTL
        )
        queue = sorted(
            (EveSkillQueueItem.model_validate(row) for row in rows or []),
            key=lambda item: item.queue_position,
        )
        if queue:
            names = await self.resolve_names(item.skill_id for item in queue)
            for item in queue:
                item.skill_name = names.get(item.skill_id)
        return queue

    async def get_complete_skill_data(self, entity_id: int) -> SkillData:
        await self.validate_token(entity_id, [SKILLS_SCOPE, SKILL_QUEUE_SCOPE])
        skill_data, queue = await asyncio.gather(
            self.get_skills(entity_id), self.get_skill_queue(entity_id)
        )
        skill_data.queue = queue
        return skill_data

    @staticmethod
    def calculate_training_time(
        queue: Sequence[EveSkillQueueItem], now: datetime | None = None
    ) -> float:
        """Seconds until the whole queue finishes (0 if empty or paused)."""
        finish_dates = [item.finish_date for item in queue if item.finish_date]
        if not finish_dates:
            return 0.0
        now = now or datetime.now(UTC)
        return max(0.0, (max(finish_dates) - now).total_seconds())

    async def get_training_progress(
        self, entity_id: int, now: datetime | None = None
    ) -> TrainingProgress:
        """Progress of the skill in training right now."""
        queue = await self.get_skill_queue(entity_id)
        now = now or datetime.now(UTC)

        # Finished entries linger in the queue until the next login
        active = [
            item
            for item in queue
            if item.start_date and item.finish_date and item.finish_date > now
        ]
        if not active:
            return TrainingProgress(queue_length=len(queue))

        current = active[0]
        total = (current.finish_date - current.start_date).total_seconds()
        elapsed = (now - current.start_date).total_seconds()
        progress = min(100.0, max(0.0, elapsed / total * 100)) if total > 0 else 0.0

        return TrainingProgress(
            current=current,
            progress_percent=round(progress, 2),
            time_remaining_seconds=(current.finish_date - now).total_seconds(),
            queue_length=len(active),
            queue_finishes_at=max(item.finish_date for item in active),
        )

    async def refresh(self, entity_id: int) -> SkillData:
        """Drop cached skill data and fetch it again."""
        await self.invalidate_entity_cache(entity_id, "skill")
        logger.info("Refreshing skills for %d", entity_id)
        return await self.get_complete_skill_data(entity_id)
