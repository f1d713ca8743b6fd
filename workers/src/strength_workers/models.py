"""Inbound and outbound contracts of the ranking engine."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from .ranks import RankTier
from .utils import to_float, to_int


class SetRecord(BaseModel):
    """One logged set of a completed session."""

    exercise_id: str
    reps: int = 0
    weight_kg: float = 0.0

    @field_validator("exercise_id")
    @classmethod
    def exercise_id_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("exercise_id must not be empty")
        return v

    @field_validator("reps", mode="before")
    @classmethod
    def clamp_reps(cls, v: object) -> int:
        # Missing, malformed or negative values count as zero contribution, not an error
        return max(to_int(v) or 0, 0)

    @field_validator("weight_kg", mode="before")
    @classmethod
    def clamp_weight(cls, v: object) -> float:
        # NaN and infinities included
        return max(to_float(v) or 0.0, 0.0)


class RankingRequest(BaseModel):
    user_id: str
    bodyweight_kg: float | None = None
    gender: str | None = None
    sets: list[SetRecord] = Field(default_factory=list)

    @field_validator("bodyweight_kg", mode="before")
    @classmethod
    def finite_bodyweight(cls, v: object) -> float | None:
        # An unusable bodyweight is treated as unknown
        return to_float(v)

    @field_validator("user_id")
    @classmethod
    def user_id_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("user_id must not be empty")
        return v


class RankInfo(BaseModel):
    rank_id: int | None
    rank_name: str
    min_score: float

    @classmethod
    def from_tier(cls, tier: RankTier) -> "RankInfo":
        return cls(rank_id=tier.rank_id, rank_name=tier.rank_name, min_score=tier.min_score)


class Progression(BaseModel):
    initial_score: int
    final_score: int
    initial_rank: RankInfo
    current_rank: RankInfo
    next_rank: RankInfo | None = None
    percent_to_next_rank: float = Field(ge=0.0, le=1.0)


class MuscleGroupProgression(BaseModel):
    id: str
    name: str
    progression: Progression


class MuscleRankChange(BaseModel):
    id: str
    name: str
    old_score: int | None
    new_score: int
    old_rank: RankInfo | None
    new_rank: RankInfo
    rank_changed: bool


class RankingResult(BaseModel):
    overall_progression: Progression | None = None
    muscle_group_progressions: list[MuscleGroupProgression] = Field(default_factory=list)
    muscle_rank_changes: list[MuscleRankChange] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "RankingResult":
        return cls()

    @property
    def is_empty(self) -> bool:
        return (
            self.overall_progression is None
            and not self.muscle_group_progressions
            and not self.muscle_rank_changes
        )
