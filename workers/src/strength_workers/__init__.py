"""Strength ranking & progression engine."""

from .models import RankingResult, SetRecord
from .pipeline import compute_ranking, compute_ranking_safely

__all__ = ["RankingResult", "SetRecord", "compute_ranking", "compute_ranking_safely"]
