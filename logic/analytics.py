# /logic/analytics.py

import math
import time
from collections import Counter
from typing import Iterable, List, Optional

from data_models import (
    AnalysisResult, DurationPoint, FrequencyPoint, GlobalStats,
    SpeciesAnalytics, SpeciesCount, SpeciesDetection, TimePoint,
)
from logic.store import ResultStore

LABEL_LENGTH = 15
RECENT_WINDOW_SECONDS = 24 * 60 * 60
DEFAULT_DETECTION_LIMIT = 5


def _mean(values: Iterable[Optional[float]]) -> float:
    present = [v for v in values if v is not None]
    if not present:
        return math.nan
    return sum(present) / len(present)


def detections_above(result: AnalysisResult, threshold: float,
                     limit: int = DEFAULT_DETECTION_LIMIT) -> List[SpeciesDetection]:
    """
    Detections at or above a fractional threshold (0.01 means 1%), best first.
    An empty list is the "no species above threshold" state, not an error.
    """
    cutoff = threshold * 100.0
    return [d for d in result.species_detected if d.confidence >= cutoff][:limit]


def confidence_band(percent: float) -> str:
    if percent > 80:
        return "high"
    if percent > 60:
        return "medium"
    return "low"


class AnalyticsEngine:
    """Read-only statistics over whatever the store currently holds."""

    def __init__(self, store: ResultStore):
        self.store = store

    def top_species(self, limit: Optional[int] = None) -> List[SpeciesCount]:
        counts = Counter(
            r.top_match.species for r in self.store.all() if r.top_match is not None
        )
        # most_common keeps first-seen order among equal counts
        return [SpeciesCount(species=s, count=c) for s, c in counts.most_common(limit)]

    def global_stats(self, now: Optional[float] = None) -> GlobalStats:
        now = time.time() if now is None else now
        results = list(self.store.all())
        top_confidences = [r.top_match.confidence for r in results if r.top_match is not None]

        return GlobalStats(
            total_count=len(results),
            distinct_species=len(self.store.unique_species()),
            top_species=self.top_species(),
            total_duration=sum(r.duration for r in results),
            average_confidence=_mean(top_confidences) if top_confidences else 0.0,
            recent_count=sum(1 for r in results if 0 <= now - r.timestamp < RECENT_WINDOW_SECONDS),
        )

    def results_for_top_match(self, species: str) -> List[AnalysisResult]:
        return [
            r for r in self.store.all()
            if r.top_match is not None and r.top_match.species == species
        ]

    def species_analytics(self, species: str) -> SpeciesAnalytics:
        """
        Per-result series for every result whose top match is `species`.

        Points sharing a date are not merged. Averages are NaN when there is
        nothing to average, so check `count` first.
        """
        subset = self.results_for_top_match(species)

        time_data = [
            TimePoint(date=r.analyzed_at.date(), count=1, confidence=r.top_match.confidence)
            for r in subset
        ]
        freq_data = [
            FrequencyPoint(
                name=r.original_filename[:LABEL_LENGTH],
                peak=r.call_parameters.peak_frequency,
                start=r.call_parameters.start_frequency,
                end=r.call_parameters.end_frequency,
            )
            for r in subset
        ]
        duration_data = [
            DurationPoint(name=r.original_filename[:LABEL_LENGTH], duration=r.call_parameters.pulse_duration)
            for r in subset
        ]

        return SpeciesAnalytics(
            species=species,
            time_data=time_data,
            freq_data=freq_data,
            duration_data=duration_data,
            count=len(subset),
            avg_peak_frequency=_mean(p.peak for p in freq_data),
            avg_pulse_duration=_mean(p.duration for p in duration_data),
        )
