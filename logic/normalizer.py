# /logic/normalizer.py

import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from data_models import AnalysisResult, BatchSummary, SpeciesDetection
from logic.exceptions import NormalizationError

logger = logging.getLogger(__name__)

ENVELOPE_KEYS = ("result", "data")
URL_FIELDS = ("spectrogram_url", "audio_url", "species_image_url")


def normalize_confidence(value: Any) -> float:
    """
    Returns a confidence as a percentage in [0, 100].

    Values <= 1.0 are read as fractions and scaled by 100, anything larger is
    taken as an existing percentage. Percentages above 100 are clamped.
    """
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        raise NormalizationError(f"Confidence is not numeric: {value!r}")

    if math.isnan(confidence) or confidence < 0:
        raise NormalizationError(f"Confidence out of range: {value!r}")

    if confidence <= 1.0:
        return confidence * 100.0
    if confidence > 100.0:
        logger.warning("Confidence %s above 100%%, clamping", confidence)
        return 100.0
    return confidence


def unwrap_envelope(raw: Any) -> Dict[str, Any]:
    """Picks the payload out of `{result: R}`, `{data: R}` or a flat `R`."""
    if not isinstance(raw, dict):
        raise NormalizationError(f"Expected a JSON object, got {type(raw).__name__}")

    for key in ENVELOPE_KEYS:
        nested = raw.get(key)
        if nested:
            if not isinstance(nested, dict):
                raise NormalizationError(f"'{key}' envelope does not hold an object")
            return nested
    return raw


class ResponseNormalizer:
    """Turns raw service payloads into canonical AnalysisResult objects."""

    def __init__(self, base_url: str):
        self.base_url = httpx.URL(base_url)

    def resolve_url(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        return str(self.base_url.join(url))

    def _detections(self, raw_detections: Any) -> List[SpeciesDetection]:
        if not isinstance(raw_detections, list) or not raw_detections:
            raise NormalizationError("Result has no species_detected entries")

        entries = []
        for position, entry in enumerate(raw_detections):
            if not isinstance(entry, dict) or not entry.get("species"):
                raise NormalizationError(f"Malformed species entry at position {position}")
            rank = entry.get("rank", position)
            if not isinstance(rank, int) or isinstance(rank, bool):
                raise NormalizationError(f"Malformed rank at position {position}: {rank!r}")
            entries.append((rank, position, entry))

        # Explicit ranks win, list order breaks ties
        entries.sort(key=lambda item: (item[0], item[1]))
        return [
            SpeciesDetection(
                species=str(entry["species"]),
                confidence=normalize_confidence(entry.get("confidence", 0.0)),
            )
            for _, _, entry in entries
        ]

    def normalize(self, raw: Any) -> AnalysisResult:
        payload = dict(unwrap_envelope(raw))

        if not payload.get("file_id"):
            raise NormalizationError("Result is missing 'file_id'")
        if payload.get("timestamp") is None:
            raise NormalizationError(f"Result {payload['file_id']} is missing 'timestamp'")

        payload["species_detected"] = self._detections(payload.get("species_detected"))
        for field in URL_FIELDS:
            payload[field] = self.resolve_url(payload.get(field))
        if payload.get("call_parameters") is None:
            payload.pop("call_parameters", None)
        if not payload.get("original_filename"):
            payload.pop("original_filename", None)

        try:
            return AnalysisResult.model_validate(payload)
        except ValidationError as e:
            raise NormalizationError(f"Result {payload['file_id']} failed validation: {e}") from e

    def normalize_many(self, raw_items: Iterable[Any]) -> Tuple[List[AnalysisResult], int]:
        """Normalizes a list leniently. Returns the good results and the number skipped."""
        results = []
        skipped = 0
        for item in raw_items:
            try:
                results.append(self.normalize(item))
            except NormalizationError as e:
                skipped += 1
                logger.warning("Skipping malformed result: %s", e)
        return results, skipped

    def normalize_results_list(self, raw: Any) -> List[AnalysisResult]:
        """Handles the `/api/results` payload: `{results: [...]}` or a bare list."""
        items = raw.get("results") if isinstance(raw, dict) else raw
        if items is None:
            items = []
        if not isinstance(items, list):
            raise NormalizationError("'results' is not a list")
        results, _ = self.normalize_many(items)
        return results

    def normalize_batch(self, raw: Any, submitted: int) -> BatchSummary:
        """
        Handles both batch response shapes.

        Counts reported by the service are trusted. When they are missing the
        summary is derived from the number of files submitted and how many
        entries normalized cleanly.
        """
        payload = unwrap_envelope(raw)
        items = payload.get("results")
        if not isinstance(items, list):
            raise NormalizationError("Batch response has no 'results' list")

        results, skipped = self.normalize_many(items)

        if "total_files" in payload:
            try:
                total = int(payload["total_files"])
                completed = int(payload.get("completed", len(results)))
                failed = int(payload.get("failed", total - completed))
            except (TypeError, ValueError) as e:
                raise NormalizationError(f"Batch counts are not integers: {e}") from e
        else:
            total = submitted
            completed = len(results)
            failed = max(total - completed, 0)
        if skipped:
            logger.warning("%d batch entries could not be read", skipped)

        return BatchSummary(
            batch_id=payload.get("batch_id"),
            total_files=total,
            completed=completed,
            failed=failed,
            results=results,
        )
