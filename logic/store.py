# /logic/store.py

from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Optional, ValuesView

from data_models import AnalysisResult

ALL_SPECIES = "all"


class ResultStore:
    """
    The canonical in-memory collection of analysis results, keyed by file_id.

    Order is the order the service returned results in. A duplicate file_id in
    the same load overwrites the earlier entry but keeps its position.
    """

    def __init__(self, results: Optional[Iterable[AnalysisResult]] = None):
        self._results: Dict[str, AnalysisResult] = {}
        if results is not None:
            self.replace_all(results)

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._results

    def replace_all(self, results: Iterable[AnalysisResult]):
        """Swaps the whole collection. Entries missing from `results` are dropped."""
        fresh: Dict[str, AnalysisResult] = {}
        for result in results:
            fresh[result.file_id] = result
        self._results = fresh

    def insert(self, result: AnalysisResult):
        self._results[result.file_id] = result

    def remove(self, file_id: str) -> bool:
        """Removes one result locally. Unknown ids are ignored."""
        return self._results.pop(file_id, None) is not None

    def get(self, file_id: str) -> Optional[AnalysisResult]:
        return self._results.get(file_id)

    def all(self) -> ValuesView[AnalysisResult]:
        """A live, read-only view. Iterating it again starts from the beginning."""
        return MappingProxyType(self._results).values()

    def filter_by_species(self, species: str) -> List[AnalysisResult]:
        """Results where `species` appears anywhere in the ranked detections."""
        if species == ALL_SPECIES:
            return list(self._results.values())
        return [
            r for r in self._results.values()
            if any(d.species == species for d in r.species_detected)
        ]

    def search(self, term: str) -> List[AnalysisResult]:
        """Case-insensitive match on filename or any detected species."""
        needle = term.strip().lower()
        if not needle:
            return list(self._results.values())
        return [
            r for r in self._results.values()
            if needle in r.original_filename.lower()
            or any(needle in d.species.lower() for d in r.species_detected)
        ]

    def unique_species(self) -> FrozenSet[str]:
        return frozenset(
            d.species for r in self._results.values() for d in r.species_detected if d.species
        )

    def species_in_first_seen_order(self) -> List[str]:
        """Same names as unique_species(), ordered for dropdowns and galleries."""
        seen: Dict[str, None] = {}
        for r in self._results.values():
            for d in r.species_detected:
                if d.species:
                    seen.setdefault(d.species, None)
        return list(seen)
