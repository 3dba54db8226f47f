"""
Administrative gazetteer: village name → hierarchy, boundary and centroid.

The in-memory implementation loads village boundaries from a GeoJSON
FeatureCollection whose properties carry the hierarchy (state, district,
block, village and their codes). Exact matches are preferred; otherwise the
closest name above the similarity threshold is returned.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from rapidfuzz import fuzz, process
from shapely.geometry.base import BaseGeometry

from ..intake.geometry import centroid_of, geojson_to_geometry, geometry_to_geojson
from ..intake.schema import HierarchyPath

logger = logging.getLogger(__name__)

HINT_LEVELS = ("state", "district", "block")


@dataclass(frozen=True)
class Place:
    """A village with its administrative parents and boundary."""
    village: str
    block: Optional[str]
    district: Optional[str]
    state: Optional[str]
    boundary: BaseGeometry
    state_code: Optional[str] = None
    village_code: Optional[str] = None

    @property
    def hierarchy(self) -> HierarchyPath:
        return HierarchyPath(
            state=self.state,
            district=self.district,
            block=self.block,
            village=self.village,
            state_code=self.state_code,
            village_code=self.village_code,
        )


@dataclass(frozen=True)
class GazetteerMatch:
    """Result of resolving a place name."""
    hierarchy: HierarchyPath
    boundary: Dict
    centroid: Tuple[float, float]
    match_confidence: float
    exact: bool


class Gazetteer(Protocol):
    """Gazetteer collaborator interface."""

    def resolve(self, name: str, parent_hints: Optional[Dict[str, str]] = None) -> Optional[GazetteerMatch]:
        """Resolve a village name; raise TransientLookupFailure on timeouts."""
        ...


def place_key(name: Optional[str]) -> str:
    """Comparison key for place names: case-folded, punctuation-free."""
    if not name:
        return ""
    text = re.sub(r"[^\w\s]", " ", name.casefold())
    return re.sub(r"\s+", " ", text).strip()


class InMemoryGazetteer:
    """
    Gazetteer backed by an in-memory list of places.

    Usage:
        gazetteer = InMemoryGazetteer.from_geojson("data/villages.geojson")
        match = gazetteer.resolve("Khairwada", {"district": "Betul"})
    """

    def __init__(self, places: Iterable[Place], match_threshold: float = 80.0):
        self.places: List[Place] = list(places)
        self.match_threshold = match_threshold

    def __len__(self) -> int:
        return len(self.places)

    def _within_hints(self, hints: Dict[str, str]) -> List[Place]:
        """Places whose parents agree with every hint that was given."""
        given = {level: place_key(hints.get(level)) for level in HINT_LEVELS if hints.get(level)}
        if not given:
            return self.places

        selected = []
        for place in self.places:
            agrees = True
            for level, hint in given.items():
                parent = place_key(getattr(place, level))
                if parent and fuzz.ratio(parent, hint) < self.match_threshold:
                    agrees = False
                    break
            if agrees:
                selected.append(place)
        return selected

    def resolve(self, name: str, parent_hints: Optional[Dict[str, str]] = None) -> Optional[GazetteerMatch]:
        """
        Resolve a village name within optional parent hints.

        Returns:
            GazetteerMatch, or None when nothing scores above the threshold
        """
        key = place_key(name)
        if not key:
            return None

        candidates = self._within_hints(parent_hints or {})
        if not candidates:
            logger.debug(f"No places within hints {parent_hints}; searching all {len(self.places)}")
            candidates = self.places

        exact = [p for p in candidates if place_key(p.village) == key]
        if exact:
            if len(exact) > 1:
                logger.info(f"Ambiguous village name '{name}': {len(exact)} exact matches")
            confidence = max(50.0, 100.0 - 20.0 * (len(exact) - 1))
            return self._to_match(exact[0], confidence, exact=True)

        choices = {i: place_key(p.village) for i, p in enumerate(candidates)}
        best = process.extractOne(key, choices, scorer=fuzz.WRatio, score_cutoff=self.match_threshold)
        if best is None:
            return None
        _, score, index = best
        return self._to_match(candidates[index], float(score), exact=False)

    @staticmethod
    def _to_match(place: Place, confidence: float, exact: bool) -> GazetteerMatch:
        return GazetteerMatch(
            hierarchy=place.hierarchy,
            boundary=geometry_to_geojson(place.boundary),
            centroid=centroid_of(place.boundary),
            match_confidence=round(confidence, 2),
            exact=exact,
        )

    @classmethod
    def from_features(cls, features: Iterable[Dict], match_threshold: float = 80.0) -> "InMemoryGazetteer":
        """Build from GeoJSON features with hierarchy properties."""
        places = []
        for feature in features:
            props = feature.get("properties") or {}
            village = props.get("village") or props.get("name")
            if not village:
                logger.warning(f"Skipping gazetteer feature without a village name: {props}")
                continue
            places.append(Place(
                village=village,
                block=props.get("block"),
                district=props.get("district"),
                state=props.get("state"),
                state_code=props.get("state_code"),
                village_code=props.get("village_code"),
                boundary=geojson_to_geometry(feature["geometry"]),
            ))
        return cls(places, match_threshold=match_threshold)

    @classmethod
    def from_geojson(cls, path, match_threshold: float = 80.0) -> "InMemoryGazetteer":
        """Load a FeatureCollection of village boundaries."""
        with open(Path(path), "r", encoding="utf-8") as f:
            data = json.load(f)
        gazetteer = cls.from_features(data.get("features", []), match_threshold=match_threshold)
        logger.info(f"Loaded {len(gazetteer)} villages from {path}")
        return gazetteer
