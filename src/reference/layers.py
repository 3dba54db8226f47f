"""
Spatial layer store: protected, forest and revenue boundaries.

Read-only from the pipeline's perspective; each layer is indexed with a
Shapely STRtree so intersection queries stay cheap for large layers.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree

from ..intake.geometry import area_hectares, centroid_of, geojson_to_geometry
from ..intake.schema import LayerType

logger = logging.getLogger(__name__)

GeometryLike = Union[BaseGeometry, Dict[str, Any]]


@dataclass(frozen=True)
class LayerFeature:
    """A reference feature (or committed claim) with its geometry."""
    feature_id: str
    layer_type: LayerType
    geometry: BaseGeometry
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LayerHit:
    """One intersecting feature and the overlap area in hectares."""
    feature_id: str
    layer_type: LayerType
    overlap_area_ha: float


def _as_geometry(geometry: GeometryLike) -> BaseGeometry:
    if isinstance(geometry, BaseGeometry):
        return geometry
    return geojson_to_geometry(geometry)


def overlap_hits(
    geometry: BaseGeometry,
    features: Sequence[LayerFeature],
    origin: Optional[Tuple[float, float]] = None,
) -> List[LayerHit]:
    """
    Intersect a geometry with candidate features.

    Point geometries produce zero-area hits when contained in a feature.
    Areas share the same projection origin so overlap ratios stay consistent.
    """
    origin = origin or centroid_of(geometry)
    hits = []
    for feature in features:
        if not geometry.intersects(feature.geometry):
            continue
        if geometry.geom_type == "Point":
            overlap = 0.0
        else:
            overlap = area_hectares(geometry.intersection(feature.geometry), origin)
            if overlap <= 0.0 and not geometry.within(feature.geometry):
                # touching boundaries only
                continue
        hits.append(LayerHit(feature.feature_id, feature.layer_type, overlap))
    return hits


class SpatialLayerStore:
    """
    In-memory spatial layer collaborator.

    Usage:
        layers = SpatialLayerStore.from_geojson_files({
            LayerType.PROTECTED: "data/protected.geojson",
            LayerType.FOREST: "data/forest.geojson",
        })
        hits = layers.intersects(candidate.geometry, LayerType.PROTECTED)
    """

    def __init__(self, features: Iterable[LayerFeature] = ()):
        self._features: Dict[LayerType, List[LayerFeature]] = {}
        for feature in features:
            self._features.setdefault(feature.layer_type, []).append(feature)
        self._trees: Dict[LayerType, STRtree] = {
            layer: STRtree([f.geometry for f in items])
            for layer, items in self._features.items()
        }

    @property
    def layer_types(self) -> List[LayerType]:
        return list(self._features)

    def count(self, layer_type: LayerType) -> int:
        return len(self._features.get(layer_type, []))

    def intersects(self, geometry: GeometryLike, layer_type: LayerType) -> List[LayerHit]:
        """Features of one layer intersecting the geometry, with overlap areas."""
        tree = self._trees.get(layer_type)
        if tree is None:
            return []
        geom = _as_geometry(geometry)
        indices = tree.query(geom, predicate="intersects")
        candidates = [self._features[layer_type][int(i)] for i in indices]
        return overlap_hits(geom, candidates)

    @staticmethod
    def features_from_geojson(data: Dict[str, Any], layer_type: LayerType) -> List[LayerFeature]:
        """Parse a FeatureCollection dict into layer features."""
        features = []
        for i, feature in enumerate(data.get("features", [])):
            props = feature.get("properties") or {}
            feature_id = str(feature.get("id") or props.get("id") or f"{layer_type.value}-{i}")
            features.append(LayerFeature(
                feature_id=feature_id,
                layer_type=layer_type,
                geometry=geojson_to_geometry(feature["geometry"]),
                properties=props,
            ))
        return features

    @classmethod
    def from_geojson(cls, path, layer_type: LayerType) -> "SpatialLayerStore":
        """Load a single layer from a FeatureCollection file."""
        return cls.from_geojson_files({layer_type: path})

    @classmethod
    def from_geojson_files(cls, paths: Dict[LayerType, Any]) -> "SpatialLayerStore":
        """Load several layers, skipping unset paths."""
        features: List[LayerFeature] = []
        for layer_type, path in paths.items():
            if not path:
                continue
            with open(Path(path), "r", encoding="utf-8") as f:
                data = json.load(f)
            loaded = cls.features_from_geojson(data, layer_type)
            logger.info(f"Loaded {len(loaded)} {layer_type.value} features from {path}")
            features.extend(loaded)
        return cls(features)
