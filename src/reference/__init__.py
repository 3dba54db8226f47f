"""
Reference data providers: administrative gazetteer and spatial layers.

Both are read-only from the pipeline's perspective and safe to query
concurrently.
"""

from .gazetteer import Gazetteer, GazetteerMatch, InMemoryGazetteer, Place, place_key
from .layers import LayerFeature, LayerHit, SpatialLayerStore, overlap_hits

__all__ = [
    "Gazetteer",
    "GazetteerMatch",
    "InMemoryGazetteer",
    "Place",
    "place_key",
    "LayerFeature",
    "LayerHit",
    "SpatialLayerStore",
    "overlap_hits",
]
