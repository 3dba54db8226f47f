"""
Shared fixtures for intake pipeline tests.

Every test gets its own SQLite file under tmp_path, a manual clock, an
in-memory gazetteer with two villages and a collecting notifier.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from src.intake.config import PipelineConfig
from src.intake.notifications import CollectingNotifier
from src.intake.pipeline import IntakePipeline
from src.intake.schema import CommittedClaim, LayerType
from src.reference.gazetteer import InMemoryGazetteer
from src.reference.layers import SpatialLayerStore
from src.storage.claim_store import ClaimStore
from src.storage.job_store import JobStore


# ============================================================================
# Helper Functions
# ============================================================================


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def rectangle(lon: float, lat: float, width: float, height: float) -> Dict[str, Any]:
    """GeoJSON polygon with its south-west corner at (lon, lat)."""
    return {
        "type": "Polygon",
        "coordinates": [[
            [lon, lat],
            [lon + width, lat],
            [lon + width, lat + height],
            [lon, lat + height],
            [lon, lat],
        ]],
    }


def rectangle_coordinates(lon: float, lat: float, width: float, height: float) -> List[List[float]]:
    """Document-order (lat, lon) corners of a rectangle, as an extractor would emit them."""
    return [
        [lat, lon],
        [lat, lon + width],
        [lat + height, lon + width],
        [lat + height, lon],
    ]


def village_feature(village: str, code: str, block: str, polygon: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "properties": {
            "state": "Madhya Pradesh",
            "state_code": "MP",
            "district": "Betul",
            "block": block,
            "village": village,
            "village_code": code,
        },
        "geometry": polygon,
    }


# Khairwada: lon 77.90-77.92, lat 21.90-21.92
# Chicholi:  lon 77.95-77.97, lat 21.90-21.92
KHAIRWADA = rectangle(77.90, 21.90, 0.02, 0.02)
CHICHOLI = rectangle(77.95, 21.90, 0.02, 0.02)


class ListClaimSource:
    """Active-claim source over a plain list."""

    def __init__(self, claims: List[CommittedClaim]):
        self.claims = claims

    def list_active(self, region_code: Optional[str] = None) -> List[CommittedClaim]:
        return [c for c in self.claims if region_code is None or c.region_code == region_code]


def make_payload(confidence: float = 0.95, **overrides) -> Dict[str, Any]:
    """
    Build an upstream payload dict.

    Pass field=None to drop a field, or field=value to replace its value at
    the default confidence.
    """
    values = {
        "claim_number": "MP/IFR/2024/12345",
        "patta_holder": "ramesh kumar uikey",
        "village": "Khairwada",
        "block": "Shahpur",
        "district": "Betul",
        "state": "Madhya Pradesh",
        "land_extent": "2.5 acres",
        "coordinates": "21.9100, 77.9100",
        "claim_type": "Individual Forest Rights",
        "claim_status": "Submitted",
        "submission_date": "15/03/2024",
    }
    values.update(overrides)
    payload: Dict[str, Any] = {"payload_version": "1.0", "document_type": "form_a_ifr"}
    for name, value in values.items():
        if value is not None:
            payload[name] = {"value": value, "confidence": confidence, "source": "page:1"}
    return payload


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "intake.db"


@pytest.fixture
def job_store(db_path, clock):
    return JobStore(db_path, clock=clock)


@pytest.fixture
def claim_store(db_path, clock):
    return ClaimStore(db_path, clock=clock)


@pytest.fixture
def gazetteer():
    return InMemoryGazetteer.from_features([
        village_feature("Khairwada", "482913", "Shahpur", KHAIRWADA),
        village_feature("Chicholi", "482977", "Chicholi", CHICHOLI),
    ])


@pytest.fixture
def layers():
    """A protected area and a forest block well away from both villages."""
    return SpatialLayerStore(
        SpatialLayerStore.features_from_geojson(
            {"features": [{"id": "PA-1", "properties": {}, "geometry": rectangle(78.50, 22.50, 0.05, 0.05)}]},
            LayerType.PROTECTED,
        )
        + SpatialLayerStore.features_from_geojson(
            {"features": [{"id": "RF-1", "properties": {}, "geometry": rectangle(78.60, 22.60, 0.05, 0.05)}]},
            LayerType.FOREST,
        )
    )


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def config():
    return PipelineConfig(retry_backoff_base=0.0, retry_backoff_max=0.0)


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def make_pipeline(job_store, claim_store, gazetteer, layers, notifier, config, sleeps):
    """Factory so tests can swap the gazetteer, layers or config."""

    def _make(**overrides) -> IntakePipeline:
        kwargs = dict(
            jobs=job_store,
            claims=claim_store,
            gazetteer=gazetteer,
            layers=layers,
            notifier=notifier,
            config=config,
            sleep=sleeps.append,
        )
        kwargs.update(overrides)
        return IntakePipeline(**kwargs)

    return _make


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline()
