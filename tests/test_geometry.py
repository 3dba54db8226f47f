"""Tests for coordinate parsing and metric measurements."""

import pytest
from shapely.geometry import Point, box

from src.intake.errors import MalformedGeometry
from src.intake.geometry import (
    area_hectares,
    centroid_of,
    coordinates_to_geometry,
    distance_metres,
    geojson_to_geometry,
    geometry_to_geojson,
    parse_dms,
    parse_point_text,
)


class TestParseDms:

    @pytest.mark.parametrize("text,expected", [
        ("22.7583", 22.7583),
        ("-77.5", -77.5),
        ("22°45'30\"N", 22.758333),
        ("22 45 30 N", 22.758333),
        ("22:45:30 S", -22.758333),
        ("77°30'W", -77.5),
        (12, 12.0),
    ])
    def test_formats(self, text, expected):
        assert parse_dms(text) == pytest.approx(expected, abs=1e-6)

    @pytest.mark.parametrize("text", ["north", "22°75'N", "1 2 3 4", "22.5 30 N"])
    def test_rejects(self, text):
        with pytest.raises(MalformedGeometry):
            parse_dms(text)


class TestParsePointText:

    def test_decimal_pair(self):
        assert parse_point_text("21.91, 77.91") == (21.91, 77.91)

    def test_whitespace_pair(self):
        assert parse_point_text("21.91 77.91") == (21.91, 77.91)

    def test_hemispheres_in_any_order(self):
        lat, lon = parse_point_text("77°54'36\"E 21°54'36\"N")
        assert lat == pytest.approx(21.91)
        assert lon == pytest.approx(77.91)

    def test_out_of_range_latitude(self):
        with pytest.raises(MalformedGeometry):
            parse_point_text("95.0, 77.0")

    def test_single_value(self):
        with pytest.raises(MalformedGeometry):
            parse_point_text("21.91")


class TestCoordinatesToGeometry:

    def test_point_is_lon_lat(self):
        geom = coordinates_to_geometry("21.91, 77.91")

        assert geom.geom_type == "Point"
        assert (geom.x, geom.y) == (77.91, 21.91)

    def test_flat_pair_list(self):
        geom = coordinates_to_geometry(["21.91", "77.91"])
        assert (geom.x, geom.y) == (77.91, 21.91)

    def test_semicolon_polygon(self):
        geom = coordinates_to_geometry("21.90, 77.90; 21.90, 77.91; 21.91, 77.91; 21.91, 77.90")

        assert geom.geom_type == "Polygon"
        assert geom.bounds == pytest.approx((77.90, 21.90, 77.91, 21.91))

    def test_dict_pairs(self):
        geom = coordinates_to_geometry([
            {"lat": 21.90, "lon": 77.90},
            {"lat": 21.90, "lng": 77.91},
            {"lat": 21.91, "lon": 77.91},
        ])
        assert geom.geom_type == "Polygon"

    def test_geojson_keeps_order(self):
        geom = coordinates_to_geometry({"type": "Point", "coordinates": [77.91, 21.91]})
        assert (geom.x, geom.y) == (77.91, 21.91)

    def test_two_vertices_is_not_a_polygon(self):
        with pytest.raises(MalformedGeometry):
            coordinates_to_geometry([[21.90, 77.90], [21.91, 77.91]])

    def test_self_intersecting_polygon(self):
        bowtie = [[0.0, 0.0], [1.0, 1.0], [0.0, 1.0], [1.0, 0.0]]
        with pytest.raises(MalformedGeometry, match="Invalid geometry"):
            coordinates_to_geometry(bowtie)

    def test_unsupported_type(self):
        with pytest.raises(MalformedGeometry):
            coordinates_to_geometry(42)


class TestGeoJson:

    def test_invalid_geojson(self):
        with pytest.raises(MalformedGeometry):
            geojson_to_geometry({"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]})

    def test_round_trip_is_json_friendly(self):
        data = geometry_to_geojson(box(0, 0, 1, 1))

        assert data["type"] == "Polygon"
        assert isinstance(data["coordinates"], list)
        assert isinstance(data["coordinates"][0][0], list)

    def test_none(self):
        assert geometry_to_geojson(None) is None


class TestMeasurements:

    def test_area_of_small_square_at_equator(self):
        # 0.01 degree = 1111.95 m on each side
        assert area_hectares(box(0, 0, 0.01, 0.01)) == pytest.approx(123.64, rel=1e-3)

    def test_area_shrinks_with_latitude(self):
        assert area_hectares(box(0, 60, 0.01, 60.01)) < area_hectares(box(0, 0, 0.01, 0.01))

    def test_point_has_no_area(self):
        assert area_hectares(Point(77.9, 21.9)) == 0.0

    def test_distance(self):
        assert distance_metres((0.0, 0.0), (0.0, 0.001)) == pytest.approx(111.195, rel=1e-4)

    def test_distance_is_symmetric(self):
        a, b = (77.91, 21.91), (77.96, 21.91)
        assert distance_metres(a, b) == pytest.approx(distance_metres(b, a))

    def test_centroid(self):
        assert centroid_of(box(0, 0, 2, 2)) == pytest.approx((1.0, 1.0))
