import pytest

from services.helpers import calculate_fare, decode_polyline, haversine


def test_haversine_same_point_is_zero():
    assert haversine((-33.92, 18.42), (-33.92, 18.42)) == 0


def test_haversine_is_symmetric():
    a, b = (-33.92, 18.42), (-26.2, 28.04)
    assert haversine(a, b) == pytest.approx(haversine(b, a))


def test_haversine_one_degree_of_latitude_in_meters():
    assert haversine((0, 0), (1, 0)) == pytest.approx(111195, rel=1e-3)


def test_haversine_cape_town_to_johannesburg():
    assert haversine((-33.9249, 18.4241), (-26.2041, 28.0473)) == pytest.approx(1_263_000, rel=0.01)


def test_calculate_fare_rounds_minutes_up():
    # 25 + 10 km * 12 + ceil(11.5 min) * 0.5
    assert calculate_fare(10_000, 690) == 151


def test_calculate_fare_custom_rates():
    assert calculate_fare(2_000, 60, base_fare=10, per_km=5, per_minute=1) == 21


def test_decode_polyline():
    points = decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@")
    assert points == [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]


def test_decode_polyline_empty():
    assert decode_polyline(None) == []
    assert decode_polyline("") == []
