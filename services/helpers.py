import math
import polyline

EARTH_RADIUS_METERS = 6371000

def decode_polyline(encoded_polyline_str):
    if not encoded_polyline_str:
        return []
    return polyline.decode(encoded_polyline_str)

def haversine(coord1, coord2):
    """Great-circle distance in meters between two (lat, lon) pairs"""
    lat1, lon1 = coord1
    lat2, lon2 = coord2

    lon1, lat1, lon2, lat2 = map(math.radians, [lon1, lat1, lon2, lat2])

    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = math.sin(dlat / 2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c

def calculate_fare(distance_meters, duration_seconds, base_fare=25, per_km=12, per_minute=0.5):
    distance_km = distance_meters / 1000
    time_factor = math.ceil(duration_seconds / 60) * per_minute
    return round(base_fare + distance_km * per_km + time_factor)
