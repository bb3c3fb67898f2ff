import logging
from google.maps import routing_v2
from google.type import latlng_pb2
from models import Location, TripRoute

logger = logging.getLogger(__name__)

ROUTE_FIELD_MASK = "routes.distanceMeters,routes.duration,routes.polyline.encodedPolyline"

def _waypoint(location: Location):
    return routing_v2.Waypoint(
        location=routing_v2.Location(
            lat_lng=latlng_pb2.LatLng(latitude=location.latitude, longitude=location.longitude)
        )
    )

async def get_driving_route(client, origin: Location, destination: Location):
    """Driving distance, duration and polyline between two points, or None"""
    if client is None:
        return None

    request = routing_v2.ComputeRoutesRequest(
        origin=_waypoint(origin),
        destination=_waypoint(destination),
        travel_mode=routing_v2.RouteTravelMode.DRIVE
    )
    metadata = (("x-goog-fieldmask", ROUTE_FIELD_MASK),)

    try:
        response = await client.compute_routes(request=request, metadata=metadata)
    except Exception as e:
        logger.warning(f"Error getting driving route: {type(e).__name__} - {e}")
        return None

    if not response.routes:
        logger.warning("No driving route found between pickup and dropoff")
        return None

    route = response.routes[0]
    return TripRoute(
        distance=route.distance_meters,
        duration=route.duration.total_seconds(),
        polyline=route.polyline.encoded_polyline or None,
    )
