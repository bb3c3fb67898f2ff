import httpx
import pytest

from models import LocationInput
from services.geocoding import NominatimGeocoder, resolve_location


def geocoder_for(handler):
    return NominatimGeocoder("https://nominatim.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_geocode_first_result():
    def handler(request):
        assert request.url.path == "/search"
        assert request.url.params["q"] == "Rondebosch"
        return httpx.Response(200, json=[{"lat": "-33.96", "lon": "18.47", "display_name": "Rondebosch, Cape Town"}])

    geocoder = geocoder_for(handler)
    location = await geocoder.geocode("Rondebosch")
    await geocoder.close()

    assert (location.latitude, location.longitude) == (-33.96, 18.47)
    assert location.address == "Rondebosch, Cape Town"


@pytest.mark.asyncio
async def test_geocode_failures_return_none():
    geocoder = geocoder_for(lambda request: httpx.Response(503))
    assert await geocoder.geocode("Anywhere") is None
    assert await geocoder.reverse_geocode(0, 0) is None
    await geocoder.close()


@pytest.mark.asyncio
async def test_geocode_without_results():
    geocoder = geocoder_for(lambda request: httpx.Response(200, json=[]))
    assert await geocoder.geocode("Atlantis") is None
    await geocoder.close()


@pytest.mark.asyncio
async def test_coordinates_are_reverse_geocoded_for_an_address():
    geocoder = geocoder_for(lambda request: httpx.Response(200, json={"display_name": "Main Rd, Claremont"}))

    location = await resolve_location(LocationInput(latitude=-33.98, longitude=18.46), geocoder)
    await geocoder.close()

    assert location.address == "Main Rd, Claremont"
    assert location.latitude == -33.98


@pytest.mark.asyncio
async def test_address_only_without_geocoder_is_unresolved():
    assert await resolve_location(LocationInput(address="Somewhere"), None) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    [{"display_name": "No coordinates"}],
    [{"lat": "north", "lon": "18.47"}],
    {"error": "Unable to geocode"},
])
async def test_malformed_results_return_none(payload):
    geocoder = geocoder_for(lambda request: httpx.Response(200, json=payload))
    assert await geocoder.geocode("Rondebosch") is None
    await geocoder.close()
