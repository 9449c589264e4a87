from unittest.mock import AsyncMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from leadenrich.services import outcome
from leadenrich.services.address_resolver import (
    Address,
    AddressResolver,
    Coordinates,
    Geocoder,
    PostalLookupError,
    extract_number,
    format_address,
    is_valid,
    parse_coordinates,
    parse_geocode_response,
    strip_number,
)
from leadenrich.services.postal_cache import PostalCache

VIACEP_PAYLOAD = {
    "cep": "01310-100",
    "logradouro": "Avenida Paulista",
    "bairro": "Bela Vista",
    "localidade": "São Paulo",
    "uf": "SP",
}


def make_resolver(redis_client, sleep, lookup=None, geocoder=None):
    client = AsyncMock()
    client.lookup = lookup or AsyncMock(return_value=dict(VIACEP_PAYLOAD))
    resolver = AddressResolver(
        PostalCache(redis_client),
        client,
        geocoder=geocoder,
        min_interval=1.0,
        sleep=sleep,
    )
    return resolver, client


@pytest.mark.parametrize(
    "street,expected_street,expected_number",
    [
        ("Rua das Flores, 123", "Rua das Flores", "123"),
        ("Rua das Flores 45", "Rua das Flores", "45"),
        ("Rua das Flores, nº 12B", "Rua das Flores", "12B"),
        ("Rua das Flores, 123 - Sala 4", "Rua das Flores - Sala 4", "123"),
        ("Rua das Flores", "Rua das Flores", None),
    ],
)
def test_number_extraction(street, expected_street, expected_number):
    assert extract_number(street) == expected_number
    assert strip_number(street) == expected_street


def test_parse_coordinates():
    assert parse_coordinates("-23.5614, -46.6559") == Coordinates(-23.5614, -46.6559)
    assert parse_coordinates("not,coords") is None
    assert parse_coordinates("123.0,10") is None
    assert parse_coordinates(None) is None


def test_is_valid_and_format():
    address = Address(street="Avenida Paulista", number="1000", city="São Paulo", state="SP", postal_code="01310100")

    assert is_valid(address)
    assert not is_valid(Address(street="Avenida Paulista", city="São Paulo", state="SP", postal_code="0131"))
    assert format_address(address) == "Avenida Paulista, 1000, São Paulo, SP, 01310100"


@pytest.mark.asyncio
async def test_resolve_fills_address_from_lookup(redis_client, sleep):
    resolver, client = make_resolver(redis_client, sleep)

    result = await resolver.resolve_detailed(Address(street="Av Paulista, 1000", postal_code="01310-100"))

    assert result.degraded is False
    assert result.reason == outcome.LOOKUP
    assert result.value.street == "Avenida Paulista"
    assert result.value.number == "1000"
    assert result.value.city == "São Paulo"
    assert result.value.state == "SP"
    assert result.value.postal_code == "01310100"
    client.lookup.assert_awaited_once_with("01310100")


@pytest.mark.asyncio
async def test_second_resolution_is_served_from_cache(redis_client, sleep):
    resolver, client = make_resolver(redis_client, sleep)

    await resolver.resolve(Address(postal_code="01310100"))
    second = await resolver.resolve_detailed(Address(postal_code="01310-100"))

    assert second.reason == outcome.CACHE_HIT
    assert second.value.street == "Avenida Paulista"
    assert client.lookup.await_count == 1


@pytest.mark.asyncio
async def test_missing_postal_code_falls_back_without_lookup(redis_client, sleep):
    resolver, client = make_resolver(redis_client, sleep)
    partial = Address(street="Rua A, 10", city="Campinas", state="SP")

    result = await resolver.resolve_detailed(partial)

    assert result.degraded is True
    assert result.reason == outcome.MISSING_POSTAL_CODE
    assert result.value.street == "Rua A"
    assert result.value.number == "10"
    assert result.value.city == "Campinas"
    client.lookup.assert_not_awaited()


@pytest.mark.asyncio
async def test_lookup_failure_returns_input_fields(redis_client, sleep):
    lookup = AsyncMock(side_effect=PostalLookupError(outcome.TIMEOUT))
    resolver, _ = make_resolver(redis_client, sleep, lookup=lookup)
    partial = Address(street="Rua B", city="Recife", state="PE", postal_code="50000000")

    result = await resolver.resolve_detailed(partial)

    assert result.degraded is True
    assert result.reason == outcome.TIMEOUT
    assert result.value.city == "Recife"
    assert await resolver.cache.get("50000000") is None


@pytest.mark.asyncio
async def test_lookups_are_spaced(redis_client, sleep):
    resolver, client = make_resolver(redis_client, sleep)

    await resolver.resolve(Address(postal_code="01310100"))
    await resolver.resolve(Address(postal_code="20040020"))

    assert client.lookup.await_count == 2
    assert len(sleep.calls) == 1
    assert 0 < sleep.calls[0] <= 1.0


@pytest.mark.asyncio
async def test_geocoder_coordinates_override_input(redis_client, sleep):
    geocoder = AsyncMock()
    geocoder.geocode = AsyncMock(return_value=Coordinates(-23.56, -46.65))
    resolver, _ = make_resolver(redis_client, sleep, geocoder=geocoder)

    address = await resolver.resolve(Address(postal_code="01310100", coordinates=Coordinates(0.0, 0.0)))

    assert address.coordinates == Coordinates(-23.56, -46.65)


@pytest.mark.asyncio
async def test_input_coordinates_kept_without_geocoder(redis_client, sleep):
    resolver, _ = make_resolver(redis_client, sleep)

    address = await resolver.resolve(Address(postal_code="01310100", coordinates=Coordinates(-23.5, -46.6)))

    assert address.coordinates == Coordinates(-23.5, -46.6)


@pytest.fixture
async def geocoding_server():
    replies = {"status": 200, "body": "{}", "content_type": "application/json"}

    async def handler(request):
        return web.Response(status=replies["status"], text=replies["body"], content_type=replies["content_type"])

    app = web.Application()
    app.router.add_get("/geocode/json", handler)
    server = TestServer(app)
    await server.start_server()
    yield server, replies
    await server.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body,content_type",
    [
        (200, "<html>oops</html>", "text/html"),
        (200, "[1, 2, 3]", "application/json"),
        (200, '{"results": ["unexpected"]}', "application/json"),
        (200, '{"results": [{"geometry": {"location": {"lat": "north"}}}]}', "application/json"),
        (500, "error", "text/plain"),
    ],
)
async def test_geocoder_failures_leave_address_validated(redis_client, sleep, geocoding_server, status, body, content_type):
    server, replies = geocoding_server
    replies.update(status=status, body=body, content_type=content_type)
    geocoder = Geocoder("test-key", base_url=str(server.make_url("/geocode/json")), timeout=5)
    resolver, _ = make_resolver(redis_client, sleep, geocoder=geocoder)

    result = await resolver.resolve_detailed(Address(postal_code="01310100", street="Av Paulista, 1000"))

    assert result.degraded is False
    assert result.reason == outcome.LOOKUP
    assert result.value.street == "Avenida Paulista"
    assert result.value.coordinates is None


@pytest.mark.asyncio
async def test_geocoder_returns_first_location(redis_client, sleep, geocoding_server):
    server, replies = geocoding_server
    replies["body"] = '{"results": [{"geometry": {"location": {"lat": -23.56, "lng": -46.65}}}]}'
    geocoder = Geocoder("test-key", base_url=str(server.make_url("/geocode/json")), timeout=5)
    resolver, _ = make_resolver(redis_client, sleep, geocoder=geocoder)

    address = await resolver.resolve(Address(postal_code="01310100"))

    assert address.coordinates == Coordinates(-23.56, -46.65)


@pytest.mark.asyncio
async def test_geocoder_exception_does_not_escape(redis_client, sleep):
    geocoder = AsyncMock()
    geocoder.geocode = AsyncMock(side_effect=RuntimeError("geocoder exploded"))
    resolver, client = make_resolver(redis_client, sleep, geocoder=geocoder)

    address = await resolver.resolve(Address(postal_code="01310-100"))

    assert is_valid(address)
    assert address.city == "São Paulo"
    assert address.coordinates is None
    assert await resolver.cache.get("01310100") is not None


def test_parse_geocode_response_rejects_unexpected_shapes():
    assert parse_geocode_response(None) is None
    assert parse_geocode_response({"results": []}) is None
    assert parse_geocode_response({"results": [{"geometry": "x"}]}) is None
    assert parse_geocode_response(
        {"results": [{"geometry": {"location": {"lat": "-1.5", "lng": 2}}}]}
    ) == Coordinates(-1.5, 2.0)
