"""
Geoapify places client: nearby search by coordinates and free-text search.

Returns PlaceRecord lists with social-care facilities, retirement homes and residential
buildings filtered out. Callers dedupe by place_id and throttle via RateLimiter.
ENV: GEOAPIFY_API_KEY, GEOAPIFY_BASE_URL, GEOAPIFY_TIMEOUT_SECONDS.
"""
from typing import Any, Dict, List, Optional, Sequence

import httpx

from tourism_director.config import Settings, get_settings
from tourism_director.exceptions import ConfigurationError, PlacesApiError
from tourism_director.logging_config import get_logger
from tourism_director.schemas.places import PlaceRecord

logger = get_logger(__name__)

EXCLUDED_CATEGORIES = (
    "service.social_facility",
    "amenity.social_facility",
    "healthcare.nursing_home",
    "healthcare.assisted_living",
    "healthcare.retirement_home",
    "building.residential",
)

EXCLUDED_NAME_KEYWORDS = (
    "penzioner",
    "retirement",
    "nursing",
    "starački",
    "gerontološki",
    "gerontoloski",
    "dom za stare",
    "dom za starije",
    "elderly",
    "seniorski",
    "aged care",
    "soup kitchen",
)


def is_excluded_place(place: PlaceRecord) -> bool:
    """Place in an excluded category or named like a care home / social facility."""
    if any(exc in cat for cat in place.categories for exc in EXCLUDED_CATEGORIES):
        return True
    text = f"{place.name} {place.address}".lower()
    return any(keyword in text for keyword in EXCLUDED_NAME_KEYWORDS)


def _feature_to_place(feature: Dict[str, Any]) -> Optional[PlaceRecord]:
    props = feature.get("properties") or {}
    place_id = props.get("place_id")
    if not place_id:
        return None
    raw = (props.get("datasource") or {}).get("raw") or {}
    contact = props.get("contact") or {}
    return PlaceRecord(
        place_id=str(place_id),
        name=(props.get("name") or "").strip(),
        address=(props.get("formatted") or props.get("address_line2") or "").strip(),
        lat=props.get("lat"),
        lng=props.get("lon"),
        categories=list(props.get("categories") or []),
        website=props.get("website") or raw.get("website"),
        phone=contact.get("phone") or raw.get("phone"),
    )


class PlacesService:
    """Thin async client over the Geoapify places and geocoding endpoints."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = settings or get_settings()
        self.api_key = settings.geoapify_api_key
        self.base_url = settings.geoapify_base_url.rstrip("/")
        self.timeout = settings.geoapify_timeout_seconds
        self.default_radius = settings.places_search_radius
        self._transport = transport

    async def search_nearby(
        self,
        lat: float,
        lng: float,
        categories: Sequence[str],
        radius: Optional[int] = None,
        limit: int = 20,
        lang: str = "en",
    ) -> List[PlaceRecord]:
        """Places of the given categories within radius metres of (lat, lng)."""
        params = {
            "categories": ",".join(categories),
            "filter": f"circle:{lng},{lat},{radius or self.default_radius}",
            "limit": limit,
            "lang": lang,
        }
        data = await self._get("/v2/places", params)
        return self._places_from(data)

    async def text_search(
        self,
        query: str,
        categories: Sequence[str] = (),
        limit: int = 20,
        country_code: Optional[str] = None,
        lang: str = "en",
    ) -> List[PlaceRecord]:
        """Free-text search (geocoder). categories only narrow the returned records."""
        params: Dict[str, Any] = {"text": query, "limit": limit, "lang": lang}
        if country_code:
            params["filter"] = f"countrycode:{country_code.lower()}"
        data = await self._get("/v1/geocode/search", params)
        places = self._places_from(data)
        if categories:
            wanted = tuple(categories)
            matching = [p for p in places if any(c.startswith(w) for c in p.categories for w in wanted)]
            places = matching or places
        return places

    def _places_from(self, data: Dict[str, Any]) -> List[PlaceRecord]:
        places = []
        for feature in data.get("features") or []:
            place = _feature_to_place(feature)
            if place is None or not place.name:
                continue
            if is_excluded_place(place):
                logger.debug("places.excluded", name=place.name)
                continue
            places.append(place)
        return places

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise ConfigurationError("GEOAPIFY_API_KEY is not configured")
        query = dict(params, apiKey=self.api_key)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(f"{self.base_url}{path}", params=query)
        except httpx.TimeoutException as e:
            logger.warning("places.timeout", path=path, error=str(e))
            raise PlacesApiError(f"Places API timeout: {e}") from e
        except httpx.RequestError as e:
            logger.warning("places.request_error", path=path, error=str(e))
            raise PlacesApiError(f"Places API request failed: {e}") from e
        if resp.status_code in (401, 403):
            raise ConfigurationError(f"Places API rejected key ({resp.status_code})")
        if resp.status_code >= 400:
            logger.warning("places.http_error", path=path, status_code=resp.status_code)
            raise PlacesApiError(f"Places API error {resp.status_code}", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise PlacesApiError("Places API returned invalid JSON") from e
