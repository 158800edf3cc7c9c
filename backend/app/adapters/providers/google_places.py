"""
Google Places Client
Text search for a business followed by the details of the best match
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import BaseProviderClient, ProviderResult
from app.services.api_key_service import ApiKeyService

logger = logging.getLogger(__name__)

PLACES_API_BASE = "https://maps.googleapis.com/maps/api/place"

DETAIL_FIELDS = ",".join([
    "place_id",
    "name",
    "formatted_address",
    "formatted_phone_number",
    "international_phone_number",
    "website",
    "url",
    "rating",
    "user_ratings_total",
    "types",
    "business_status",
    "opening_hours",
    "geometry",
])

# First matching place type wins
TYPE_INDUSTRIES = {
    "accounting": "Contabilidad",
    "lawyer": "Legal / Abogados",
    "insurance_agency": "Seguros",
    "real_estate_agency": "Bienes Raices",
    "travel_agency": "Turismo / Viajes",
    "finance": "Finanzas",
    "bank": "Banca",
    "doctor": "Salud / Medicina",
    "hospital": "Salud / Hospitales",
    "pharmacy": "Farmacia",
    "dentist": "Odontologia",
    "veterinary_care": "Veterinaria",
    "health": "Salud",
    "electronics_store": "Tecnologia / Electronica",
    "home_goods_store": "Hogar / Decoracion",
    "furniture_store": "Muebles",
    "restaurant": "Restaurantes / Gastronomia",
    "bakery": "Panaderia / Alimentos",
    "cafe": "Cafeteria",
    "bar": "Bar / Entretenimiento",
    "lodging": "Hoteleria",
    "meal_delivery": "Delivery / Comida",
    "store": "Retail / Comercio",
    "shopping_mall": "Centro Comercial",
    "clothing_store": "Moda / Ropa",
    "shoe_store": "Calzado",
    "jewelry_store": "Joyeria",
    "car_dealer": "Automotriz / Concesionarios",
    "car_repair": "Automotriz / Talleres",
    "car_wash": "Automotriz / Lavado",
    "school": "Educacion",
    "university": "Educacion Superior",
    "library": "Biblioteca",
    "general_contractor": "Construccion",
    "electrician": "Servicios Electricos",
    "plumber": "Plomeria",
    "beauty_salon": "Belleza / Estetica",
    "hair_care": "Peluqueria",
    "spa": "Spa / Bienestar",
    "gym": "Fitness / Gimnasio",
}

ESTABLISHMENT_FALLBACKS = [
    ("food", "Alimentos / Bebidas"),
    ("health", "Salud"),
    ("finance", "Finanzas"),
]


def map_types_to_industry(types: List[str]) -> Optional[str]:
    for place_type in types:
        if place_type in TYPE_INDUSTRIES:
            return TYPE_INDUSTRIES[place_type]
    if "establishment" in types:
        for place_type, industry in ESTABLISHMENT_FALLBACKS:
            if place_type in types:
                return industry
    return None


@dataclass
class PlaceResult(ProviderResult):
    place_id: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    international_phone: Optional[str] = None
    website: Optional[str] = None
    maps_url: Optional[str] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    types: List[str] = field(default_factory=list)
    business_status: Optional[str] = None
    open_now: Optional[bool] = None
    location: Optional[Dict[str, float]] = None
    candidates: int = 0


class GooglePlacesClient(BaseProviderClient):
    name = "google_places"
    timeout = 15.0

    def __init__(self, api_keys: ApiKeyService, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_keys = api_keys

    async def _get(self, endpoint: str, params: Dict[str, str]) -> Dict[str, Any]:
        response = await self.request(
            f"{PLACES_API_BASE}/{endpoint}/json",
            params=params,
            headers={"Accept": "application/json"},
        )
        data = response.json()
        status = data.get("status")
        if status == "REQUEST_DENIED":
            raise ValueError("API key invalid or not authorized")
        if status not in ("OK", "ZERO_RESULTS"):
            raise ValueError(data.get("error_message") or status or "API error")
        return data

    async def find_business(self, business_name: str, location: Optional[str] = None) -> PlaceResult:
        """Best text-search match with its details; success with no place_id when nothing matches"""
        api_key = await self.api_keys.get_decrypted_key("google_places")
        if not api_key:
            return PlaceResult(success=False, error="Google Places API key not configured")

        query = f"{business_name} {location}" if location else business_name
        try:
            search = await self.call(lambda: self._get("textsearch", {"query": query, "key": api_key}))
            candidates = search.get("results") or []
            if not candidates:
                return PlaceResult(success=True, error="No results found")

            place_id = candidates[0].get("place_id")
            details = await self.call(
                lambda: self._get("details", {"place_id": place_id, "fields": DETAIL_FIELDS, "key": api_key})
            )
        except Exception as e:
            return self.failure(PlaceResult, e)

        place = details.get("result") or {}
        location_data = (place.get("geometry") or {}).get("location")
        logger.debug(f"Google Places match for {query!r}: {place.get('name')}")
        return PlaceResult(
            success=True,
            place_id=place.get("place_id") or place_id,
            name=place.get("name"),
            address=place.get("formatted_address"),
            phone=place.get("formatted_phone_number"),
            international_phone=place.get("international_phone_number"),
            website=place.get("website"),
            maps_url=place.get("url"),
            rating=place.get("rating"),
            user_ratings_total=place.get("user_ratings_total"),
            types=place.get("types") or [],
            business_status=place.get("business_status"),
            open_now=(place.get("opening_hours") or {}).get("open_now"),
            location=location_data,
            candidates=len(candidates),
        )
