"""Declarative lookup tables: locations, metro clusters, manufacturer aliases, categories.

The tables are plain data. ``LookupTables.default()`` builds the shipped set;
``LookupTables.from_dict()`` loads an override (e.g. from JSON) so a new
market can be added without touching the composer.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from booking_assistant.core.exceptions import ConfigurationError

REGION_SUFFIX = "AZ"

# metro → member cities (display names, region suffix added on compile)
_METROS: Dict[str, List[str]] = {
    "phoenix": [
        "Phoenix", "Scottsdale", "Tempe", "Mesa", "Chandler", "Gilbert",
        "Glendale", "Peoria", "Goodyear", "Surprise", "Queen Creek",
        "Paradise Valley", "Avondale", "Fountain Hills", "Cave Creek",
    ],
    "tucson": ["Tucson", "Oro Valley", "Marana"],
    "sedona": ["Sedona"],
    "flagstaff": ["Flagstaff"],
}

# colloquial names, airports, neighbourhoods, common misspellings → city
_LOCATION_ALIASES: Dict[str, str] = {
    "phx": "Phoenix",
    "sky harbor": "Phoenix",
    "sky harbor airport": "Phoenix",
    "phoenix sky harbor": "Phoenix",
    "phx airport": "Phoenix",
    "downtown phoenix": "Phoenix",
    "ahwatukee": "Phoenix",
    "pheonix": "Phoenix",
    "phenix": "Phoenix",
    "phoneix": "Phoenix",
    "the valley": "Phoenix",
    "valley of the sun": "Phoenix",
    "old town": "Scottsdale",
    "old town scottsdale": "Scottsdale",
    "north scottsdale": "Scottsdale",
    "scotsdale": "Scottsdale",
    "scottsdal": "Scottsdale",
    "scottsdale airport": "Scottsdale",
    "asu": "Tempe",
    "tempe town lake": "Tempe",
    "mesa gateway": "Mesa",
    "mesa gateway airport": "Mesa",
    "aza": "Mesa",
    "gateway airport": "Mesa",
    "westgate": "Glendale",
    "pv": "Paradise Valley",
    "tus": "Tucson",
    "tucson airport": "Tucson",
    "tuscon": "Tucson",
    "flag": "Flagstaff",
    "red rock": "Sedona",
}

_MANUFACTURER_ALIASES: Dict[str, str] = {
    "chevy": "Chevrolet",
    "chev": "Chevrolet",
    "chevorlet": "Chevrolet",
    "vw": "Volkswagen",
    "volkswagon": "Volkswagen",
    "merc": "Mercedes-Benz",
    "mercedes": "Mercedes-Benz",
    "mercedes benz": "Mercedes-Benz",
    "benz": "Mercedes-Benz",
    "mercedez": "Mercedes-Benz",
    "beemer": "BMW",
    "bimmer": "BMW",
    "toyta": "Toyota",
    "toyoda": "Toyota",
    "porche": "Porsche",
    "lambo": "Lamborghini",
    "caddy": "Cadillac",
    "caddilac": "Cadillac",
    "range rover": "Land Rover",
    "landrover": "Land Rover",
    "hyundia": "Hyundai",
    "hundai": "Hyundai",
    "jag": "Jaguar",
    "alfa": "Alfa Romeo",
    "rolls": "Rolls-Royce",
    "rolls royce": "Rolls-Royce",
    "nissian": "Nissan",
    "subie": "Subaru",
    "telsa": "Tesla",
    "tesler": "Tesla",
}

_MANUFACTURERS: List[str] = [
    "Acura", "Alfa Romeo", "Audi", "Bentley", "BMW", "Bugatti", "Buick",
    "Cadillac", "Chevrolet", "Chrysler", "Dodge", "Ferrari", "Fiat", "Ford",
    "Genesis", "GMC", "Honda", "Hyundai", "Infiniti", "Jaguar", "Jeep", "Kia",
    "Lamborghini", "Land Rover", "Lexus", "Lincoln", "Lucid", "Maserati",
    "Mazda", "McLaren", "Mercedes-Benz", "Mini", "Mitsubishi", "Nissan",
    "Polestar", "Porsche", "Ram", "Rivian", "Rolls-Royce", "Subaru", "Tesla",
    "Toyota", "Volkswagen", "Volvo",
]

_CATEGORIES: Dict[str, Dict[str, Any]] = {
    "electric": {"fuel_types": ["electric"], "makes": ["Tesla", "Rivian", "Polestar", "Lucid"]},
    "hybrid": {"fuel_types": ["hybrid", "plug-in hybrid"]},
    "suv": {"body_styles": ["suv", "crossover"]},
    "truck": {"body_styles": ["truck", "pickup"]},
    "minivan": {"body_styles": ["minivan", "van"]},
    "sedan": {"body_styles": ["sedan"]},
    "compact": {"body_styles": ["compact", "hatchback"]},
    "convertible": {"body_styles": ["convertible"]},
    "sports": {
        "body_styles": ["sports", "coupe"],
        "makes": ["Porsche", "Ferrari", "Lamborghini", "McLaren"],
    },
    "luxury": {
        "makes": [
            "BMW", "Mercedes-Benz", "Audi", "Lexus", "Porsche", "Cadillac",
            "Land Rover", "Maserati", "Genesis", "Bentley", "Rolls-Royce",
        ],
        "min_daily_rate": 150,
    },
    "exotic": {
        "makes": ["Lamborghini", "Ferrari", "McLaren", "Bugatti", "Rolls-Royce", "Bentley"],
        "min_daily_rate": 400,
    },
    "economy": {
        "body_styles": ["sedan", "compact", "hatchback"],
        "max_daily_rate": 60,
        "match": "all",
    },
}

_CATEGORY_ALIASES: Dict[str, str] = {
    "ev": "electric",
    "evs": "electric",
    "electric car": "electric",
    "electric vehicle": "electric",
    "suvs": "suv",
    "crossover": "suv",
    "pickup": "truck",
    "pickup truck": "truck",
    "van": "minivan",
    "sport": "sports",
    "sports car": "sports",
    "sportscar": "sports",
    "premium": "luxury",
    "luxury car": "luxury",
    "supercar": "exotic",
    "budget": "economy",
    "cheap": "economy",
    "hatchback": "compact",
    "cabrio": "convertible",
    "drop top": "convertible",
}

_TRANSMISSION_ALIASES: Dict[str, str] = {
    "auto": "automatic",
    "automatic": "automatic",
    "stick": "manual",
    "stick shift": "manual",
    "manual": "manual",
}


@dataclass(frozen=True)
class CategoryRule:
    """Predicate group for one loose category.

    ``match="any"`` ORs the configured criteria, ``match="all"`` ANDs them.
    """

    name: str
    body_styles: Tuple[str, ...] = ()
    fuel_types: Tuple[str, ...] = ()
    makes: Tuple[str, ...] = ()
    min_daily_rate: Optional[float] = None
    max_daily_rate: Optional[float] = None
    match: str = "any"

    def __post_init__(self) -> None:
        if self.match not in ("any", "all"):
            raise ConfigurationError(f"Category {self.name!r}: match must be 'any' or 'all'")
        if not (self.body_styles or self.fuel_types or self.makes
                or self.min_daily_rate is not None or self.max_daily_rate is not None):
            raise ConfigurationError(f"Category {self.name!r} has no criteria")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "body_styles": list(self.body_styles),
            "fuel_types": list(self.fuel_types),
            "makes": list(self.makes),
            "min_daily_rate": self.min_daily_rate,
            "max_daily_rate": self.max_daily_rate,
            "match": self.match,
        }


def _key(text: str) -> str:
    return " ".join(text.strip().lower().split())


@dataclass(frozen=True)
class LookupTables:
    """Compiled, case-insensitive lookup structures.

    Every canonical value is also a key of its own table, so normalising an
    already-canonical value returns it unchanged.
    """

    region: str = REGION_SUFFIX
    city_to_metro: Mapping[str, str] = field(default_factory=dict)
    metros: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    location_aliases: Mapping[str, str] = field(default_factory=dict)
    manufacturer_aliases: Mapping[str, str] = field(default_factory=dict)
    categories: Mapping[str, CategoryRule] = field(default_factory=dict)
    category_aliases: Mapping[str, str] = field(default_factory=dict)
    transmission_aliases: Mapping[str, str] = field(default_factory=dict)

    # ── Construction ──────────────────────────────────────────────

    @classmethod
    def default(cls) -> "LookupTables":
        return cls.from_dict({
            "region": REGION_SUFFIX,
            "metros": _METROS,
            "location_aliases": _LOCATION_ALIASES,
            "manufacturers": _MANUFACTURERS,
            "manufacturer_aliases": _MANUFACTURER_ALIASES,
            "categories": _CATEGORIES,
            "category_aliases": _CATEGORY_ALIASES,
            "transmission_aliases": _TRANSMISSION_ALIASES,
        })

    @classmethod
    def from_file(cls, path: str | Path) -> "LookupTables":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read lookup tables {path}", cause=exc) from exc
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LookupTables":
        region = str(data.get("region") or REGION_SUFFIX)
        metros_raw: Dict[str, List[str]] = data.get("metros") or {}
        if not metros_raw:
            raise ConfigurationError("Lookup tables need at least one metro")

        city_to_metro: Dict[str, str] = {}
        metros: Dict[str, Tuple[str, ...]] = {}
        location_aliases: Dict[str, str] = {}
        for metro, cities in metros_raw.items():
            canonical = tuple(f"{c.strip()}, {region}" for c in cities)
            metros[_key(metro)] = canonical
            for city, full in zip(cities, canonical):
                if full in city_to_metro:
                    raise ConfigurationError(f"City {full!r} belongs to more than one metro")
                city_to_metro[full] = _key(metro)
                location_aliases[_key(city)] = full
                location_aliases[_key(full)] = full

        for alias, city in (data.get("location_aliases") or {}).items():
            target = location_aliases.get(_key(city))
            if target is None:
                raise ConfigurationError(
                    f"Location alias {alias!r} points at unknown city {city!r}"
                )
            location_aliases[_key(alias)] = target

        manufacturer_aliases: Dict[str, str] = {
            _key(m): m for m in data.get("manufacturers") or []
        }
        for alias, make in (data.get("manufacturer_aliases") or {}).items():
            manufacturer_aliases[_key(alias)] = make
            manufacturer_aliases.setdefault(_key(make), make)

        categories: Dict[str, CategoryRule] = {}
        for name, rule in (data.get("categories") or {}).items():
            categories[_key(name)] = CategoryRule(
                name=_key(name),
                body_styles=tuple(_key(s) for s in rule.get("body_styles") or ()),
                fuel_types=tuple(_key(s) for s in rule.get("fuel_types") or ()),
                makes=tuple(rule.get("makes") or ()),
                min_daily_rate=rule.get("min_daily_rate"),
                max_daily_rate=rule.get("max_daily_rate"),
                match=rule.get("match", "any"),
            )

        category_aliases = {name: name for name in categories}
        for alias, target in (data.get("category_aliases") or {}).items():
            if _key(target) not in categories:
                raise ConfigurationError(f"Category alias {alias!r} points at unknown {target!r}")
            category_aliases[_key(alias)] = _key(target)

        return cls(
            region=region,
            city_to_metro=city_to_metro,
            metros=metros,
            location_aliases=location_aliases,
            manufacturer_aliases=manufacturer_aliases,
            categories=categories,
            category_aliases=category_aliases,
            transmission_aliases={
                _key(k): _key(v) for k, v in (data.get("transmission_aliases") or {}).items()
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        suffix = f", {self.region}"
        return {
            "region": self.region,
            "metros": {
                metro: [c[: -len(suffix)] if c.endswith(suffix) else c for c in cities]
                for metro, cities in self.metros.items()
            },
            "location_aliases": dict(self.location_aliases),
            "manufacturer_aliases": dict(self.manufacturer_aliases),
            "categories": {n: r.to_dict() for n, r in self.categories.items()},
            "category_aliases": dict(self.category_aliases),
            "transmission_aliases": dict(self.transmission_aliases),
        }

    @property
    def serviced_cities(self) -> Tuple[str, ...]:
        return tuple(self.city_to_metro)
