"""
Default emergency keyword catalogs for the supported industries.
"""
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from emergency_dispatch.models.assessment import KeywordCatalog, Language


def _unique(keywords: Iterable[str]) -> tuple:
    return tuple(dict.fromkeys(keywords))


def build_catalog(industry_code: str, en: Iterable[str], es: Iterable[str]) -> KeywordCatalog:
    """Build a catalog with duplicate keywords removed."""
    return KeywordCatalog(
        industry_code=industry_code,
        keywords={Language.EN: _unique(en), Language.ES: _unique(es)},
    )


HVAC_CATALOG = build_catalog(
    "hvac",
    en=[
        "no heat", "no heating", "furnace not working", "heater broken",
        "no cooling", "no air conditioning", "AC not working", "air conditioner broken",
        "gas smell", "gas leak", "carbon monoxide", "CO detector",
        "furnace out", "heater out", "AC out", "cooling out",
        "emergency", "urgent", "asap", "immediately", "right now",
        "freezing", "too hot", "too cold",
        "pilot light", "flame", "smoke", "burning smell",
    ],
    es=[
        "sin calefacción", "no calienta", "horno no funciona", "calentador roto",
        "sin aire", "sin refrigeración", "aire acondicionado no funciona", "AC roto",
        "olor a gas", "fuga de gas", "monóxido de carbono", "detector de CO",
        "horno descompuesto", "calentador descompuesto", "AC descompuesto",
        "emergencia", "urgente", "inmediatamente", "ahora mismo", "ya",
        "congelando", "muy caliente", "muy frío",
        "piloto", "llama", "humo", "olor a quemado",
    ],
)

PLUMBING_CATALOG = build_catalog(
    "plumbing",
    en=[
        "burst pipe", "flooding", "water everywhere", "pipe burst",
        "no water", "water pressure", "leak", "leaking", "drip",
        "toilet overflowing", "toilet backed up", "sewer backup",
        "drain clogged", "drain blocked", "drain not working",
        "water heater", "no hot water", "water heater leak",
        "emergency", "urgent", "asap", "immediately", "right now",
        "water damage", "basement flooded",
        "sewer smell", "sewage", "backup", "overflow",
    ],
    es=[
        "tubería reventada", "inundación", "agua por todas partes", "tubería rota",
        "sin agua", "presión de agua", "fuga", "goteando", "goteo",
        "inodoro desbordado", "inodoro tapado", "alcantarillado tapado",
        "drenaje tapado", "drenaje bloqueado", "drenaje no funciona",
        "calentador de agua", "sin agua caliente", "fuga de calentador",
        "emergencia", "urgente", "inmediatamente", "ahora mismo", "ya",
        "daño por agua", "sótano inundado",
        "olor a alcantarillado", "aguas negras", "tapado", "desbordado",
    ],
)

ELECTRICAL_CATALOG = build_catalog(
    "electrical",
    en=[
        "power outage", "no power", "electricity out", "lights out",
        "sparking", "sparks", "electrical fire", "burning smell",
        "shock", "electrocution", "electrical hazard", "dangerous",
        "outlet not working", "switch not working", "circuit breaker",
        "flickering lights", "power surge",
        "emergency", "urgent", "asap", "immediately", "right now",
        "smoke", "burning", "hot outlet",
        "exposed wires", "loose wires", "damaged wiring",
    ],
    es=[
        "corte de luz", "sin electricidad", "luz apagada", "sin luz",
        "chispas", "chispeando", "incendio eléctrico", "olor a quemado",
        "descarga", "electrocutado", "peligro eléctrico", "peligroso",
        "enchufe no funciona", "interruptor no funciona", "disyuntor",
        "luces parpadeando", "sobrecarga",
        "emergencia", "urgente", "inmediatamente", "ahora mismo", "ya",
        "humo", "quemando", "enchufe caliente",
        "cables expuestos", "cables sueltos", "cableado dañado",
    ],
)

DEFAULT_CATALOGS: Mapping[str, KeywordCatalog] = MappingProxyType({
    catalog.industry_code: catalog
    for catalog in (HVAC_CATALOG, PLUMBING_CATALOG, ELECTRICAL_CATALOG)
})


def get_default_catalog(industry_code: str) -> Optional[KeywordCatalog]:
    """Default catalog for an industry, if one ships with the service."""
    return DEFAULT_CATALOGS.get((industry_code or "").lower())
