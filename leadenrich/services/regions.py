# leadenrich/services/regions.py
from __future__ import annotations

from typing import Dict, Optional

SOUTHEAST = "sudeste"
SOUTH = "sul"
CENTER_WEST = "centro-oeste"
NORTHEAST = "nordeste"
NORTH = "norte"

STATE_REGIONS: Dict[str, str] = {
    "SP": SOUTHEAST, "RJ": SOUTHEAST, "MG": SOUTHEAST, "ES": SOUTHEAST,
    "RS": SOUTH, "SC": SOUTH, "PR": SOUTH,
    "GO": CENTER_WEST, "MT": CENTER_WEST, "MS": CENTER_WEST, "DF": CENTER_WEST,
    "BA": NORTHEAST, "PE": NORTHEAST, "CE": NORTHEAST, "PB": NORTHEAST, "RN": NORTHEAST,
    "AL": NORTHEAST, "SE": NORTHEAST, "MA": NORTHEAST, "PI": NORTHEAST,
    "TO": NORTH, "PA": NORTH, "AP": NORTH, "AM": NORTH, "AC": NORTH, "RO": NORTH, "RR": NORTH,
}

REGIONS = (SOUTHEAST, SOUTH, CENTER_WEST, NORTHEAST, NORTH)


def region_for_state(state: Optional[str]) -> Optional[str]:
    if not state:
        return None
    return STATE_REGIONS.get(state.strip().upper())


def resolve_region(value: Optional[str]) -> Optional[str]:
    """Map a state code or a region name to its canonical region name."""
    if not value:
        return None
    cleaned = value.strip()
    region = region_for_state(cleaned)
    if region:
        return region
    lowered = cleaned.lower()
    return lowered if lowered in REGIONS else None
