"""
Cache key builders.

Keys are `<domain>:<operation>:<param>:...`, built from every query
parameter in a fixed order. Absent optional parameters are written as the
`ALL` sentinel, so an omitted filter and an explicit `ALL` share one key.

Invalidation and warming rely on these exact shapes.
"""

from typing import Optional, Tuple

ALL_SENTINEL = "ALL"

# Every prefix under which a generation-derived result may be cached
STATES_PREFIX = "states:"
STATE_PREFIX = "state:"
PLANTS_PREFIX = "plants:"
PLANT_PREFIX = "plant:"

GENERATION_PREFIXES: Tuple[str, ...] = (
    STATES_PREFIX,
    STATE_PREFIX,
    PLANTS_PREFIX,
    PLANT_PREFIX,
)


def _param(value: Optional[object]) -> str:
    if value is None or value == "":
        return ALL_SENTINEL
    return str(value)


def top_plants_key(top: int, state: Optional[str] = None, year: Optional[int] = None) -> str:
    """plants:top:{top}:{state|ALL}:{year|ALL}"""
    return f"plants:top:{top}:{_param(state)}:{_param(year)}"


def plant_key(plant_id: int) -> str:
    """plant:{id}"""
    return f"plant:{plant_id}"


def all_states_key() -> str:
    return "states:all"


def states_summary_key(year: int) -> str:
    """states:summary:{year}"""
    return f"states:summary:{year}"


def state_detail_key(code: str, year: int, top: int) -> str:
    """state:{CODE}:{year}:top:{n}"""
    return f"state:{code.upper()}:{year}:top:{top}"
