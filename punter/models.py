from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


class PunterError(Exception):
    """Base class for every failure surfaced by the punter package."""


class ProtocolError(PunterError):
    """Raised when a message parses as JSON but has the wrong shape."""


def _field(obj: Any, key: str, where: str) -> Any:
    if not isinstance(obj, dict):
        raise ProtocolError(f"{where}: expected an object, got {type(obj).__name__}")
    if key not in obj:
        raise ProtocolError(f"{where}: missing field {key!r}")
    return obj[key]


def _int(obj: Any, key: str, where: str) -> int:
    value = _field(obj, key, where)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ProtocolError(f"{where}: field {key!r} must be a non-negative integer, got {value!r}")
    return value


def _list(obj: Any, key: str, where: str) -> List[Any]:
    value = _field(obj, key, where)
    if not isinstance(value, list):
        raise ProtocolError(f"{where}: field {key!r} must be a list")
    return value


def _optional_bool(obj: Dict[str, Any], key: str, where: str) -> bool:
    value = obj.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ProtocolError(f"{where}: field {key!r} must be a boolean")
    return value


@dataclass
class Site:
    id: int
    x: float = 0.0
    y: float = 0.0

    @classmethod
    def from_dict(cls, data: Any) -> "Site":
        x = data.get("x", 0.0) if isinstance(data, dict) else 0.0
        y = data.get("y", 0.0) if isinstance(data, dict) else 0.0
        return cls(id=_int(data, "id", "site"), x=float(x), y=float(y))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "x": self.x, "y": self.y}


@dataclass
class River:
    source: int
    target: int

    @classmethod
    def from_dict(cls, data: Any) -> "River":
        return cls(source=_int(data, "source", "river"), target=_int(data, "target", "river"))

    def to_dict(self) -> Dict[str, int]:
        return {"source": self.source, "target": self.target}


@dataclass
class GameMap:
    sites: List[Site] = field(default_factory=list)
    rivers: List[River] = field(default_factory=list)
    mines: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "GameMap":
        sites = [Site.from_dict(s) for s in _list(data, "sites", "map")]
        rivers = [River.from_dict(r) for r in _list(data, "rivers", "map")]
        mines = []
        for mine in _list(data, "mines", "map"):
            if isinstance(mine, bool) or not isinstance(mine, int) or mine < 0:
                raise ProtocolError(f"map: mine ids must be non-negative integers, got {mine!r}")
            mines.append(mine)
        return cls(sites=sites, rivers=rivers, mines=mines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sites": [s.to_dict() for s in self.sites],
            "rivers": [r.to_dict() for r in self.rivers],
            "mines": list(self.mines),
        }


@dataclass
class Settings:
    futures: bool = False
    splurge: bool = False
    options: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "Settings":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ProtocolError("settings: expected an object")
        return cls(
            futures=_optional_bool(data, "futures", "settings"),
            splurge=_optional_bool(data, "splurge", "settings"),
            options=_optional_bool(data, "options", "settings"),
        )

    def to_dict(self) -> Dict[str, bool]:
        return {"futures": self.futures, "splurge": self.splurge, "options": self.options}


@dataclass
class Setup:
    punter: int
    punters: int
    map: GameMap
    settings: Settings = field(default_factory=Settings)

    @classmethod
    def from_dict(cls, data: Any) -> "Setup":
        setup = cls(
            punter=_int(data, "punter", "setup"),
            punters=_int(data, "punters", "setup"),
            map=GameMap.from_dict(_field(data, "map", "setup")),
            settings=Settings.from_dict(data.get("settings")),
        )
        if setup.punters == 0 or setup.punter >= setup.punters:
            raise ProtocolError(f"setup: punter {setup.punter} out of range for {setup.punters} punters")
        return setup

    def to_dict(self) -> Dict[str, Any]:
        return {
            "punter": self.punter,
            "punters": self.punters,
            "map": self.map.to_dict(),
            "settings": self.settings.to_dict(),
        }


@dataclass
class Future:
    source: int  # mine site id
    target: int  # target site id

    @classmethod
    def from_dict(cls, data: Any) -> "Future":
        return cls(source=_int(data, "source", "future"), target=_int(data, "target", "future"))

    def to_dict(self) -> Dict[str, int]:
        return {"source": self.source, "target": self.target}


@dataclass
class Score:
    punter: int
    score: int

    @classmethod
    def from_dict(cls, data: Any) -> "Score":
        value = _field(data, "score", "score")
        if isinstance(value, bool) or not isinstance(value, int):
            raise ProtocolError("score: field 'score' must be an integer")
        return cls(punter=_int(data, "punter", "score"), score=value)

    def to_dict(self) -> Dict[str, int]:
        return {"punter": self.punter, "score": self.score}


# Moves


@dataclass
class Claim:
    punter: int
    source: int
    target: int

    def to_dict(self) -> Dict[str, Any]:
        return {"claim": {"punter": self.punter, "source": self.source, "target": self.target}}


@dataclass
class Pass:
    punter: int

    def to_dict(self) -> Dict[str, Any]:
        return {"pass": {"punter": self.punter}}


@dataclass
class Splurge:
    punter: int
    route: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"splurge": {"punter": self.punter, "route": list(self.route)}}

    def legs(self) -> List[Claim]:
        """Split the route into its pairwise claims, in route order."""
        return [Claim(self.punter, a, b) for a, b in zip(self.route, self.route[1:])]


@dataclass
class Option:
    punter: int
    source: int
    target: int

    def to_dict(self) -> Dict[str, Any]:
        return {"option": {"punter": self.punter, "source": self.source, "target": self.target}}


Move = Union[Claim, Pass, Splurge, Option]

MOVE_KINDS = ("claim", "pass", "splurge", "option")


def move_from_dict(data: Any) -> Move:
    """Parse one `{claim|pass|splurge|option: {...}}` object."""
    if not isinstance(data, dict):
        raise ProtocolError(f"move: expected an object, got {type(data).__name__}")
    kinds = [k for k in MOVE_KINDS if k in data]
    if len(kinds) != 1:
        raise ProtocolError(f"move: expected exactly one of {MOVE_KINDS}, got keys {sorted(data)}")
    kind = kinds[0]
    body = data[kind]
    if kind == "claim":
        return Claim(_int(body, "punter", kind), _int(body, "source", kind), _int(body, "target", kind))
    if kind == "option":
        return Option(_int(body, "punter", kind), _int(body, "source", kind), _int(body, "target", kind))
    if kind == "splurge":
        route = _list(body, "route", kind)
        for site in route:
            if isinstance(site, bool) or not isinstance(site, int) or site < 0:
                raise ProtocolError(f"splurge: route entries must be site ids, got {site!r}")
        return Splurge(_int(body, "punter", kind), list(route))
    return Pass(_int(body, "punter", kind))


def moves_from_list(data: Any) -> List[Move]:
    if not isinstance(data, list):
        raise ProtocolError("moves: expected a list")
    return [move_from_dict(m) for m in data]


# Graph model


@dataclass
class Edge:
    """A river in node space with its ownership.

    `source < target` always. `owner is None` means unclaimed; `option_owner`
    is only ever set on top of an owner.
    """
    source: int
    target: int
    owner: Optional[int] = None
    option_owner: Optional[int] = None

    @property
    def is_unclaimed(self) -> bool:
        return self.owner is None

    @property
    def is_optioned(self) -> bool:
        return self.option_owner is not None

    @property
    def claim_state(self) -> str:
        if self.owner is None:
            return "unclaimed"
        if self.option_owner is None:
            return "claimed"
        return "optioned"

    def owned_by(self, punter: int) -> bool:
        return self.owner == punter or self.option_owner == punter

    def can_claim(self, punter: int, is_option: bool = False) -> bool:
        if self.owner is None:
            return True
        if self.option_owner is not None:
            return False
        return is_option and self.owner != punter

    def claim(self, punter: int, is_option: bool = False) -> bool:
        """Apply a claim or option; return False if the transition is illegal."""
        if not self.can_claim(punter, is_option):
            return False
        if self.owner is None:
            self.owner = punter
        else:
            self.option_owner = punter
        return True
