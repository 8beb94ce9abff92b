import io
from typing import Any, List

import pytest

from punter.io import FramingError, MessageIO, read_message, write_message
from punter.maps import load_map
from punter.models import GameMap, River, Settings, Setup, Site


@pytest.fixture
def sample_map() -> GameMap:
    return load_map("sample.json")


@pytest.fixture
def ring_map() -> GameMap:
    """Five sites in a ring, two mines. Site ids are sparse to exercise renumbering."""
    return GameMap(
        sites=[Site(50), Site(30), Site(10), Site(40), Site(20)],
        rivers=[River(10, 20), River(20, 30), River(30, 40), River(40, 50), River(50, 10)],
        mines=[10, 30],
    )


@pytest.fixture
def ring_setup(ring_map: GameMap) -> Setup:
    return Setup(punter=0, punters=2, map=ring_map, settings=Settings())


def frames(*messages: Any) -> io.BytesIO:
    buffer = io.BytesIO()
    for message in messages:
        write_message(buffer, message)
    buffer.seek(0)
    return buffer


def read_all(buffer: io.BytesIO) -> List[Any]:
    buffer.seek(0)
    messages = []
    while True:
        try:
            messages.append(read_message(buffer))
        except FramingError:
            return messages


def memory_io(*incoming: Any) -> MessageIO:
    return MessageIO(frames(*incoming), io.BytesIO())
