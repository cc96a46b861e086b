import struct
import zipfile
from pathlib import Path

import pytest

CRITERION = "edu.cmu.cs.stage3.alice.core.criterion.InternalReferenceKeyedCriterion"

BROKEN_ELEMENT_DATA = b"""<?xml version="1.0" encoding="UTF-8"?>
<element class="edu.cmu.cs.stage3.alice.core.Model">
  <property name="name">b</property>
  <property name="index">oldvalue</property>
  <child filename="index"/>
</element>
"""

MARKED_ELEMENT_DATA = (
    b"""<?xml version="1.0" encoding="UTF-8"?>
<element class="edu.cmu.cs.stage3.alice.core.Model">
  <property name="name">c</property>
  <property name="index" criterionClass=\""""
    + CRITERION.encode()
    + b"""\">a.c.index</property>
  <child filename="index"/>
</element>
"""
)

PLAIN_ELEMENT_DATA = b"""<?xml version="1.0" encoding="UTF-8"?>
<element class="edu.cmu.cs.stage3.alice.core.World">
  <property name="name">world</property>
  <child filename="a"/>
</element>
"""

MALFORMED_ELEMENT_DATA = b"""<?xml version="1.0" encoding="UTF-8"?>
<element class="edu.cmu.cs.stage3.alice.core.Model">
  <property name="name">d</property>
  <child filename="index"/>
</element>
"""


@pytest.fixture
def make_world(tmp_path):
    """Build a world zip from {entry name: bytes}; a None value makes a directory entry."""

    def _make(entries, name="world.a2w"):
        path = tmp_path / name
        with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
            for entry, data in entries.items():
                if data is None:
                    zf.writestr(zipfile.ZipInfo(entry.rstrip("/") + "/"), b"")
                else:
                    zf.writestr(entry, data)
        return path

    return _make


@pytest.fixture
def sample_world(make_world):
    return make_world(
        {
            "elementData.xml": PLAIN_ELEMENT_DATA,
            "a/": None,
            "a/b/elementData.xml": BROKEN_ELEMENT_DATA,
            "a/c/elementData.xml": MARKED_ELEMENT_DATA,
            "a/b/textures/skin.png": b"\x89PNG\r\n\x1a\nfake",
            "version.txt": b"2.0\n",
        }
    )


@pytest.fixture
def out_path(tmp_path) -> Path:
    return tmp_path / "out" / "fixed.a2w"


@pytest.fixture
def make_legacy_world(tmp_path):
    """Build a STORED world whose names are raw UTF-8 without the UTF-8 flag, as Alice writes them.

    Each name is first written with an ASCII stand-in of the same byte length
    and patched afterwards, since zipfile always flags non-ASCII names.
    """

    def _make(entries, name="legacy.a2w"):
        path = tmp_path / name
        swaps = []
        with zipfile.ZipFile(path, "w", zipfile.ZIP_STORED) as zf:
            for i, (entry, data) in enumerate(entries.items()):
                raw = entry.encode("utf-8")
                stand_in = f"{i:0{len(raw)}d}".encode("ascii")
                zf.writestr(stand_in.decode("ascii"), data)
                swaps.append((stand_in, raw))
        blob = path.read_bytes()
        for stand_in, raw in swaps:
            blob = blob.replace(stand_in, raw)
        path.write_bytes(blob)
        return path

    return _make


def corrupt_deflate_stream(world, entry):
    """Overwrite the start of an entry's deflate data with an invalid block header."""
    with zipfile.ZipFile(world) as zf:
        offset = zf.getinfo(entry).header_offset
    blob = bytearray(world.read_bytes())
    name_len, extra_len = struct.unpack("<HH", bytes(blob[offset + 26:offset + 30]))
    start = offset + 30 + name_len + extra_len
    blob[start:start + 4] = b"\xff\xff\xff\xff"
    world.write_bytes(bytes(blob))
