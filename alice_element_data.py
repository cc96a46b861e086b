import os
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional

from alice_errors import (
    ArchiveParseFailure,
    InvalidInputPath,
    MalformedDescriptor,
    SerializationFailure,
)

ELEMENT_DATA_FILENAME = "elementData.xml"
INDEX_NAME = "index"
INTERNAL_REFERENCE_CRITERION = "edu.cmu.cs.stage3.alice.core.criterion.InternalReferenceKeyedCriterion"

# Verdicts returned by element_data_status()
STATUS_NO_INDEX = "no-index"
STATUS_OK = "ok"
STATUS_BROKEN = "broken"
STATUS_MALFORMED = "malformed"


def find_element_data(root_dir) -> List[Path]:
    """Return every elementData.xml below root_dir, at any depth."""
    root_dir = Path(root_dir)
    if not root_dir.is_dir():
        raise InvalidInputPath(f"Not a directory: {root_dir}")
    found = []
    for dirpath, dirnames, filenames in os.walk(root_dir, onerror=_raise_walk_error):
        dirnames.sort()
        if ELEMENT_DATA_FILENAME in filenames:
            found.append(Path(dirpath) / ELEMENT_DATA_FILENAME)
    return found


def _raise_walk_error(err: OSError):
    raise InvalidInputPath(f"Cannot read {err.filename}: {err.strerror}") from err


def parse_element_data(path) -> ET.ElementTree:
    """Parse a descriptor, keeping comments and processing instructions."""
    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True, insert_pis=True))
    try:
        return ET.parse(str(path), parser=parser)
    except (ET.ParseError, LookupError, ValueError) as e:
        raise ArchiveParseFailure(path, e) from e
    except OSError as e:
        raise ArchiveParseFailure(path, e.strerror or e) from e


def write_element_data(tree: ET.ElementTree, path) -> None:
    try:
        tree.write(str(path), encoding="utf-8", xml_declaration=True)
    except OSError as e:
        raise SerializationFailure(f"Failed to write {path}: {e}") from e


def has_index_variable(root: ET.Element) -> bool:
    """True if some <child> below root has filename="index"."""
    for child in root.iterfind(".//child"):
        if child.get("filename") == INDEX_NAME:
            return True
    return False


def has_index_reference_marker(root: ET.Element) -> bool:
    """True if some element below root marks index as an internal reference.

    The marker can sit at any depth inside the property structure. Only the
    element's leading text counts; an element that opens with a child
    element has no text value of its own.
    """
    for elem in root.iterfind(".//*"):
        if elem.get("criterionClass") != INTERNAL_REFERENCE_CRITERION:
            continue
        if elem.text is not None and elem.text.endswith(INDEX_NAME):
            return True
    return False


def find_index_property(root: ET.Element, source="elementData.xml", quiet=False) -> Optional[ET.Element]:
    """First <property name="index"> in document order, or None."""
    matches = root.findall(f".//property[@name='{INDEX_NAME}']")
    if not matches:
        return None
    if len(matches) > 1 and not quiet:
        print(f"[WARN] {source} has {len(matches)} index properties, fixing the first one")
    return matches[0]


def index_reference_name(package_dir: str) -> str:
    """Dotted reference for the index variable of the object stored in package_dir.

    >>> index_reference_name("a/b/")
    'a.b.index'
    """
    parts = [p for p in package_dir.replace("\\", "/").split("/") if p and p != "."]
    return ".".join(parts + [INDEX_NAME])


def element_data_status(root: ET.Element) -> str:
    if not has_index_variable(root):
        return STATUS_NO_INDEX
    if has_index_reference_marker(root):
        return STATUS_OK
    if root.find(f".//property[@name='{INDEX_NAME}']") is None:
        return STATUS_MALFORMED
    return STATUS_BROKEN


def repair_element_data(root: ET.Element, package_dir: str, source="elementData.xml", quiet=False) -> Optional[ET.Element]:
    """Mark the index property of a descriptor as an internal reference.

    package_dir is the descriptor's directory relative to the world root.
    Returns the rewritten property element, or None when the descriptor
    needed no repair. Raises MalformedDescriptor when an index variable is
    declared but no index property exists.
    """
    if not has_index_variable(root) or has_index_reference_marker(root):
        return None

    prop = find_index_property(root, source, quiet)
    if prop is None:
        raise MalformedDescriptor(source)

    prop.set("criterionClass", INTERNAL_REFERENCE_CRITERION)
    for child in list(prop):
        prop.remove(child)
    prop.text = index_reference_name(package_dir)
    return prop


def package_dir_for(path, world_root) -> str:
    """Directory of a descriptor relative to world_root, with '/' separators."""
    rel = os.path.relpath(os.path.dirname(os.path.abspath(path)), os.path.abspath(world_root))
    return "" if rel == "." else rel.replace(os.sep, "/")


def fix_element_data_file(path, world_root, quiet=False) -> Optional[str]:
    """Repair one extracted descriptor in place.

    Returns the new index reference when the file was rewritten, None when it
    was left untouched.
    """
    tree = parse_element_data(path)
    rel_name = package_dir_for(path, world_root)
    source = f"{rel_name}/{ELEMENT_DATA_FILENAME}" if rel_name else ELEMENT_DATA_FILENAME
    prop = repair_element_data(tree.getroot(), rel_name, source, quiet)
    if prop is None:
        return None
    write_element_data(tree, path)
    return prop.text


def inspect_element_data(path) -> str:
    """Status of one extracted descriptor, without modifying it."""
    return element_data_status(parse_element_data(path).getroot())
