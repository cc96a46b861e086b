"""Extract and re-pack Alice world archives (.a2w files are plain zips)."""
import os
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Dict, List

from alice_errors import ArchiveExtractionFailure, ArchivePackFailure

# General purpose bit 11: entry name is stored as UTF-8
UTF8_NAME_FLAG = 0x800

# Raised by zipfile for corrupt deflate data, encrypted or unsupported entries
ENTRY_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, NotImplementedError)


def norm_entry_name(path: str) -> str:
    """Normalize a relative path to the forward-slash form used inside zips."""
    path = path.replace("\\", "/")
    if path.startswith("./"):
        path = path[2:]
    while path.startswith("/"):
        path = path[1:]
    return path


def entry_name(info: zipfile.ZipInfo) -> str:
    """Name of an entry as the archive's writer meant it.

    Alice (Java) stores UTF-8 names without setting the UTF-8 flag, which
    zipfile then decodes as cp437.
    """
    if info.flag_bits & UTF8_NAME_FLAG:
        return info.filename
    try:
        name = info.orig_filename.encode("cp437").decode("utf-8")
    except UnicodeError:
        return info.filename
    return name.split("\x00", 1)[0]


def _is_drive(part: str) -> bool:
    return len(part) == 2 and part[1] == ":"


def _safe_target(dest_root: Path, name: str) -> Path:
    """Resolve where an entry lands under dest_root, refusing anything that escapes it."""
    posix_name = name.replace("\\", "/")
    parts = PurePosixPath(posix_name).parts
    if posix_name.startswith("/") or ".." in parts or (parts and _is_drive(parts[0])):
        raise ArchiveExtractionFailure(f"Archive entry escapes the world root: {name}")
    return dest_root.joinpath(*parts)


def extract_world(archive_path, dest_root) -> int:
    """Write every entry of the archive below dest_root.

    Directory entries only create directories. Returns the number of files
    written.
    """
    dest_root = Path(dest_root)
    written = 0
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for info in zf.infolist():
                name = entry_name(info)
                target = _safe_target(dest_root, name)
                if name.endswith("/"):
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info, "r") as src, open(target, "wb") as dst:
                    while True:
                        chunk = src.read(1024 * 1024)
                        if not chunk:
                            break
                        dst.write(chunk)
                written += 1
    except ArchiveExtractionFailure:
        raise
    except ENTRY_READ_ERRORS as e:
        raise ArchiveExtractionFailure(f"{archive_path} is not a valid world archive: {e}") from e
    except OSError as e:
        raise ArchiveExtractionFailure(f"Failed to extract {archive_path}: {e}") from e
    return written


def iter_world_files(root_dir) -> List[str]:
    """Sorted entry names of every regular file below root_dir."""
    root_dir = os.path.abspath(root_dir)
    files = []
    for cur_root, cur_dirs, cur_files in os.walk(root_dir):
        cur_dirs.sort()
        rel_root = os.path.relpath(cur_root, root_dir)
        rel_root = "" if rel_root == "." else norm_entry_name(rel_root)
        for f in sorted(cur_files):
            files.append(norm_entry_name(os.path.join(rel_root, f)))
    return sorted(files)


def pack_world(source_root, archive_path) -> int:
    """Zip every file below source_root into archive_path.

    Entry names are relative to source_root. The archive is built next to
    archive_path and only renamed into place once it is complete, so a
    failure never leaves a half-written world behind. Returns the number of
    entries written.
    """
    archive_path = Path(archive_path)
    partial_path = archive_path.with_name(archive_path.name + ".partial")
    files = iter_world_files(source_root)
    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(partial_path, "w", zipfile.ZIP_DEFLATED) as zf:
            for rel in files:
                zf.write(os.path.join(source_root, *rel.split("/")), rel)
        os.replace(partial_path, archive_path)
    except OSError as e:
        if partial_path.exists():
            partial_path.unlink()
        raise ArchivePackFailure(f"Failed to write {archive_path}: {e}") from e
    return len(files)


def read_world_entries(archive_path) -> Dict[str, bytes]:
    """Map each regular entry name in the archive to its content."""
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            return {
                entry_name(info): zf.read(info)
                for info in zf.infolist()
                if not entry_name(info).endswith("/")
            }
    except ENTRY_READ_ERRORS + (OSError,) as e:
        raise ArchiveExtractionFailure(f"Failed to read {archive_path}: {e}") from e
