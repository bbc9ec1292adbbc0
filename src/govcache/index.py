"""Build a browsable index of everything in the cache.

Each schema root (``https``, ``http``, ...) is scanned into a tree of
directory and file nodes, the trees are merged, and the merged tree is
normalized so that every directory holds more than one file.

While scanning, a directory that holds a metadata record cannot yet tell
whether it is a single resource or also the parent of nested resources, so
the file node for that record is left unnamed until normalization decides.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import ClassVar, Iterable, Sequence, Union

from .errors import CorruptEntry, EntryNotFound
from .metadata import MetadataRecord
from .store import METADATA_NAME, BodyStore, EntryStore, FileBodyStore

DEFAULT_SCHEMAS = ("https", "http")
INDEX_FILENAME = "index.json"
INDEX_RESOURCE_NAME = "<index>"
_UNNAMED = ""


@dataclass(slots=True)
class FileNode:
    name: str
    content_type: str
    size: int
    schema: str
    path: str

    type: ClassVar[str] = "file"

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "name": self.name,
            "contentType": self.content_type,
            "size": self.size,
            "schema": self.schema,
            "path": self.path,
        }


@dataclass(slots=True)
class DirNode:
    name: str
    path: str
    children: list["IndexNode"] = field(default_factory=list)
    n_files: int = 0
    size: int = 0

    type: ClassVar[str] = "directory"

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "name": self.name,
            "path": self.path,
            "children": [child.to_dict() for child in self.children],
            "nFiles": self.n_files,
            "size": self.size,
        }


IndexNode = Union[FileNode, DirNode]


def sort_key(node: IndexNode) -> tuple[str, str]:
    """Directories before files, then by case-sensitive name."""

    return node.type, node.name


def _file_count(node: IndexNode) -> int:
    return node.n_files if isinstance(node, DirNode) else 1


def _read_file_node(
    base: Path, schema: str, metadata_path: str, bodies: BodyStore
) -> FileNode | None:
    try:
        text = (base / metadata_path).read_bytes().decode("utf-8")
    except FileNotFoundError:
        return None
    record = MetadataRecord.parse(text, source=f"{schema}/{metadata_path}")
    if record.body_filename is None:
        return None

    parent = metadata_path[: -len(METADATA_NAME)]
    body_path = f"{parent}{record.body_filename}"
    key = f"{schema}/{parent}".rstrip("/")
    try:
        size = bodies.size(key, record.body_filename)
    except EntryNotFound as exc:
        raise CorruptEntry(f"{schema}/{metadata_path} refers to missing body {body_path}") from exc

    return FileNode(
        name=_UNNAMED,
        content_type=record.content_type,
        size=size,
        schema=schema,
        path=body_path,
    )


def scan(
    root: Path,
    schema: str,
    directory: str = "",
    *,
    bodies: BodyStore | None = None,
) -> list[IndexNode]:
    """Read *root* recursively, looking for metadata/body pairs.

    *root* is the ``<storage_root>/<schema>`` directory. Body sizes come from
    *bodies*, which defaults to the local files under the storage root.

    Returns a sorted list: directories first, then files. A directory and a
    file may share a name when both ``example.org/topic`` and
    ``example.org/topic/subtopic`` were downloaded; redirect stubs hold no
    body and are left out.
    """

    base = Path(root)
    if bodies is None:
        bodies = FileBodyStore(base.parent)
    current = base / directory if directory else base
    nodes: list[IndexNode] = []

    for child in current.iterdir():
        path = f"{directory}/{child.name}" if directory else child.name
        if child.is_dir():
            children = scan(base, schema, path, bodies=bodies)
            nodes.append(
                DirNode(
                    name=child.name,
                    path=path,
                    children=children,
                    n_files=sum(_file_count(c) for c in children),
                    size=sum(c.size for c in children),
                )
            )
        elif child.is_file() and child.name == METADATA_NAME:
            node = _read_file_node(base, schema, path, bodies)
            if node is not None:
                nodes.append(node)

    nodes.sort(key=sort_key)
    return nodes


def merge(a: Sequence[IndexNode], b: Sequence[IndexNode]) -> list[IndexNode]:
    """Merge two sorted sibling lists recursively.

    If a file exists in both, the one from *b* is dropped.
    """

    merged: list[IndexNode] = []
    i = 0
    j = 0

    while i < len(a) and j < len(b):
        left, right = a[i], b[j]
        left_key, right_key = sort_key(left), sort_key(right)
        if left_key < right_key:
            merged.append(left)
            i += 1
        elif left_key > right_key:
            merged.append(right)
            j += 1
        else:
            if isinstance(left, DirNode) and isinstance(right, DirNode):
                children = merge(left.children, right.children)
                merged.append(
                    replace(
                        left,
                        children=children,
                        n_files=sum(_file_count(c) for c in children),
                        size=sum(c.size for c in children),
                    )
                )
            else:
                merged.append(left)  # conflicting filenames
            i += 1
            j += 1

    merged.extend(a[i:])
    merged.extend(b[j:])
    return merged


def normalize_node(node: IndexNode) -> IndexNode | None:
    """Collapse single-file directories into their file.

    Returns ``None`` for a directory that holds no files at all. The result
    may still be unnamed; :func:`normalize` names it.
    """

    if isinstance(node, FileNode):
        return node
    if node.n_files == 0:
        return None

    # Children keep their unnamed marker until this directory knows whether
    # it collapses into its only file.
    children = _normalize_siblings(node.children)
    if node.n_files == 1:
        (only,) = children
        name = node.name if only.name == _UNNAMED else f"{node.name}/{only.name}"
        return replace(only, name=name)
    return replace(node, children=_name_unnamed(children))


def _normalize_siblings(nodes: Iterable[IndexNode]) -> list[IndexNode]:
    cleaned: list[IndexNode] = []
    for node in nodes:
        normalized = normalize_node(node)
        if normalized is not None:
            cleaned.append(normalized)
    return cleaned


def _name_unnamed(nodes: Iterable[IndexNode]) -> list[IndexNode]:
    named = [
        replace(node, name=INDEX_RESOURCE_NAME) if node.name == _UNNAMED else node
        for node in nodes
    ]
    named.sort(key=sort_key)
    return named


def normalize(nodes: Iterable[IndexNode]) -> list[IndexNode]:
    """Normalize sibling nodes; afterwards no node is left unnamed."""

    return _name_unnamed(_normalize_siblings(nodes))


def build_index(
    storage_root: Path,
    schemas: Sequence[str] = DEFAULT_SCHEMAS,
    *,
    store: EntryStore | None = None,
) -> list[IndexNode]:
    """Scan, merge and normalize every schema root; earlier schemas win conflicts.

    Pass the cache's *store* when bodies live outside the storage root.
    """

    bodies = store.bodies if store is not None else FileBodyStore(Path(storage_root))
    merged: list[IndexNode] = []
    for schema in schemas:
        root = Path(storage_root) / schema
        if not root.is_dir():
            continue
        merged = merge(merged, scan(root, schema, bodies=bodies))
    return normalize(merged)


def index_to_json(nodes: Sequence[IndexNode]) -> str:
    return json.dumps([node.to_dict() for node in nodes])


def write_index(
    storage_root: Path,
    destination: Path | None = None,
    *,
    schemas: Sequence[str] = DEFAULT_SCHEMAS,
    store: EntryStore | None = None,
) -> Path:
    storage_root = Path(storage_root)
    target = destination or storage_root / INDEX_FILENAME
    nodes = build_index(storage_root, schemas, store=store)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(index_to_json(nodes), encoding="utf-8")
    return target


__all__ = [
    "DirNode",
    "FileNode",
    "INDEX_RESOURCE_NAME",
    "IndexNode",
    "build_index",
    "index_to_json",
    "merge",
    "normalize",
    "normalize_node",
    "scan",
    "write_index",
]
