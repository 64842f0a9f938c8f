#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ****************************************************************************************************************************************************
# * BSD 3-Clause License
# *
# * Copyright (c) 2025, Mana Battery
# * All rights reserved.
# *
# * Redistribution and use in source and binary forms, with or without modification, are permitted provided that the following conditions are met:
# *
# * 1. Redistributions of source code must retain the above copyright notice, this list of conditions and the following disclaimer.
# * 2. Redistributions in binary form must reproduce the above copyright notice, this list of conditions and the following disclaimer in the
# *    documentation and/or other materials provided with the distribution.
# * 3. Neither the name of the copyright holder nor the names of its contributors may be used to endorse or promote products derived from this
# *    software without specific prior written permission.
# *
# * THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO,
# * THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR
# * CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO,
# * PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF
# * LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE,
# * EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.
# ****************************************************************************************************************************************************
"""Content-addressed include tree nodes.

An include tree records, for one translation unit, every file entered during
preprocessing, the byte offset at which each nested inclusion happened and
the results of the __has_include probes evaluated in each file. Together with
the file manifest it is enough to replay preprocessing without touching the
filesystem.

Node kinds:
    include-file       FileNode: {filename, contents}
    include-tree       {characteristic, file, includes: [[ref, offset]], has_include_checks}
    include-file-list  FileManifest: {files: [[ref, size]]}
    include-tree-root  {main, file_list, pch}
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Type, TypeVar

from depscan.constants import IncludeTreeError, ObjectStoreError
from depscan.object_store import ContentRef, ObjectStore, decode_object, encode_canonical

logger = logging.getLogger(__name__)

NodeT = TypeVar("NodeT", "IncludeFile", "IncludeTree", "IncludeFileList", "IncludeTreeRoot")


class HeaderCharacteristic(enum.IntEnum):
    """How a file was found during header search.

    Values are stored in include tree nodes and must stay stable.

    Attributes:
        USER: Found through the includer's directory, -iquote or -I
        SYSTEM: Found through -isystem / -idirafter
        EXTERNAL: Found through an implicit extern "C" system directory
    """

    USER = 0
    SYSTEM = 1
    EXTERNAL = 2


def _bits_to_str(bits: Tuple[bool, ...]) -> str:
    return "".join("1" if bit else "0" for bit in bits)


def _str_to_bits(text: str) -> Tuple[bool, ...]:
    if any(ch not in "01" for ch in text):
        raise IncludeTreeError(f"Invalid has_include_checks value: {text!r}")
    return tuple(ch == "1" for ch in text)


@dataclass(frozen=True)
class IncludeFile:
    """A file path paired with the reference of its contents."""

    KIND: ClassVar[str] = "include-file"

    filename: str
    contents: ContentRef

    def to_object(self) -> Dict[str, Any]:
        return {"kind": self.KIND, "filename": self.filename, "contents": str(self.contents)}

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "IncludeFile":
        return cls(filename=obj["filename"], contents=ContentRef.parse(obj["contents"]))


@dataclass(frozen=True)
class IncludeTree:
    """One file's role in the inclusion graph of a translation unit.

    Attributes:
        characteristic: Header search classification of the file
        file: Reference of the file's IncludeFile node
        includes: (child IncludeTree ref, byte offset in this file) in inclusion order
        has_include_checks: Results of __has_include probes evaluated in this file, in order
    """

    KIND: ClassVar[str] = "include-tree"

    characteristic: HeaderCharacteristic
    file: ContentRef
    includes: Tuple[Tuple[ContentRef, int], ...] = ()
    has_include_checks: Tuple[bool, ...] = ()

    def to_object(self) -> Dict[str, Any]:
        return {
            "kind": self.KIND,
            "characteristic": int(self.characteristic),
            "file": str(self.file),
            "includes": [[str(ref), offset] for ref, offset in self.includes],
            "has_include_checks": _bits_to_str(self.has_include_checks),
        }

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "IncludeTree":
        try:
            characteristic = HeaderCharacteristic(obj["characteristic"])
        except ValueError as e:
            raise IncludeTreeError(f"Unknown header characteristic: {obj['characteristic']!r}") from e
        return cls(
            characteristic=characteristic,
            file=ContentRef.parse(obj["file"]),
            includes=tuple((ContentRef.parse(ref), int(offset)) for ref, offset in obj["includes"]),
            has_include_checks=_str_to_bits(obj["has_include_checks"]),
        )


@dataclass(frozen=True)
class IncludeFileList:
    """Every file that contributed content, with its declared size in bytes."""

    KIND: ClassVar[str] = "include-file-list"

    files: Tuple[Tuple[ContentRef, int], ...] = ()

    def to_object(self) -> Dict[str, Any]:
        return {"kind": self.KIND, "files": [[str(ref), size] for ref, size in self.files]}

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "IncludeFileList":
        return cls(files=tuple((ContentRef.parse(ref), int(size)) for ref, size in obj["files"]))


@dataclass(frozen=True)
class IncludeTreeRoot:
    """Externally visible handle for the preprocessing shape of a translation unit."""

    KIND: ClassVar[str] = "include-tree-root"

    main: ContentRef
    file_list: ContentRef
    pch: Optional[ContentRef] = None

    def to_object(self) -> Dict[str, Any]:
        return {
            "kind": self.KIND,
            "main": str(self.main),
            "file_list": str(self.file_list),
            "pch": str(self.pch) if self.pch is not None else None,
        }

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "IncludeTreeRoot":
        pch = obj.get("pch")
        return cls(
            main=ContentRef.parse(obj["main"]),
            file_list=ContentRef.parse(obj["file_list"]),
            pch=ContentRef.parse(pch) if pch is not None else None,
        )


def store_node(store: ObjectStore, node: Any) -> ContentRef:
    """Store an include tree node and return its reference."""
    return store.store(encode_canonical(node.to_object()))


def load_node(store: ObjectStore, ref: ContentRef, node_type: Type[NodeT]) -> NodeT:
    """Load and decode a node of the given type.

    Raises:
        IncludeTreeError: If the object is missing fields or is of another kind
        ObjectNotFoundError: If the reference is not in the store
    """
    data = store.lookup(ref)
    try:
        return node_type.from_object(decode_object(data, node_type.KIND))
    except (KeyError, TypeError, ValueError, ObjectStoreError) as e:
        if isinstance(e, IncludeTreeError):
            raise
        raise IncludeTreeError(f"Malformed {node_type.KIND} node {ref}: {e}") from e


def create_include_file(store: ObjectStore, filename: str, contents: ContentRef) -> ContentRef:
    return store_node(store, IncludeFile(filename=filename, contents=contents))


def walk_include_tree(store: ObjectStore, tree_ref: ContentRef, depth: int = 0, offset: Optional[int] = None) -> Iterator[Tuple[int, Optional[int], IncludeTree, IncludeFile]]:
    """Yield (depth, offset in parent, tree node, file node) in inclusion order.

    The top node is yielded with offset None.
    """
    tree = load_node(store, tree_ref, IncludeTree)
    include_file = load_node(store, tree.file, IncludeFile)
    yield depth, offset, tree, include_file
    for child_ref, child_offset in tree.includes:
        yield from walk_include_tree(store, child_ref, depth + 1, child_offset)


def format_include_tree(store: ObjectStore, root_ref: ContentRef) -> str:
    """Render an include tree root as indented text.

    Each line shows the inclusion offset, the file name, its content reference
    and, when any were evaluated, the __has_include results of that file.
    """
    root = load_node(store, root_ref, IncludeTreeRoot)
    lines: List[str] = []
    for depth, offset, tree, include_file in walk_include_tree(store, root.main):
        location = f"{offset}:" if offset is not None else ""
        line = f"{'  ' * depth}{location}{include_file.filename} {include_file.contents}"
        if tree.characteristic != HeaderCharacteristic.USER:
            line += f" [{tree.characteristic.name.lower()}]"
        if tree.has_include_checks:
            line += f" has_include={_bits_to_str(tree.has_include_checks)}"
        lines.append(line)

    lines.append("Files:")
    file_list = load_node(store, root.file_list, IncludeFileList)
    for file_ref, size in file_list.files:
        include_file = load_node(store, file_ref, IncludeFile)
        lines.append(f"  {include_file.filename} {include_file.contents} ({size} bytes)")
    if root.pch is not None:
        lines.append(f"PCH: {root.pch}")
    return "\n".join(lines) + "\n"


def build_replay_file_map(store: ObjectStore, root_ref: ContentRef) -> Dict[str, bytes]:
    """Materialize {path: content} for every file in a root's manifest.

    Raises:
        IncludeTreeError: If a file's stored content does not match its declared size
    """
    root = load_node(store, root_ref, IncludeTreeRoot)
    file_list = load_node(store, root.file_list, IncludeFileList)
    files: Dict[str, bytes] = {}
    for file_ref, size in file_list.files:
        include_file = load_node(store, file_ref, IncludeFile)
        data = store.lookup(include_file.contents)
        if len(data) != size:
            raise IncludeTreeError(f"Size mismatch for {include_file.filename}: manifest says {size} bytes, content has {len(data)}")
        files[include_file.filename] = data
    logger.debug("Materialized %s files from include tree %s", len(files), root_ref)
    return files


def load_include_tree_root(store: ObjectStore, ref: ContentRef) -> IncludeTreeRoot:
    return load_node(store, ref, IncludeTreeRoot)
