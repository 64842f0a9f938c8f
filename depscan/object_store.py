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
"""Content-addressed object storage for scan artifacts.

Every object is an immutable byte string identified by the hash of its
content. Storing the same bytes twice returns the same ContentRef, so stores
are safe to share between concurrent scans: racing inserts of identical
content converge on one object.
"""

import os
import abc
import json
import hashlib
import logging
import tempfile
import threading
from dataclasses import dataclass
from typing import Any, Dict

from depscan.constants import HASH_NAME, OBJECTS_DIR, ObjectStoreError, ObjectNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class ContentRef:
    """Opaque identity of a byte sequence in an object store.

    Attributes:
        hash_name: Name of the hash algorithm (e.g. 'sha256')
        digest: Lower-case hex digest of the content
    """

    hash_name: str
    digest: str

    def __str__(self) -> str:
        return f"{self.hash_name}:{self.digest}"

    @classmethod
    def parse(cls, text: str) -> "ContentRef":
        """Parse the '<hash>:<hexdigest>' form produced by str().

        Raises:
            ObjectStoreError: If the text is not a valid reference
        """
        hash_name, sep, digest = text.partition(":")
        if not sep or hash_name != HASH_NAME or not digest:
            raise ObjectStoreError(f"Invalid content reference: {text!r}")
        try:
            int(digest, 16)
        except ValueError as e:
            raise ObjectStoreError(f"Invalid content reference: {text!r}") from e
        return cls(hash_name, digest.lower())


def compute_ref(data: bytes) -> ContentRef:
    """Return the reference the given bytes would be stored under."""
    return ContentRef(HASH_NAME, hashlib.new(HASH_NAME, data).hexdigest())


class ObjectStore(abc.ABC):
    """Interface of a content-addressed blob store."""

    @abc.abstractmethod
    def store(self, data: bytes) -> ContentRef:
        """Store bytes and return their reference (idempotent)."""
        raise NotImplementedError

    @abc.abstractmethod
    def lookup(self, ref: ContentRef) -> bytes:
        """Return the bytes for a reference.

        Raises:
            ObjectNotFoundError: If the reference is unknown to this store
        """
        raise NotImplementedError

    @abc.abstractmethod
    def contains(self, ref: ContentRef) -> bool:
        raise NotImplementedError

    def store_from_string(self, text: str) -> ContentRef:
        """Store UTF-8 encoded text."""
        return self.store(text.encode("utf-8"))


class InMemoryObjectStore(ObjectStore):
    """Object store kept in a dictionary; used for single-process runs and tests."""

    def __init__(self) -> None:
        self._objects: Dict[ContentRef, bytes] = {}
        self._lock = threading.Lock()

    def store(self, data: bytes) -> ContentRef:
        ref = compute_ref(data)
        with self._lock:
            self._objects.setdefault(ref, bytes(data))
        return ref

    def lookup(self, ref: ContentRef) -> bytes:
        with self._lock:
            data = self._objects.get(ref)
        if data is None:
            raise ObjectNotFoundError(f"Object not found: {ref}")
        return data

    def contains(self, ref: ContentRef) -> bool:
        with self._lock:
            return ref in self._objects

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)


class OnDiskObjectStore(ObjectStore):
    """Object store persisted under a directory.

    Objects live at <root>/objects/<first two hex digits>/<remaining digits>.
    Writes go to a temporary file in the same directory and are moved into
    place with os.replace(), so readers never observe partial objects.

    Args:
        root: Store directory (created if missing)
    """

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        self._objects_dir = os.path.join(self.root, OBJECTS_DIR)
        self._write_lock = threading.Lock()
        try:
            os.makedirs(self._objects_dir, exist_ok=True)
        except OSError as e:
            raise ObjectStoreError(f"Failed to create object store at {self.root}: {e}") from e
        logger.debug("Opened on-disk object store: %s", self.root)

    def _object_path(self, ref: ContentRef) -> str:
        return os.path.join(self._objects_dir, ref.digest[:2], ref.digest[2:])

    def store(self, data: bytes) -> ContentRef:
        ref = compute_ref(data)
        path = self._object_path(ref)
        with self._write_lock:
            if os.path.exists(path):
                return ref
            directory = os.path.dirname(path)
            temp_path = None
            try:
                os.makedirs(directory, exist_ok=True)
                fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(temp_path, path)
            except OSError as e:
                if temp_path is not None and os.path.exists(temp_path):
                    os.remove(temp_path)
                raise ObjectStoreError(f"Failed to write object {ref}: {e}") from e
        logger.debug("Stored object %s (%s bytes)", ref, len(data))
        return ref

    def lookup(self, ref: ContentRef) -> bytes:
        path = self._object_path(ref)
        try:
            with open(path, "rb") as f:
                data = f.read()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {ref}") from e
        except OSError as e:
            raise ObjectStoreError(f"Failed to read object {ref}: {e}") from e
        if compute_ref(data) != ref:
            raise ObjectStoreError(f"Object {ref} is corrupted on disk: {path}")
        return data

    def contains(self, ref: ContentRef) -> bool:
        return os.path.exists(self._object_path(ref))


def encode_canonical(obj: Any) -> bytes:
    """Serialize a JSON-compatible object to canonical bytes.

    Keys are sorted and separators are compact, so structurally equal objects
    always encode to identical bytes and therefore identical references.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_object(data: bytes, kind: str) -> Dict[str, Any]:
    """Decode a canonical object and check its 'kind' tag.

    Raises:
        ObjectStoreError: If the bytes are not a JSON object of the expected kind
    """
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ObjectStoreError(f"Object is not a {kind} node: {e}") from e
    if not isinstance(obj, dict) or obj.get("kind") != kind:
        raise ObjectStoreError(f"Object is not a {kind} node")
    return obj
