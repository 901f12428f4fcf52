"""Minimal WebAssembly component binary reader.

Only what interface extraction needs is decoded: the preamble, the top-level
import (10) and export (11) sections, and the ``component-name`` custom
section.  Every other section, nested components included, is skipped by its
declared size.  Anything structurally wrong raises
:class:`~WasmPkg.PackageManager.errors.ParseFailedError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import ParseFailedError

logger = logging.getLogger(__name__)

MAGIC = b"\x00asm"
LAYER_CORE = 0
LAYER_COMPONENT = 1

SECTION_CUSTOM = 0
SECTION_IMPORT = 10
SECTION_EXPORT = 11
COMPONENT_NAME_SECTION = "component-name"

# Sort bytes shared by externdesc and sortidx.
SORT_NAMES = {
    0x00: "core-module",
    0x01: "func",
    0x02: "value",
    0x03: "type",
    0x04: "component",
    0x05: "instance",
}


@dataclass(frozen=True)
class ComponentItem:
    """One top-level import or export."""

    name: str
    kind: str


@dataclass
class DecodedComponent:
    name: Optional[str] = None
    imports: List[ComponentItem] = field(default_factory=list)
    exports: List[ComponentItem] = field(default_factory=list)
    version: int = 0


class _Reader:
    def __init__(self, data: bytes, offset: int = 0, end: Optional[int] = None) -> None:
        self.data = data
        self.pos = offset
        self.end = len(data) if end is None else end

    def eof(self) -> bool:
        return self.pos >= self.end

    def _fail(self, message: str) -> ParseFailedError:
        return ParseFailedError(f"{message} at offset {self.pos}", details={"offset": self.pos})

    def byte(self) -> int:
        if self.pos >= self.end:
            raise self._fail("Unexpected end of input")
        value = self.data[self.pos]
        self.pos += 1
        return value

    def bytes(self, count: int) -> bytes:
        if count < 0 or self.pos + count > self.end:
            raise self._fail(f"Truncated read of {count} bytes")
        chunk = self.data[self.pos : self.pos + count]
        self.pos += count
        return chunk

    def u32(self) -> int:
        result = 0
        shift = 0
        for _ in range(5):
            b = self.byte()
            result |= (b & 0x7F) << shift
            if not b & 0x80:
                if result > 0xFFFFFFFF:
                    raise self._fail("u32 out of range")
                return result
            shift += 7
        raise self._fail("u32 LEB128 too long")

    def s33(self) -> int:
        result = 0
        shift = 0
        for _ in range(5):
            b = self.byte()
            result |= (b & 0x7F) << shift
            shift += 7
            if not b & 0x80:
                if b & 0x40:
                    result -= 1 << shift
                return result
        raise self._fail("s33 LEB128 too long")

    def string(self) -> str:
        length = self.u32()
        raw = self.bytes(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise self._fail("Invalid UTF-8 in name") from exc

    def sub(self, size: int) -> "_Reader":
        if self.pos + size > self.end:
            raise self._fail(f"Section of {size} bytes overruns input")
        reader = _Reader(self.data, self.pos, self.pos + size)
        self.pos += size
        return reader


def _read_extern_name(reader: _Reader) -> str:
    tag = reader.byte()
    if tag == 0x00:
        return reader.string()
    if tag == 0x01:
        name = reader.string()
        reader.string()  # version suffix / url
        return name
    raise reader._fail(f"Unknown extern name tag 0x{tag:02x}")


def _read_externdesc(reader: _Reader) -> str:
    sort = reader.byte()
    if sort == 0x00:
        core_sort = reader.byte()
        if core_sort != 0x11:
            raise reader._fail(f"Unexpected core externdesc 0x{core_sort:02x}")
        reader.u32()
    elif sort in (0x01, 0x04, 0x05):
        reader.u32()
    elif sort == 0x02:
        bound = reader.byte()
        if bound == 0x00:
            reader.u32()
        elif bound == 0x01:
            reader.s33()
        else:
            raise reader._fail(f"Unknown value bound 0x{bound:02x}")
    elif sort == 0x03:
        bound = reader.byte()
        if bound == 0x00:
            reader.u32()
        elif bound != 0x01:
            raise reader._fail(f"Unknown type bound 0x{bound:02x}")
    else:
        raise reader._fail(f"Unknown externdesc 0x{sort:02x}")
    return SORT_NAMES[sort]


def _read_imports(reader: _Reader) -> List[ComponentItem]:
    items = []
    for _ in range(reader.u32()):
        name = _read_extern_name(reader)
        kind = _read_externdesc(reader)
        items.append(ComponentItem(name, kind))
    return items


def _read_exports(reader: _Reader) -> List[ComponentItem]:
    items = []
    for _ in range(reader.u32()):
        name = _read_extern_name(reader)
        sort = reader.byte()
        if sort == 0x00:
            reader.byte()
        elif sort not in SORT_NAMES:
            raise reader._fail(f"Unknown export sort 0x{sort:02x}")
        reader.u32()
        has_type = reader.byte()
        if has_type == 0x01:
            _read_externdesc(reader)
        elif has_type != 0x00:
            raise reader._fail(f"Invalid export type ascription flag 0x{has_type:02x}")
        items.append(ComponentItem(name, SORT_NAMES[sort]))
    return items


def _read_component_name(reader: _Reader) -> Optional[str]:
    while not reader.eof():
        subsection = reader.byte()
        body = reader.sub(reader.u32())
        if subsection == 0x00:
            return body.string()
    return None


def decode_component(data: bytes) -> DecodedComponent:
    """Decode the top-level interface of a component binary.

    Args:
        data: Component bytes as stored in an ``application/wasm`` layer.

    Returns:
        Component name (if present) and its top-level imports and exports.

    Raises:
        ParseFailedError: If ``data`` is not a component (including core
            modules) or is malformed.
    """
    if len(data) < 8 or data[:4] != MAGIC:
        raise ParseFailedError("Not a WebAssembly binary (bad magic)")
    version = int.from_bytes(data[4:6], "little")
    layer = int.from_bytes(data[6:8], "little")
    if layer != LAYER_COMPONENT:
        raise ParseFailedError(
            "Core WebAssembly modules carry no component interface",
            details={"layer": layer},
        )

    result = DecodedComponent(version=version)
    reader = _Reader(data, 8)
    while not reader.eof():
        section_id = reader.byte()
        section = reader.sub(reader.u32())
        if section_id == SECTION_IMPORT:
            result.imports.extend(_read_imports(section))
        elif section_id == SECTION_EXPORT:
            result.exports.extend(_read_exports(section))
        elif section_id == SECTION_CUSTOM:
            if section.string() == COMPONENT_NAME_SECTION and result.name is None:
                result.name = _read_component_name(section)
    logger.debug(
        f"Decoded component name={result.name} imports={len(result.imports)} "
        f"exports={len(result.exports)}"
    )
    return result


__all__ = ["ComponentItem", "DecodedComponent", "decode_component"]
