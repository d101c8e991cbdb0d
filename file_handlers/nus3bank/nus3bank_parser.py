"""
NUS3BANK reader.

Handles both container layouts: banks that open with a ``BANK``/``TOC ``
table of contents, and older banks whose sections follow the file header
directly. Sections are read in stream order; track payloads are attached
in a separate pass once both TONE and PACK are known.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Set, Union

from utils.binary_handler import BinaryHandler, align_padding
from .nus3bank_errors import BadMagic, InvalidFormat, SectionMissing, Truncated
from .nus3bank_structures import (
    BANK_MAGIC,
    BINF,
    DTON,
    FILE_HEADER_SIZE,
    GRP,
    JUNK,
    MAX_PACK_SIZE,
    MAX_PROP_SIZE,
    MAX_TOC_ENTRIES,
    MAX_TRACK_COUNT,
    METADATA_DISAMBIGUATOR_OFFSET,
    MIN_TRACK_METADATA_SIZE,
    NUS3_MAGIC,
    PACK,
    POINTER_BASE,
    PROP,
    SECTION_HEADER_SIZE,
    TOC_COUNT_OFFSET,
    TOC_MAGIC,
    TONE,
    UNKNOWN_BANK_NAME,
    AudioFormat,
    BankInfo,
    BankLayout,
    DefaultTone,
    DefaultToneSection,
    GroupSection,
    JunkSection,
    Nus3bankFile,
    PackSection,
    PropSection,
    RawSection,
    TocEntry,
    ToneSection,
    Track,
    metadata_header_length,
    name_padding,
)

logger = logging.getLogger(__name__)

_MODELED_TAGS = frozenset({PROP, BINF, GRP, DTON, TONE, JUNK, PACK})


@dataclass
class SectionSpan:
    tag: bytes
    offset: int
    size: int
    toc_index: Optional[int] = None

    @property
    def name(self) -> str:
        return self.tag.decode("latin-1")

    @property
    def data_start(self) -> int:
        return self.offset + SECTION_HEADER_SIZE

    @property
    def end(self) -> int:
        return self.data_start + self.size


@dataclass
class SectionScan:
    layout: BankLayout
    declared_size: int
    stream_start: int
    toc: List[TocEntry] = field(default_factory=list)
    spans: List[SectionSpan] = field(default_factory=list)

    def first(self, tag: bytes) -> Optional[SectionSpan]:
        return next((s for s in self.spans if s.tag == tag), None)


def expect_magic(handler: BinaryHandler, expected: bytes) -> bytes:
    found = handler.read_magic(len(expected))
    if found != expected:
        raise BadMagic(expected, found)
    return found


def scan_sections(data: bytes) -> SectionScan:
    """Locate every section in ``data`` without decoding any of them."""
    handler = BinaryHandler(data)
    try:
        expect_magic(handler, NUS3_MAGIC)
        declared_size = handler.read_uint32()
        if handler.peek_bytes(8) == BANK_MAGIC + TOC_MAGIC:
            return _scan_toc_layout(handler, declared_size)
        return _scan_sequential_layout(handler, declared_size)
    except EOFError as exc:
        raise Truncated(handler.tell) from exc


def _scan_toc_layout(handler: BinaryHandler, declared_size: int) -> SectionScan:
    handler.skip(8)
    toc_length = handler.read_uint32()
    entry_count = handler.read_uint32()
    if entry_count == 0 or entry_count > MAX_TOC_ENTRIES:
        raise InvalidFormat(f"Unreasonable TOC entry count: {entry_count}")

    toc = []
    for _ in range(entry_count):
        tag = handler.read_magic()
        toc.append(TocEntry(tag=tag, size=handler.read_uint32()))

    stream_start = TOC_COUNT_OFFSET + toc_length
    scan = SectionScan(BankLayout.TOC, declared_size, stream_start, toc=toc)
    pos = stream_start
    for index, entry in enumerate(toc):
        handler.seek(pos)
        tag = expect_magic(handler, entry.tag)
        size = handler.read_uint32()
        if size != entry.size:
            logger.warning(
                "Section %s at 0x%X: TOC says %d bytes, header says %d; using header",
                entry.name, pos, entry.size, size,
            )
        if size > handler.remaining:
            raise Truncated(handler.tell, size, handler.remaining)
        scan.spans.append(SectionSpan(tag=tag, offset=pos, size=size, toc_index=index))
        pos += SECTION_HEADER_SIZE + size
    return scan


def _scan_sequential_layout(handler: BinaryHandler, declared_size: int) -> SectionScan:
    scan = SectionScan(BankLayout.SEQUENTIAL, declared_size, FILE_HEADER_SIZE)
    total = len(handler)
    pos = FILE_HEADER_SIZE
    while pos + SECTION_HEADER_SIZE <= total:
        handler.seek(pos)
        tag = handler.read_magic()
        size = handler.read_uint32()
        if size > total - handler.tell:
            logger.warning(
                "Section %r at 0x%X claims %d bytes past end of data; stopping",
                tag, pos, size,
            )
            break
        scan.spans.append(SectionSpan(tag=tag, offset=pos, size=size))
        pos += SECTION_HEADER_SIZE + size
    if pos < total:
        logger.debug("%d trailing bytes after last section", total - pos)
    return scan


def parse(source: Union[bytes, bytearray, memoryview, str, os.PathLike]) -> Nus3bankFile:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return parse_bytes(source)
    return parse_file(source)


def parse_file(path: Union[str, os.PathLike]) -> Nus3bankFile:
    with open(path, "rb") as f:
        data = f.read()
    return parse_bytes(data, file_path=os.fspath(path))


def parse_bytes(data: Union[bytes, bytearray, memoryview], file_path: str = "") -> Nus3bankFile:
    data = bytes(data)
    scan = scan_sections(data)
    bank = Nus3bankFile(
        layout=scan.layout,
        toc=list(scan.toc),
        declared_size=scan.declared_size,
        file_path=file_path,
        source_bytes=data,
    )

    seen: Set[bytes] = set()
    for span in scan.spans:
        bank.section_order.append(span.tag)
        try:
            _read_section(bank, span, data, seen)
        except EOFError as exc:
            raise InvalidFormat(f"{span.name} section at 0x{span.offset:X} is truncated: {exc}") from exc

    if bank.binf is None:
        raise SectionMissing("BINF")

    attached = resolve_payloads(bank.tone, bank.pack)
    logger.debug(
        "Parsed %s bank %r: %d sections, %d tracks, %d with payload",
        scan.layout.value, bank.binf.name, len(scan.spans), len(bank.tone.tracks), attached,
    )
    return bank


def _read_section(bank: Nus3bankFile, span: SectionSpan, data: bytes, seen: Set[bytes]):
    tag = span.tag
    if tag in _MODELED_TAGS and tag in seen:
        logger.warning("Duplicate %s section at 0x%X kept as raw data", span.name, span.offset)
        bank.unknown_sections.append(RawSection(tag=tag, data=data[span.data_start:span.end]))
        return
    seen.add(tag)

    if tag == PROP and span.size > MAX_PROP_SIZE:
        raise InvalidFormat(f"PROP too large: {span.size} bytes")
    if tag == PACK and span.size > MAX_PACK_SIZE:
        raise InvalidFormat(f"PACK too large: {span.size} bytes")

    payload = data[span.data_start:span.end]
    logger.debug("Reading %s at 0x%X (%d bytes)", span.name, span.offset, span.size)
    if tag == PROP:
        bank.prop = _read_prop(payload)
    elif tag == BINF:
        bank.binf = _read_binf(payload)
    elif tag == GRP:
        bank.grp = _read_grp(payload)
    elif tag == DTON:
        bank.dton = _read_dton(payload)
    elif tag == TONE:
        bank.tone = _read_tone(payload, span)
    elif tag == JUNK:
        bank.junk = JunkSection(data=payload)
    elif tag == PACK:
        bank.pack = PackSection(data=payload)
    else:
        bank.unknown_sections.append(RawSection(tag=tag, data=payload))


def _read_prop(payload: bytes) -> PropSection:
    handler = BinaryHandler(payload)
    try:
        handler.skip(4)
        unk1 = handler.read_int32()
        reserved = handler.read_uint16()
        unk2 = handler.read_uint16()
        project = handler.read_len_string()
        handler.align(4)
        unk3, timestamp = 0, ""
        extended = handler.remaining >= 2
        if extended:
            unk3 = handler.read_uint16()
            handler.align(4)
            if handler.remaining >= 1:
                timestamp = handler.read_len_string()
    except EOFError as exc:
        logger.debug("PROP kept opaque: %s", exc)
        return PropSection(raw=payload)
    return PropSection(
        raw=payload, project=project, timestamp=timestamp,
        unk1=unk1, unk2=unk2, unk3=unk3, reserved=reserved,
        extended=extended, decoded=True,
    )


def _read_binf(payload: bytes) -> BankInfo:
    if len(payload) < 8:
        logger.warning("BINF section too short (%d bytes); using placeholder bank info", len(payload))
        return BankInfo(raw=payload)
    handler = BinaryHandler(payload)
    reserved = handler.read_uint32()
    bank_id = handler.read_uint32()
    name_bytes = payload[8:].split(b"\x00", 1)[0]
    name_end = 8 + len(name_bytes) + 1
    tail = payload[name_end + align_padding(name_end):]
    try:
        name = name_bytes.decode("utf-8")
    except UnicodeDecodeError as exc:
        logger.warning("Bank name could not be decoded (%s); using placeholder", exc)
        name = UNKNOWN_BANK_NAME
    return BankInfo(reserved=reserved, bank_id=bank_id, name=name, tail=tail, raw=payload)


def _read_pointer_table(handler: BinaryHandler) -> List[tuple]:
    count = handler.read_uint32()
    return [(handler.read_uint32(), handler.read_uint32()) for _ in range(count)]


def _read_grp(payload: bytes) -> GroupSection:
    section = GroupSection(raw=payload)
    handler = BinaryHandler(payload)
    try:
        pointers = _read_pointer_table(handler)
        for offset, size in pointers:
            start = POINTER_BASE + offset
            if start >= len(handler):
                raise EOFError(f"group entry offset 0x{offset:X} out of bounds")
            # Declared sizes are unreliable for the last entry; clamp to the section.
            end = len(handler) if size == 0 else min(start + size, len(handler))
            handler.seek(start + 4)
            length = handler.read_uint8()
            if length == 0xFF:
                raw = handler.peek_bytes(max(end - handler.tell, 0)).split(b"\x00", 1)[0]
            elif length == 0:
                raw = b""
            else:
                raw = handler.read_bytes(min(length - 1, max(end - handler.tell, 0)))
            section.names.append(raw.decode("utf-8", errors="replace"))
    except EOFError as exc:
        logger.debug("GRP names not decoded: %s", exc)
        section.names = []
    return section


def _read_dton(payload: bytes) -> DefaultToneSection:
    section = DefaultToneSection(raw=payload)
    handler = BinaryHandler(payload)
    try:
        pointers = _read_pointer_table(handler)
        for offset, size in pointers:
            start = POINTER_BASE + offset
            if start >= len(handler):
                raise EOFError(f"default tone offset 0x{offset:X} out of bounds")
            end = min(start + size, len(handler))
            handler.seek(start)
            tone = DefaultTone(hash=handler.read_int32(), unk1=handler.read_int32())
            tone.name = handler.read_len_string()
            handler.align(4)
            while handler.tell + 4 <= end:
                tone.values.append(handler.read_float())
            section.tones.append(tone)
    except EOFError as exc:
        logger.debug("DTON entries not decoded: %s", exc)
        section.tones = []
    return section


# Sections the writer re-encodes when their fields no longer match their bytes.
EDITABLE_SECTION_READERS = {
    PROP: _read_prop,
    BINF: _read_binf,
    GRP: _read_grp,
    DTON: _read_dton,
}


def _read_tone(payload: bytes, span: SectionSpan) -> ToneSection:
    handler = BinaryHandler(payload)
    count = handler.read_uint32()
    if count == 0 or count > MAX_TRACK_COUNT:
        raise InvalidFormat(f"Unreasonable TONE track count: {count}")
    pointers = [(handler.read_uint32(), handler.read_uint32()) for _ in range(count)]

    section = ToneSection(declared_count=count, raw=payload)
    for index, (rel_offset, meta_size) in enumerate(pointers):
        if meta_size <= MIN_TRACK_METADATA_SIZE:
            logger.debug("Skipping stub TONE entry %d (metadata size %d)", index, meta_size)
            continue
        try:
            track = _read_track_metadata(handler, index, rel_offset, meta_size)
        except EOFError as exc:
            logger.warning(
                "Skipping unreadable TONE entry %d at 0x%X: %s",
                index, span.data_start + POINTER_BASE + rel_offset, exc,
            )
            continue
        section.tracks.append(track)
    return section


def _read_track_metadata(handler: BinaryHandler, track_id: int, rel_offset: int, meta_size: int) -> Track:
    # Pointer offsets are relative to the end of the count field.
    start = POINTER_BASE + rel_offset
    if start >= len(handler):
        raise EOFError(f"metadata offset 0x{rel_offset:X} outside TONE section")
    handler.seek(start + METADATA_DISAMBIGUATOR_OFFSET)
    disambiguator = handler.read_uint8()
    handler.seek(start + metadata_header_length(disambiguator))
    meta_header = bytes(handler.data[start:handler.tell])

    name_len = handler.read_uint8()
    name_raw = handler.read_bytes(max(name_len - 1, 0))
    handler.skip(1)
    handler.skip(name_padding(name_len))
    handler.read_uint32()  # always 8 in observed files
    pack_offset = handler.read_uint32()
    size = handler.read_uint32()

    tail_end = min(start + meta_size, len(handler))
    meta_tail = bytes(handler.data[handler.tell:tail_end]) if tail_end > handler.tell else b""
    return Track(
        track_id=track_id,
        name=name_raw.decode("utf-8", errors="replace"),
        name_raw=name_raw,
        pack_offset=pack_offset,
        size=size,
        metadata_size=meta_size,
        meta_header=meta_header,
        meta_tail=meta_tail,
    )


def resolve_payloads(tone: ToneSection, pack: PackSection) -> int:
    """Attach PACK bytes to every track; returns how many got a payload."""
    blob = pack.data
    attached = 0
    for track in tone.tracks:
        if track.is_removed:
            continue
        end = track.pack_offset + track.size
        if track.size <= 0 or end > len(blob):
            if track.size > 0:
                logger.warning(
                    "Track %s (%s) points outside PACK (offset 0x%X, size %d); payload cleared",
                    track.hex_id, track.name, track.pack_offset, track.size,
                )
            track.clear_payload()
            continue
        track.audio_data = blob[track.pack_offset:end]
        track.audio_format = AudioFormat.sniff(track.audio_data)
        attached += 1
    return attached
