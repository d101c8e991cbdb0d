"""
NUS3BANK writer.

Rebuilds the TONE and PACK sections from the track list and re-encodes
PROP, BINF, GRP and DTON only when their decoded fields were changed.
Every other section is copied straight from the original file bytes, so
anything the model does not understand survives untouched.
"""
from __future__ import annotations

import logging
import os
import struct
import tempfile
from typing import Dict, List, Optional, Tuple, Union

from utils.binary_handler import BinaryHandler
from .nus3bank_errors import InvalidFormat, Nus3bankError
from .nus3bank_parser import EDITABLE_SECTION_READERS, SectionSpan, scan_sections
from .nus3bank_structures import (
    BINF,
    DEFAULT_METADATA_HEADER,
    DTON,
    GRP,
    MAX_TRACK_NAME_BYTES,
    METADATA_CONSTANT,
    METADATA_DISAMBIGUATOR_OFFSET,
    PACK,
    PROP,
    TOC_ENTRIES_OFFSET,
    TONE,
    BankInfo,
    DefaultToneSection,
    GroupSection,
    Nus3bankFile,
    PropSection,
    Track,
    metadata_header_length,
    name_padding,
)

logger = logging.getLogger(__name__)

_PlacedTrack = Tuple[Track, int, int]


def write(bank: Nus3bankFile, original: bytes) -> bytes:
    """Return a new file image for ``bank`` using ``original`` for untouched sections."""
    original = bytes(original)
    try:
        scan = scan_sections(original)
    except Nus3bankError as exc:
        raise InvalidFormat(f"cannot locate sections in original data: {exc}") from exc

    pack_span = scan.first(PACK)
    tone_span = scan.first(TONE)
    if pack_span is None:
        raise InvalidFormat("PACK section not found in original data")
    if tone_span is None:
        raise InvalidFormat("TONE section not found in original data")

    old_pack = original[pack_span.data_start:pack_span.end]
    pack_payload, placed = build_pack(bank.tone.tracks, old_pack)
    tone_payload = build_tone(placed)
    replacements = {PACK: pack_payload, TONE: tone_payload}
    replacements.update(edited_sections(bank))

    first_offset = scan.spans[0].offset if scan.spans else len(original)
    out = bytearray(original[:first_offset])
    rebuilt: Dict[int, bytes] = {}
    for tag, payload in replacements.items():
        span = scan.first(tag)
        if span is None:
            logger.warning("%s section not in original data; edit dropped", tag.decode("latin-1"))
            continue
        rebuilt[span.offset] = payload
        _patch_toc(out, span, len(payload))

    cursor = first_offset
    for span in scan.spans:
        out += original[cursor:span.offset]
        payload = rebuilt.get(span.offset)
        if payload is None:
            out += original[span.offset:span.end]
        else:
            out += _section_bytes(span.tag, payload)
        cursor = span.end
    out += original[cursor:]

    BinaryHandler(out).write_at(4, '<I', len(out) - 8)
    logger.debug(
        "Rebuilt bank: %d tracks, PACK %d bytes, TONE %d bytes, file %d bytes",
        len(placed), len(pack_payload), len(tone_payload), len(out),
    )
    return bytes(out)


def edited_sections(bank: Nus3bankFile) -> Dict[bytes, bytes]:
    """Encoded payloads for the sections whose fields differ from their raw bytes."""
    candidates = (
        (PROP, bank.prop, encode_prop),
        (BINF, bank.binf, encode_binf),
        (GRP, bank.grp, encode_grp),
        (DTON, bank.dton, encode_dton),
    )
    edited = {}
    for tag, section, encode in candidates:
        if section is None:
            continue
        stored = EDITABLE_SECTION_READERS[tag](section.raw)
        if _fingerprint(section) == _fingerprint(stored):
            continue
        logger.debug("%s section changed; re-encoding", tag.decode("latin-1"))
        edited[tag] = encode(section)
    return edited


def _fingerprint(section):
    # Compare float values by their stored bits so NaN entries do not count as edits.
    if isinstance(section, DefaultToneSection):
        return [
            (t.hash, t.unk1, t.name, struct.pack(f"<{len(t.values)}f", *t.values))
            for t in section.tones
        ]
    return section


def encode_prop(prop: PropSection) -> bytes:
    out = BinaryHandler(bytearray())
    out.write_uint32(0)
    out.write_int32(prop.unk1)
    out.write_uint16(prop.reserved)
    out.write_uint16(prop.unk2)
    out.write_len_string(prop.project)
    out.align_write(4)
    if prop.extended:
        out.write_uint16(prop.unk3)
        out.align_write(4)
        out.write_len_string(prop.timestamp)
        out.align_write(4)
    return out.get_bytes()


def encode_binf(info: BankInfo) -> bytes:
    out = BinaryHandler(bytearray())
    out.write_uint32(info.reserved)
    out.write_uint32(info.bank_id)
    out.write_bytes(info.name.encode("utf-8"))
    out.write_uint8(0)
    out.align_write(4)
    out.write_bytes(info.tail)
    return out.get_bytes()


def encode_grp(group: GroupSection) -> bytes:
    entries = []
    for index, name in enumerate(group.names):
        entry = BinaryHandler(bytearray())
        entry.write_int32(1)
        if name:
            entry.write_len_string(name)
        else:
            entry.write_uint8(0xFF)
            entry.write_uint8(0)
        entry.align_write(4)
        if index + 1 < len(group.names):
            entry.write_int32(0)
        entries.append(entry.get_bytes())
    return _pointer_table_payload(entries)


def encode_dton(section: DefaultToneSection) -> bytes:
    entries = []
    for tone in section.tones:
        entry = BinaryHandler(bytearray())
        entry.write_int32(tone.hash)
        entry.write_int32(tone.unk1)
        entry.write_len_string(tone.name)
        entry.align_write(4)
        for value in tone.values:
            entry.write_float(value)
        entries.append(entry.get_bytes())
    # Each entry is followed by a zero word that its declared size leaves out.
    return _pointer_table_payload(entries, gap=4)


def _pointer_table_payload(entries: List[bytes], gap: int = 0) -> bytes:
    """count, (offset, size) pairs, a zero word, then the entries.

    Offsets count from the end of the count field.
    """
    out = BinaryHandler(bytearray())
    out.write_uint32(len(entries))
    rel = 8 * len(entries) + 4
    for entry in entries:
        out.write_uint32(rel)
        out.write_uint32(len(entry))
        rel += len(entry) + gap
    out.write_uint32(0)
    for entry in entries:
        out.write_bytes(entry)
        out.write_bytes(b"\x00" * gap)
    return out.get_bytes()


def write_file(bank: Nus3bankFile, path: Union[str, os.PathLike], original: Optional[bytes] = None):
    if original is None:
        original = bank.source_bytes
    if original is None:
        raise InvalidFormat("original file bytes are required to rebuild the bank")
    data = write(bank, original)

    target = os.fspath(path)
    directory = os.path.dirname(os.path.abspath(target))
    fd, tmp_path = tempfile.mkstemp(prefix=".nus3bank-", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logger.info("Saved %s (%d bytes)", target, len(data))


def build_pack(tracks: List[Track], old_pack: bytes) -> Tuple[bytes, List[_PlacedTrack]]:
    """Concatenate active payloads in id order, each padded to 4 bytes."""
    out = BinaryHandler(bytearray())
    placed: List[_PlacedTrack] = []
    for track in sorted(tracks, key=lambda t: t.track_id):
        if track.is_removed:
            continue
        payload = track.audio_data or _slice(old_pack, track.pack_offset, track.size)
        if not payload:
            logger.debug("Track %s has no payload; left out", track.hex_id)
            continue
        offset = out.tell
        out.write_bytes(payload)
        out.align_write(4)
        placed.append((track, offset, len(payload)))
    return out.get_bytes(), placed


def build_tone(placed: List[_PlacedTrack]) -> bytes:
    blocks = [encode_track_metadata(t, offset, size) for t, offset, size in placed]
    return _pointer_table_payload(blocks)


def encode_track_metadata(track: Track, pack_offset: int, size: int) -> bytes:
    name_bytes = track.name_raw
    if not name_bytes or name_bytes.decode("utf-8", errors="replace") != track.name:
        name_bytes = track.name.encode("utf-8")
    if len(name_bytes) > MAX_TRACK_NAME_BYTES:
        raise InvalidFormat(f"Track name too long for {track.hex_id}: {len(name_bytes)} bytes")
    name_len = len(name_bytes) + 1

    out = BinaryHandler(bytearray())
    out.write_bytes(_metadata_header(track))
    out.write_uint8(name_len)
    out.write_bytes(name_bytes)
    out.write_uint8(0)
    out.write_bytes(b"\x00" * name_padding(name_len))
    out.write_uint32(METADATA_CONSTANT)
    out.write_uint32(pack_offset)
    out.write_uint32(size)
    out.write_bytes(track.meta_tail)
    return out.get_bytes()


def _metadata_header(track: Track) -> bytes:
    header = track.meta_header
    if len(header) > METADATA_DISAMBIGUATOR_OFFSET:
        if len(header) == metadata_header_length(header[METADATA_DISAMBIGUATOR_OFFSET]):
            return header
    if header:
        logger.warning("Track %s has an inconsistent metadata header; using default", track.hex_id)
    return DEFAULT_METADATA_HEADER


def _patch_toc(out: bytearray, span: SectionSpan, size: int):
    if span.toc_index is None:
        return
    BinaryHandler(out).write_at(TOC_ENTRIES_OFFSET + 8 * span.toc_index + 4, '<I', size)


def _section_bytes(tag: bytes, payload: bytes) -> bytes:
    out = BinaryHandler(bytearray())
    out.write_bytes(tag)
    out.write_uint32(len(payload))
    out.write_bytes(payload)
    return out.get_bytes()


def _slice(data: bytes, offset: int, length: int) -> bytes:
    end = offset + length
    return b"" if offset < 0 or length <= 0 or end > len(data) else data[offset:end]

