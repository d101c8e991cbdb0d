"""In-memory NUS3BANK images used across the test modules."""
import struct


def wav_bytes(total_len: int, fill: int = 0x11) -> bytes:
    body = b"RIFF" + struct.pack("<I", total_len - 8) + b"WAVE"
    return body + bytes([fill]) * (total_len - len(body))


def _pad4(data: bytes) -> bytes:
    return data + b"\x00" * ((4 - len(data) % 4) % 4)


# 12-byte header (byte 6 == 0) and 8-byte header (byte 6 in 1..9).
HEADER_12 = bytes([0x01, 0, 0, 0, 0xAA, 0xBB, 0x00, 0, 0, 0, 0, 0])
HEADER_8 = bytes([0x02, 0, 0, 0, 0xCC, 0xDD, 0x01, 0])
TAIL = b"\x10\x20\x30\x40\x50\x60\x70\x80"

TRACK_A = ("track_a", wav_bytes(44, 0x11), HEADER_12)
TRACK_B = ("track_b", wav_bytes(46, 0x22), HEADER_8)

UNKNOWN_TAG = b"MARK"
UNKNOWN_PAYLOAD = b"\xde\xad\xbe\xef\x01\x02\x03\x04"
BANK_ID = 7
BANK_NAME = "sample_bank"


def metadata_block(name, header: bytes, offset: int, size: int, tail: bytes = TAIL) -> bytes:
    raw = name if isinstance(name, bytes) else name.encode("utf-8")
    name_len = len(raw) + 1
    padding = 4 - ((name_len + 1) % 4)
    return (
        header + bytes([name_len]) + raw + b"\x00" + b"\x00" * padding
        + struct.pack("<III", 8, offset, size) + tail
    )


def pack_and_tone(tracks, stub_pointer: bool = False):
    pack = b""
    blocks = []
    for name, payload, header in tracks:
        blocks.append(metadata_block(name, header, len(pack), len(payload)))
        pack += _pad4(payload)

    pointers = []
    count = len(blocks) + (1 if stub_pointer else 0)
    rel = 8 * count + 4
    for block in blocks:
        pointers.append((rel, len(block)))
        rel += len(block)
    if stub_pointer:
        pointers.append((0, 8))

    return pack, pointer_table(pointers, blocks)


def pointer_table(pointers, entries, gap: bytes = b"") -> bytes:
    """count, (offset, size) pairs, a zero word, then the entries.

    Offsets count from the end of the count field.
    """
    out = struct.pack("<I", len(pointers))
    for offset, size in pointers:
        out += struct.pack("<II", offset, size)
    out += struct.pack("<I", 0)
    return out + b"".join(entry + gap for entry in entries)


def prop_payload() -> bytes:
    out = b"\x00" * 4 + struct.pack("<i", 1) + b"\x00" * 2 + struct.pack("<H", 2)
    out += bytes([5]) + b"demo\x00"
    out = _pad4(out)
    out += struct.pack("<H", 3)
    out = _pad4(out)
    out += bytes([5]) + b"2020\x00"
    return _pad4(out)


def binf_payload(name: str = BANK_NAME, bank_id: int = BANK_ID, tail: bytes = b"") -> bytes:
    return _pad4(struct.pack("<II", 0, bank_id) + name.encode("utf-8") + b"\x00") + tail


def grp_payload() -> bytes:
    entry = _pad4(struct.pack("<i", 1) + bytes([6]) + b"group\x00")
    return pointer_table([(12, len(entry))], [entry])


def dton_payload() -> bytes:
    entry = struct.pack("<ii", 0x1234, 5) + bytes([5]) + b"tone\x00"
    entry += b"\x00" * 2
    entry += struct.pack("<ff", 1.0, 0.5)
    return pointer_table([(12, len(entry))], [entry], gap=b"\x00" * 4)


def section(tag: bytes, payload: bytes) -> bytes:
    return tag + struct.pack("<I", len(payload)) + payload


def default_sections(tracks=None, stub_pointer=False, pack_first=False, unknown=True, binf=True):
    tracks = [TRACK_A, TRACK_B] if tracks is None else tracks
    pack, tone = pack_and_tone(tracks, stub_pointer)
    sections = [(b"PROP", prop_payload())]
    if binf:
        sections.append((b"BINF", binf_payload()))
    sections += [(b"GRP ", grp_payload()), (b"DTON", dton_payload())]
    if unknown:
        sections.append((UNKNOWN_TAG, UNKNOWN_PAYLOAD))
    body = [(b"TONE", tone), (b"JUNK", b"\x00" * 4), (b"PACK", pack)]
    if pack_first:
        body = [(b"PACK", pack), (b"JUNK", b"\x00" * 4), (b"TONE", tone)]
    return sections + body


def build_toc_bank(sections=None, trailing: bytes = b"") -> bytes:
    sections = default_sections() if sections is None else sections
    toc = struct.pack("<I", len(sections))
    for tag, payload in sections:
        toc += tag + struct.pack("<I", len(payload))
    body = b"BANK" + b"TOC " + struct.pack("<I", len(toc)) + toc
    body += b"".join(section(tag, payload) for tag, payload in sections)
    body += trailing
    return b"NUS3" + struct.pack("<I", len(body)) + body


def build_sequential_bank(sections=None, trailing: bytes = b"") -> bytes:
    sections = default_sections() if sections is None else sections
    body = b"".join(section(tag, payload) for tag, payload in sections) + trailing
    return b"NUS3" + struct.pack("<I", len(body)) + body


def toc_sizes(data: bytes) -> dict:
    count = struct.unpack_from("<I", data, 0x14)[0]
    sizes = {}
    for i in range(count):
        tag = data[0x18 + 8 * i:0x1C + 8 * i]
        sizes[tag] = struct.unpack_from("<I", data, 0x1C + 8 * i)[0]
    return sizes


def section_payload(data: bytes, tag: bytes) -> bytes:
    """Payload of the first section with ``tag`` found by walking the stream."""
    if data[8:16] == b"BANKTOC ":
        pos = 0x14 + struct.unpack_from("<I", data, 0x10)[0]
    else:
        pos = 8
    while pos + 8 <= len(data):
        found = data[pos:pos + 4]
        size = struct.unpack_from("<I", data, pos + 4)[0]
        if found == tag:
            return data[pos + 8:pos + 8 + size]
        pos += 8 + size
    raise KeyError(tag)
