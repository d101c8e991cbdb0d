from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Union

from .nus3bank_errors import InvalidFormat, InvalidId, TrackNotFound

NUS3_MAGIC = b"NUS3"
BANK_MAGIC = b"BANK"
TOC_MAGIC = b"TOC "
RIFF_MAGIC = b"RIFF"

PROP = b"PROP"
BINF = b"BINF"
GRP = b"GRP "
DTON = b"DTON"
TONE = b"TONE"
JUNK = b"JUNK"
PACK = b"PACK"

FILE_HEADER_SIZE = 8
SECTION_HEADER_SIZE = 8
TOC_SIZE_OFFSET = 0x10
TOC_COUNT_OFFSET = 0x14
TOC_ENTRIES_OFFSET = 0x18

# GRP, DTON and TONE pointer offsets count from the end of the entry-count field;
# the pointer table is followed by one zero word.
POINTER_BASE = 4

# Pointer-table sizes at or below this mark stub entries that are never materialized.
MIN_TRACK_METADATA_SIZE = 12
METADATA_CONSTANT = 8
METADATA_DISAMBIGUATOR_OFFSET = 6
MAX_TRACK_NAME_BYTES = 0xFE

MAX_TOC_ENTRIES = 100
MAX_TRACK_COUNT = 100_000
MAX_PROP_SIZE = 1 << 20
MAX_PACK_SIZE = 100 * (1 << 20)

UNKNOWN_BANK_NAME = "Unknown Bank"

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')

TrackId = Union[int, str]


def metadata_header_length(disambiguator: int) -> int:
    """Bytes in front of the name-length field of a TONE metadata block.

    Byte 6 of the block selects between the two observed layouts: values
    1-9 mean an 8-byte header, 0 or anything above 9 a 12-byte header.
    """
    if disambiguator == 0 or disambiguator > 9:
        return 12
    return 8


def name_padding(name_len: int) -> int:
    """Padding after a length-prefixed name; ``name_len`` counts the null.

    An already aligned name still gets a full 4 bytes.
    """
    return 4 - ((name_len + 1) % 4)


DEFAULT_METADATA_HEADER = bytes(12)


def parse_track_id(value: TrackId) -> int:
    """Accept an int id or its ``0x``-prefixed / decimal string form."""
    if isinstance(value, bool):
        raise InvalidId(value)
    if isinstance(value, int):
        if value < 0:
            raise InvalidId(value)
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        try:
            if text.startswith("0x"):
                return int(text[2:], 16)
            if text.isdigit():
                return int(text, 10)
        except ValueError:
            pass
    raise InvalidId(value)


def format_track_id(track_id: int) -> str:
    return f"0x{track_id:x}"


class AudioFormat(Enum):
    WAV = "wav"
    UNKNOWN = "unknown"

    @classmethod
    def sniff(cls, data: Optional[bytes]) -> "AudioFormat":
        return cls.WAV if data and data[:4] == RIFF_MAGIC else cls.UNKNOWN


class TrackStatus(Enum):
    ACTIVE = "active"
    REMOVED = "removed"


class BankLayout(Enum):
    TOC = "toc"
    SEQUENTIAL = "sequential"


@dataclass
class TocEntry:
    tag: bytes
    size: int

    @property
    def name(self) -> str:
        return self.tag.decode("latin-1")


@dataclass
class RawSection:
    tag: bytes
    data: bytes = b""

    @property
    def name(self) -> str:
        return self.tag.decode("latin-1")


@dataclass
class PropSection:
    raw: bytes = b""
    project: str = ""
    timestamp: str = ""
    unk1: int = 0
    unk2: int = 0
    unk3: int = 0
    reserved: int = 0
    # Set when the unk3/timestamp tail follows the project name.
    extended: bool = False
    decoded: bool = False


@dataclass
class BankInfo:
    reserved: int = 0
    bank_id: int = 0
    name: str = UNKNOWN_BANK_NAME
    # Bytes after the padded name, usually a single flag word.
    tail: bytes = b""
    raw: bytes = b""


@dataclass
class GroupSection:
    names: List[str] = field(default_factory=list)
    raw: bytes = b""


@dataclass
class DefaultTone:
    hash: int = 0
    unk1: int = 0
    name: str = ""
    values: List[float] = field(default_factory=list)


@dataclass
class DefaultToneSection:
    tones: List[DefaultTone] = field(default_factory=list)
    raw: bytes = b""


@dataclass
class JunkSection:
    data: bytes = b""


@dataclass
class PackSection:
    data: bytes = b""


@dataclass
class Track:
    track_id: int
    name: str = ""
    pack_offset: int = 0
    size: int = 0
    metadata_size: int = 0
    audio_data: Optional[bytes] = None
    audio_format: AudioFormat = AudioFormat.UNKNOWN
    status: TrackStatus = TrackStatus.ACTIVE
    # Raw metadata bytes before the name-length byte and after the size field.
    meta_header: bytes = b""
    meta_tail: bytes = b""
    # Name bytes as stored; written back unchanged while ``name`` still matches them.
    name_raw: bytes = field(default=b"", repr=False)

    @property
    def hex_id(self) -> str:
        return format_track_id(self.track_id)

    @property
    def is_removed(self) -> bool:
        return self.status is TrackStatus.REMOVED

    def filename(self) -> str:
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", self.name)
        return f"{self.hex_id}-{safe_name}.wav"

    def set_payload(self, data: bytes):
        self.audio_data = bytes(data)
        self.size = len(self.audio_data)
        self.audio_format = AudioFormat.sniff(self.audio_data)

    def clear_payload(self):
        self.audio_data = None
        self.size = 0
        self.audio_format = AudioFormat.UNKNOWN

    def mark_removed(self):
        self.status = TrackStatus.REMOVED
        self.clear_payload()


@dataclass
class ToneSection:
    tracks: List[Track] = field(default_factory=list)
    declared_count: int = 0
    raw: bytes = b""

    def __iter__(self) -> Iterator[Track]:
        return iter(self.tracks)


@dataclass
class Nus3bankFile:
    layout: BankLayout = BankLayout.TOC
    toc: List[TocEntry] = field(default_factory=list)
    prop: Optional[PropSection] = None
    binf: Optional[BankInfo] = None
    grp: Optional[GroupSection] = None
    dton: Optional[DefaultToneSection] = None
    tone: ToneSection = field(default_factory=ToneSection)
    junk: Optional[JunkSection] = None
    pack: PackSection = field(default_factory=PackSection)
    unknown_sections: List[RawSection] = field(default_factory=list)
    section_order: List[bytes] = field(default_factory=list)
    declared_size: int = 0
    file_path: str = ""
    source_bytes: Optional[bytes] = field(default=None, repr=False, compare=False)

    @classmethod
    def open(cls, path: Union[str, Path]) -> "Nus3bankFile":
        from .nus3bank_parser import parse_file
        return parse_file(path)

    @classmethod
    def from_bytes(cls, data: bytes, file_path: str = "") -> "Nus3bankFile":
        from .nus3bank_parser import parse_bytes
        return parse_bytes(data, file_path=file_path)

    def to_bytes(self, original: Optional[bytes] = None) -> bytes:
        from .nus3bank_writer import write
        return write(self, original if original is not None else self._require_source())

    def save(self, path: Union[str, Path], original: Optional[bytes] = None):
        from .nus3bank_writer import write_file
        write_file(self, path, original if original is not None else self._require_source())

    def _require_source(self) -> bytes:
        if self.source_bytes is None:
            raise InvalidFormat("original file bytes are required to rebuild the bank")
        return self.source_bytes

    @property
    def bank_info(self) -> Optional[BankInfo]:
        return self.binf

    @property
    def tracks(self) -> List[Track]:
        """Active tracks in pointer-table order."""
        return [t for t in self.tone.tracks if not t.is_removed]

    def get_track(self, track_id: TrackId) -> Track:
        wanted = parse_track_id(track_id)
        for track in self.tone.tracks:
            if track.track_id == wanted and not track.is_removed:
                return track
        raise TrackNotFound(wanted)

    def next_track_id(self) -> int:
        return max((t.track_id for t in self.tone.tracks), default=-1) + 1

    def replace_track_data(self, track_id: TrackId, data: bytes) -> Track:
        if not data:
            raise InvalidFormat("Audio data cannot be empty")
        track = self.get_track(track_id)
        track.set_payload(data)
        return track

    def remove_track(self, track_id: TrackId) -> Track:
        track = self.get_track(track_id)
        track.mark_removed()
        return track

    def add_track(self, name: str, data: bytes) -> Track:
        validate_new_track(name, data)
        if any(t.name == name for t in self.tracks):
            raise InvalidFormat(f"Track with name '{name}' already exists")

        # Reuse an existing block shape so unknown metadata fields stay plausible.
        template = next(iter(self.tracks), None)
        track = Track(
            track_id=self.next_track_id(),
            name=name,
            pack_offset=0,
            meta_header=template.meta_header if template else DEFAULT_METADATA_HEADER,
            meta_tail=template.meta_tail if template else b"",
        )
        track.set_payload(data)
        self.tone.tracks.append(track)
        return track


def validate_new_track(name: str, data: bytes):
    if not name:
        raise InvalidFormat("Track name cannot be empty")
    if not data:
        raise InvalidFormat("Audio data cannot be empty")
    if len(name.encode("utf-8")) > MAX_TRACK_NAME_BYTES:
        raise InvalidFormat(f"Track name too long: {name!r}")
