from __future__ import annotations


class Nus3bankError(ValueError):
    """Base class for every NUS3BANK codec failure."""


class BadMagic(Nus3bankError):
    def __init__(self, expected: bytes | str, found: bytes | str):
        self.expected = _tag_text(expected)
        self.found = _tag_text(found)
        super().__init__(f"Invalid magic number: expected {self.expected!r}, found {self.found!r}")


class SectionMissing(Nus3bankError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Required section missing: {name}")


class InvalidFormat(Nus3bankError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid file format: {reason}")


class Truncated(InvalidFormat):
    def __init__(self, position: int, requested: int | None = None, available: int | None = None):
        self.position = position
        self.requested = requested
        self.available = available
        detail = f"data ends early at offset 0x{position:X}"
        if requested is not None:
            detail += f" (wanted {requested} bytes, {available or 0} available)"
        super().__init__(detail)


class TrackNotFound(Nus3bankError):
    def __init__(self, track_id):
        self.track_id = track_id
        super().__init__(f"Track not found: {_id_text(track_id)}")


class InvalidId(Nus3bankError):
    def __init__(self, track_id):
        self.track_id = track_id
        super().__init__(f"Invalid track id: {track_id!r}")


def _tag_text(tag: bytes | str) -> str:
    if isinstance(tag, (bytes, bytearray)):
        return bytes(tag).decode("latin-1")
    return str(tag)


def _id_text(track_id) -> str:
    return f"0x{track_id:x}" if isinstance(track_id, int) else str(track_id)
