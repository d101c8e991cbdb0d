from .nus3bank_errors import (
    BadMagic, InvalidFormat, InvalidId, Nus3bankError, SectionMissing, Truncated, TrackNotFound,
)
from .nus3bank_structures import (
    AudioFormat, BankInfo, BankLayout, Nus3bankFile, Track, TrackStatus,
    metadata_header_length, parse_track_id,
)
from .nus3bank_parser import parse, parse_bytes, parse_file, resolve_payloads
from .nus3bank_writer import write, write_file
from .nus3bank_pending import (
    ApplyReport, OperationKind, PendingChanges, PendingOperation, PendingRegistry,
    apply, apply_and_save, normalize_path, pending_registry,
)

__all__ = [
    "BadMagic", "InvalidFormat", "InvalidId", "Nus3bankError", "SectionMissing", "Truncated", "TrackNotFound",
    "AudioFormat", "BankInfo", "BankLayout", "Nus3bankFile", "Track", "TrackStatus",
    "metadata_header_length", "parse_track_id",
    "parse", "parse_bytes", "parse_file", "resolve_payloads",
    "write", "write_file",
    "ApplyReport", "OperationKind", "PendingChanges", "PendingOperation", "PendingRegistry",
    "apply", "apply_and_save", "normalize_path", "pending_registry",
]

def __getattr__(name: str):
    if name in ("Nus3bankHandler", "TrackSummary"):
        from .nus3bank_handler import Nus3bankHandler, TrackSummary
        globals().update(Nus3bankHandler=Nus3bankHandler, TrackSummary=TrackSummary)
        return globals()[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
