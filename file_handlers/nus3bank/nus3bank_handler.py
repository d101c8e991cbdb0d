from __future__ import annotations

import datetime
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from file_handlers.base_handler import FileHandler
from settings import DEFAULT_SETTINGS
from .nus3bank_parser import parse_bytes
from .nus3bank_structures import NUS3_MAGIC, Nus3bankFile, Track, TrackId
from .nus3bank_writer import write, write_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackSummary:
    hex_id: str
    name: str
    size: int
    audio_format: str


class Nus3bankHandler(FileHandler):
    def __init__(self):
        super().__init__()
        self.raw_data: bytes = b""
        self.bank: Optional[Nus3bankFile] = None

    @classmethod
    def can_handle(cls, data: bytes) -> bool:
        return data[:4] == NUS3_MAGIC

    def supports_editing(self) -> bool:
        return True

    def create_viewer(self):
        return None

    def read(self, data: bytes):
        self.raw_data = bytes(data)
        self.bank = parse_bytes(self.raw_data, file_path=self.filepath)
        self.modified = False

    def open(self, path) -> Nus3bankFile:
        self.filepath = os.fspath(path)
        self.read(Path(path).read_bytes())
        return self.bank

    def _require_bank(self) -> Nus3bankFile:
        if self.bank is None:
            raise ValueError("No NUS3BANK file loaded")
        return self.bank

    def tracks(self) -> List[Track]:
        return self._require_bank().tracks

    def list_tracks(self) -> List[TrackSummary]:
        return [
            TrackSummary(t.hex_id, t.name, t.size, t.audio_format.value)
            for t in self.tracks()
        ]

    def get_track(self, track_id: TrackId) -> Track:
        return self._require_bank().get_track(track_id)

    def replace_track_data(self, track_id: TrackId, data: bytes):
        self._require_bank().replace_track_data(track_id, data)
        self.modified = True

    def add_track(self, name: str, data: bytes) -> str:
        track = self._require_bank().add_track(name, data)
        self.modified = True
        return track.hex_id

    def remove_track(self, track_id: TrackId):
        self._require_bank().remove_track(track_id)
        self.modified = True

    def rebuild(self) -> bytes:
        data = write(self._require_bank(), self.raw_data)
        # Re-parse so offsets and removed slots match the new image.
        self.read(data)
        return data

    def save(self, path=None) -> str:
        target = os.fspath(path or self.filepath)
        if not target:
            raise ValueError("No output path given")
        bank = self._require_bank()
        if self._setting("backup_on_save") and os.path.exists(target):
            self.create_backup(target)
        write_file(bank, target, self.raw_data)
        self.filepath = target
        self.read(Path(target).read_bytes())
        return target

    def create_backup(self, file_path: str) -> Optional[str]:
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = f"{file_path}.{timestamp}.bak"
        try:
            shutil.copy2(file_path, backup_path)
        except OSError as e:
            logger.error("Backup creation failed for %s: %s", file_path, e)
            return None
        logger.info("Backup created: %s", backup_path)
        return backup_path

    def _setting(self, key):
        settings = self.settings
        if settings is None and self.app is not None:
            settings = getattr(self.app, "settings", None)
        if settings is None:
            settings = DEFAULT_SETTINGS
        return settings.get(key, DEFAULT_SETTINGS.get(key))
