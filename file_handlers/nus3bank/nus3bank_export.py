import logging
import os
from typing import List

from .nus3bank_errors import InvalidFormat, Nus3bankError
from .nus3bank_structures import Nus3bankFile, TrackId

logger = logging.getLogger(__name__)


def export_track_to_memory(bank: Nus3bankFile, track_id: TrackId) -> bytes:
    track = bank.get_track(track_id)
    if not track.audio_data:
        raise InvalidFormat(f"Track {track.hex_id} has no audio data")
    return bytes(track.audio_data)


def export_track(bank: Nus3bankFile, track_id: TrackId, output_dir: str) -> str:
    """Write one track payload to ``output_dir`` and return the file path."""
    data = export_track_to_memory(bank, track_id)
    track = bank.get_track(track_id)
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, track.filename())
    with open(path, "wb") as f:
        f.write(data)
    logger.debug("Exported %s (%d bytes) to %s", track.hex_id, len(data), path)
    return path


def export_all_tracks(bank: Nus3bankFile, output_dir: str) -> List[str]:
    paths = []
    for track in bank.tracks:
        try:
            paths.append(export_track(bank, track.track_id, output_dir))
        except (Nus3bankError, OSError) as e:
            logger.warning("Failed to export track %s (%s): %s", track.hex_id, track.name, e)
    logger.info("Exported %d of %d tracks to %s", len(paths), len(bank.tracks), output_dir)
    return paths
