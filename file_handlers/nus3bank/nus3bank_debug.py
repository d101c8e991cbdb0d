"""
JSON-friendly projection of a parsed bank for inspection and bug reports.
"""
from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .nus3bank_structures import Nus3bankFile, Track

logger = logging.getLogger(__name__)

DEFAULT_MAX_PREVIEW_BYTES = 4096


@dataclass
class DebugOptions:
    max_preview_bytes: int = DEFAULT_MAX_PREVIEW_BYTES
    include_pack_preview: bool = False
    include_tone_payload_preview: bool = False
    include_unknown_section_preview: bool = False


def bytes_preview(data: Optional[bytes], max_bytes: int) -> Dict[str, Any]:
    data = data or b""
    limit = max(0, max_bytes)
    head = data[:limit]
    return {
        "len": len(data),
        "preview_len": len(head),
        "preview_base64": base64.b64encode(head).decode("ascii"),
        "truncated": len(data) > len(head),
    }


def _tag(tag: bytes) -> str:
    return tag.decode("latin-1")


def _track_dict(track: Track, options: DebugOptions) -> Dict[str, Any]:
    entry = {
        "id": track.track_id,
        "hex_id": track.hex_id,
        "name": track.name,
        "status": track.status.value,
        "pack_offset": track.pack_offset,
        "size": track.size,
        "metadata_size": track.metadata_size,
        "audio_format": track.audio_format.value,
        "has_payload": track.audio_data is not None,
        "meta_header": track.meta_header.hex(),
        "meta_tail_len": len(track.meta_tail),
    }
    if options.include_tone_payload_preview:
        entry["payload"] = bytes_preview(track.audio_data, options.max_preview_bytes)
    return entry


def to_debug_dict(bank: Nus3bankFile, options: Optional[DebugOptions] = None) -> Dict[str, Any]:
    options = options or DebugOptions()
    cap = options.max_preview_bytes
    result: Dict[str, Any] = {
        "file_path": bank.file_path,
        "layout": bank.layout.value,
        "declared_size": bank.declared_size,
        "section_order": [_tag(t) for t in bank.section_order],
        "toc": [{"tag": e.name, "size": e.size} for e in bank.toc],
    }

    if bank.prop is not None:
        prop = bank.prop
        result["prop"] = {
            "decoded": prop.decoded,
            "project": prop.project,
            "timestamp": prop.timestamp,
            "unk1": prop.unk1,
            "unk2": prop.unk2,
            "unk3": prop.unk3,
            "reserved": prop.reserved,
            "extended": prop.extended,
            "raw": bytes_preview(prop.raw, cap),
        }
    if bank.binf is not None:
        result["binf"] = {
            "reserved": bank.binf.reserved,
            "bank_id": bank.binf.bank_id,
            "name": bank.binf.name,
            "raw": bytes_preview(bank.binf.raw, cap),
        }
    if bank.grp is not None:
        result["grp"] = {"names": list(bank.grp.names), "raw": bytes_preview(bank.grp.raw, cap)}
    if bank.dton is not None:
        result["dton"] = {
            "tones": [
                {"hash": t.hash, "unk1": t.unk1, "name": t.name, "values": list(t.values)}
                for t in bank.dton.tones
            ],
            "raw": bytes_preview(bank.dton.raw, cap),
        }

    result["tone"] = {
        "declared_count": bank.tone.declared_count,
        "track_count": len(bank.tone.tracks),
        "active_count": len(bank.tracks),
        "tracks": [_track_dict(t, options) for t in bank.tone.tracks],
    }
    if bank.junk is not None:
        result["junk"] = {"len": len(bank.junk.data)}

    pack = {"len": len(bank.pack.data)}
    if options.include_pack_preview:
        pack["preview"] = bytes_preview(bank.pack.data, cap)
    result["pack"] = pack

    unknown = []
    for section in bank.unknown_sections:
        entry: Dict[str, Any] = {"tag": section.name, "len": len(section.data)}
        if options.include_unknown_section_preview:
            entry["preview"] = bytes_preview(section.data, cap)
        unknown.append(entry)
    result["unknown_sections"] = unknown
    return result


def to_debug_json(bank: Nus3bankFile, options: Optional[DebugOptions] = None, indent: int = 2) -> str:
    return json.dumps(to_debug_dict(bank, options), indent=indent, ensure_ascii=False)


def write_debug_json(
    bank: Nus3bankFile,
    path: Union[str, os.PathLike],
    options: Optional[DebugOptions] = None,
) -> str:
    target = os.fspath(path)
    with open(target, "w", encoding="utf-8") as f:
        f.write(to_debug_json(bank, options))
    logger.info("Wrote debug dump to %s", target)
    return target
