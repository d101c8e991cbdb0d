#python nus3bank_tool.py info <bank.nus3bank>
#python nus3bank_tool.py replace <bank.nus3bank> 0x3 new.wav --output patched.nus3bank

#!/usr/bin/env python3
import os
import sys
import argparse
import logging

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from settings import load_settings
from file_handlers.nus3bank.nus3bank_errors import Nus3bankError
from file_handlers.nus3bank.nus3bank_parser import parse_file
from file_handlers.nus3bank.nus3bank_pending import PendingChanges, apply_and_save
from file_handlers.nus3bank.nus3bank_debug import DebugOptions, to_debug_json, write_debug_json
from file_handlers.nus3bank.nus3bank_export import export_all_tracks, export_track

logger = logging.getLogger("nus3bank_tool")


def cmd_info(args, settings):
    bank = parse_file(args.path)
    info = bank.bank_info
    print(f"File:   {args.path}")
    print(f"Layout: {bank.layout.value}")
    print(f"Bank:   {info.name} (id {info.bank_id})")
    if bank.prop is not None and bank.prop.decoded:
        print(f"Project: {bank.prop.project} {bank.prop.timestamp}".rstrip())
    print(f"Sections: {' '.join(t.decode('latin-1') for t in bank.section_order)}")
    print(f"Tracks: {len(bank.tracks)}")
    for track in bank.tracks:
        print(f"  {track.hex_id:>8}  {track.size:>10}  {track.audio_format.value:<7}  {track.name}")
    return 0


def cmd_dump(args, settings):
    bank = parse_file(args.path)
    options = DebugOptions(
        max_preview_bytes=args.preview_bytes if args.preview_bytes is not None else settings["debug_preview_bytes"],
        include_pack_preview=args.include_pack,
        include_tone_payload_preview=args.include_payloads,
        include_unknown_section_preview=args.include_unknown,
    )
    if args.output:
        write_debug_json(bank, args.output, options)
        print(f"Wrote {args.output}")
    else:
        print(to_debug_json(bank, options))
    return 0


def cmd_extract(args, settings):
    bank = parse_file(args.path)
    output_dir = args.output or settings["export_directory"]
    if args.id:
        paths = [export_track(bank, track_id, output_dir) for track_id in args.id]
    else:
        paths = export_all_tracks(bank, output_dir)
    for path in paths:
        print(path)
    return 0


def _read_payload(path):
    with open(path, "rb") as f:
        return f.read()


def _save_changes(args, changes):
    report = apply_and_save(args.path, changes, args.output)
    for op, error in report.rejected:
        logger.error("%s rejected: %s", op.describe(), error)
    for real_id in report.added.values():
        print(f"Added 0x{real_id:x}")
    print(f"Wrote {args.output or args.path}")
    return 1 if report.rejected else 0


def cmd_replace(args, settings):
    changes = PendingChanges(args.path)
    changes.register_replace(args.id, _read_payload(args.file))
    return _save_changes(args, changes)


def cmd_add(args, settings):
    changes = PendingChanges(args.path)
    changes.register_add(args.name, _read_payload(args.file))
    return _save_changes(args, changes)


def cmd_remove(args, settings):
    changes = PendingChanges(args.path)
    for track_id in args.id:
        changes.register_remove(track_id)
    return _save_changes(args, changes)


def build_parser():
    parser = argparse.ArgumentParser(description='Inspect and edit NUS3BANK audio banks.')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    parser.add_argument('--settings', help='Path to settings.json')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('info', help='Print bank name and track list')
    p.add_argument('path')
    p.set_defaults(func=cmd_info)

    p = sub.add_parser('dump', help='Dump the parsed structure as JSON')
    p.add_argument('path')
    p.add_argument('--output', '-o', help='Output JSON file; if omitted, prints to stdout')
    p.add_argument('--preview-bytes', type=int, help='Cap for base64 previews')
    p.add_argument('--include-pack', action='store_true', help='Include a PACK preview')
    p.add_argument('--include-payloads', action='store_true', help='Include per-track payload previews')
    p.add_argument('--include-unknown', action='store_true', help='Include previews of unknown sections')
    p.set_defaults(func=cmd_dump)

    p = sub.add_parser('extract', help='Export track payloads')
    p.add_argument('path')
    p.add_argument('--output', '-o', help='Output directory')
    p.add_argument('--id', action='append', help='Track id to export (repeatable); default all')
    p.set_defaults(func=cmd_extract)

    p = sub.add_parser('replace', help='Replace one track payload')
    p.add_argument('path')
    p.add_argument('id')
    p.add_argument('file', help='Replacement payload')
    p.add_argument('--output', '-o', help='Output bank; default overwrites the input')
    p.set_defaults(func=cmd_replace)

    p = sub.add_parser('add', help='Append a new track')
    p.add_argument('path')
    p.add_argument('name')
    p.add_argument('file', help='Track payload')
    p.add_argument('--output', '-o', help='Output bank; default overwrites the input')
    p.set_defaults(func=cmd_add)

    p = sub.add_parser('remove', help='Remove tracks')
    p.add_argument('path')
    p.add_argument('id', nargs='+')
    p.add_argument('--output', '-o', help='Output bank; default overwrites the input')
    p.set_defaults(func=cmd_remove)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = load_settings(args.settings)
    level = logging.DEBUG if args.verbose else getattr(logging, str(settings["log_level"]).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(message)s")

    try:
        return args.func(args, settings)
    except (Nus3bankError, OSError) as e:
        logger.error("%s: %s", args.path, e)
        return 1


if __name__ == '__main__':
    sys.exit(main())
