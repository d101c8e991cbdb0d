#!/usr/bin/env python3
import os
import struct
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

script_dir = Path(__file__).resolve().parent
project_root = script_dir.parent

sys.path.insert(0, str(project_root))
sys.path.insert(0, str(script_dir))

from file_handlers.nus3bank.nus3bank_errors import (
    BadMagic, InvalidFormat, InvalidId, SectionMissing, TrackNotFound, Truncated,
)
from file_handlers.nus3bank import nus3bank_parser
from file_handlers.nus3bank.nus3bank_parser import parse, parse_bytes, parse_file, scan_sections
from file_handlers.nus3bank.nus3bank_structures import (
    AudioFormat, BankLayout, metadata_header_length, name_padding, parse_track_id,
)
import nus3bank_samples as samples


class TestHelpers(unittest.TestCase):
    def test_metadata_header_length(self):
        self.assertEqual(metadata_header_length(0), 12)
        for d in range(1, 10):
            self.assertEqual(metadata_header_length(d), 8)
        self.assertEqual(metadata_header_length(10), 12)
        self.assertEqual(metadata_header_length(255), 12)

    def test_name_padding_wraps_to_four(self):
        self.assertEqual(name_padding(3), 4)
        self.assertEqual(name_padding(8), 3)
        self.assertEqual(name_padding(5), 2)
        self.assertEqual(name_padding(6), 1)

    def test_parse_track_id(self):
        self.assertEqual(parse_track_id(3), 3)
        self.assertEqual(parse_track_id("0x1a"), 0x1A)
        self.assertEqual(parse_track_id("0X1A"), 0x1A)
        self.assertEqual(parse_track_id("12"), 12)
        for bad in ("zz", "0xg", "", -1, True, 1.5):
            with self.assertRaises(InvalidId):
                parse_track_id(bad)


class TestTocLayout(unittest.TestCase):
    def setUp(self):
        self.data = samples.build_toc_bank()
        self.bank = parse_bytes(self.data)

    def test_layout_and_toc(self):
        self.assertEqual(self.bank.layout, BankLayout.TOC)
        self.assertEqual(
            [e.tag for e in self.bank.toc],
            [b"PROP", b"BINF", b"GRP ", b"DTON", b"MARK", b"TONE", b"JUNK", b"PACK"],
        )
        self.assertEqual(self.bank.section_order, [e.tag for e in self.bank.toc])
        self.assertEqual(self.bank.declared_size, len(self.data) - 8)

    def test_bank_info(self):
        info = self.bank.bank_info
        self.assertEqual(info.bank_id, samples.BANK_ID)
        self.assertEqual(info.name, samples.BANK_NAME)

    def test_tracks(self):
        tracks = self.bank.tracks
        self.assertEqual([t.hex_id for t in tracks], ["0x0", "0x1"])
        self.assertEqual([t.name for t in tracks], ["track_a", "track_b"])
        a, b = tracks
        self.assertEqual(a.audio_data, samples.TRACK_A[1])
        self.assertEqual(b.audio_data, samples.TRACK_B[1])
        self.assertEqual((a.pack_offset, a.size), (0, 44))
        self.assertEqual((b.pack_offset, b.size), (44, 46))
        self.assertEqual(a.audio_format, AudioFormat.WAV)
        self.assertEqual(a.meta_header, samples.HEADER_12)
        self.assertEqual(b.meta_header, samples.HEADER_8)
        self.assertEqual(a.meta_tail, samples.TAIL)
        self.assertEqual(a.filename(), "0x0-track_a.wav")

    def test_optional_sections_decoded(self):
        prop = self.bank.prop
        self.assertTrue(prop.decoded)
        self.assertEqual((prop.project, prop.timestamp), ("demo", "2020"))
        self.assertEqual((prop.unk1, prop.unk2, prop.unk3), (1, 2, 3))
        self.assertEqual(self.bank.grp.names, ["group"])
        tone = self.bank.dton.tones[0]
        self.assertEqual((tone.hash, tone.unk1, tone.name), (0x1234, 5, "tone"))
        self.assertEqual(tone.values, [1.0, 0.5])
        self.assertEqual(self.bank.junk.data, b"\x00" * 4)

    def test_unknown_section_kept(self):
        self.assertEqual(len(self.bank.unknown_sections), 1)
        raw = self.bank.unknown_sections[0]
        self.assertEqual((raw.tag, raw.data), (samples.UNKNOWN_TAG, samples.UNKNOWN_PAYLOAD))

    def test_get_track(self):
        self.assertEqual(self.bank.get_track("0x1").name, "track_b")
        with self.assertRaises(TrackNotFound):
            self.bank.get_track(5)


class TestParserVariants(unittest.TestCase):
    def test_sequential_layout(self):
        bank = parse_bytes(samples.build_sequential_bank())
        self.assertEqual(bank.layout, BankLayout.SEQUENTIAL)
        self.assertEqual(bank.toc, [])
        self.assertEqual([t.name for t in bank.tracks], ["track_a", "track_b"])

    def test_sequential_stops_at_implausible_size(self):
        trailing = b"ZZZZ" + struct.pack("<I", 0xFFFFFF)
        bank = parse_bytes(samples.build_sequential_bank(trailing=trailing))
        self.assertEqual(len(bank.tracks), 2)
        self.assertNotIn(b"ZZZZ", bank.section_order)

    def test_pack_before_tone(self):
        sections = samples.default_sections(pack_first=True)
        bank = parse_bytes(samples.build_toc_bank(sections))
        self.assertEqual(bank.section_order[-3:], [b"PACK", b"JUNK", b"TONE"])
        self.assertEqual(bank.get_track(0).audio_data, samples.TRACK_A[1])
        self.assertEqual(bank.get_track(1).audio_data, samples.TRACK_B[1])

    def test_stub_pointer_skipped(self):
        sections = samples.default_sections(stub_pointer=True)
        bank = parse_bytes(samples.build_toc_bank(sections))
        self.assertEqual(bank.tone.declared_count, 3)
        self.assertEqual(len(bank.tone.tracks), 2)

    def test_out_of_bounds_payload_cleared(self):
        name, payload, header = samples.TRACK_A
        pack, tone = samples.pack_and_tone([samples.TRACK_A])
        tone = tone.replace(
            struct.pack("<III", 8, 0, len(payload)), struct.pack("<III", 8, 0x1000, len(payload))
        )
        sections = [(b"BINF", samples.binf_payload()), (b"TONE", tone), (b"PACK", pack)]
        bank = parse_bytes(samples.build_toc_bank(sections))
        track = bank.get_track(0)
        self.assertIsNone(track.audio_data)
        self.assertEqual(track.size, 0)

    def test_tone_offsets_count_from_end_of_count_field(self):
        # Two tracks: 4-byte count, two pointer pairs, a zero word, then the blocks at 8n + 4.
        block_a = samples.metadata_block("track_a", samples.HEADER_12, 0, 44)
        block_b = samples.metadata_block("track_b", samples.HEADER_8, 44, 46)
        tone = struct.pack(
            "<IIIIII", 2, 20, len(block_a), 20 + len(block_a), len(block_b), 0,
        ) + block_a + block_b
        pack = samples.TRACK_A[1] + samples.TRACK_B[1] + b"\x00\x00"
        sections = [(b"BINF", samples.binf_payload()), (b"TONE", tone), (b"PACK", pack)]
        bank = parse_bytes(samples.build_toc_bank(sections))
        a, b = bank.tracks
        self.assertEqual((a.name, b.name), ("track_a", "track_b"))
        self.assertEqual(a.meta_header, samples.HEADER_12)
        self.assertEqual(b.meta_header, samples.HEADER_8)
        self.assertEqual(a.audio_data, samples.TRACK_A[1])
        self.assertEqual(b.audio_data, samples.TRACK_B[1])

    def test_binf_tail_kept(self):
        pack, tone = samples.pack_and_tone([samples.TRACK_A])
        binf = samples.binf_payload(tail=struct.pack("<i", 5))
        sections = [(b"BINF", binf), (b"TONE", tone), (b"PACK", pack)]
        info = parse_bytes(samples.build_toc_bank(sections)).bank_info
        self.assertEqual(info.name, samples.BANK_NAME)
        self.assertEqual(info.tail, struct.pack("<i", 5))

    def test_undecodable_track_name_keeps_raw_bytes(self):
        track = (b"bad\xffname", samples.wav_bytes(20), samples.HEADER_12)
        bank = parse_bytes(samples.build_toc_bank(samples.default_sections(tracks=[track])))
        self.assertEqual(bank.get_track(0).name, "bad\ufffdname")
        self.assertEqual(bank.get_track(0).name_raw, b"bad\xffname")

    def test_filename_strips_path_separators(self):
        bank = parse_bytes(samples.build_toc_bank())
        track = bank.get_track(0)
        track.name = "../sub\\dir/x"
        self.assertEqual(track.filename(), "0x0-.._sub_dir_x.wav")

    def test_bad_binf_name_uses_placeholder(self):
        pack, tone = samples.pack_and_tone([samples.TRACK_A])
        binf = struct.pack("<II", 0, 1) + b"\xff\xfe\x00\x00"
        sections = [(b"BINF", binf), (b"TONE", tone), (b"PACK", pack)]
        bank = parse_bytes(samples.build_toc_bank(sections))
        self.assertEqual(bank.bank_info.name, "Unknown Bank")
        self.assertEqual(len(bank.tracks), 1)

    def test_parse_accepts_path(self):
        data = samples.build_toc_bank()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "bank.nus3bank")
            with open(path, "wb") as f:
                f.write(data)
            bank = parse(path)
            self.assertEqual(bank.file_path, path)
            self.assertEqual(len(parse_file(path).tracks), 2)
        self.assertEqual(len(parse(data).tracks), 2)


class TestParserErrors(unittest.TestCase):
    def test_bad_magic(self):
        data = b"RIFF" + samples.build_toc_bank()[4:]
        with self.assertRaises(BadMagic) as ctx:
            parse_bytes(data)
        self.assertEqual(ctx.exception.expected, "NUS3")
        self.assertEqual(ctx.exception.found, "RIFF")

    def test_errors_are_value_errors(self):
        with self.assertRaises(ValueError):
            parse_bytes(b"XXXX\x00\x00\x00\x00")

    def test_missing_binf(self):
        sections = samples.default_sections(binf=False)
        with self.assertRaises(SectionMissing) as ctx:
            parse_bytes(samples.build_toc_bank(sections))
        self.assertEqual(ctx.exception.name, "BINF")

    def test_toc_tag_mismatch(self):
        data = bytearray(samples.build_toc_bank())
        # First TOC entry says PROP; make the stream disagree.
        count = struct.unpack_from("<I", data, 0x14)[0]
        stream_start = 0x18 + 8 * count
        data[stream_start:stream_start + 4] = b"XXXX"
        with self.assertRaises(BadMagic):
            parse_bytes(bytes(data))

    def test_toc_entry_count_limits(self):
        data = bytearray(samples.build_toc_bank())
        struct.pack_into("<I", data, 0x14, 0)
        with self.assertRaises(InvalidFormat):
            parse_bytes(bytes(data))
        struct.pack_into("<I", data, 0x14, 101)
        with self.assertRaises(InvalidFormat):
            parse_bytes(bytes(data))

    def test_zero_track_count(self):
        pack, _ = samples.pack_and_tone([samples.TRACK_A])
        sections = [(b"BINF", samples.binf_payload()), (b"TONE", struct.pack("<I", 0)), (b"PACK", pack)]
        with self.assertRaises(InvalidFormat):
            parse_bytes(samples.build_toc_bank(sections))

    def test_track_count_over_limit(self):
        pack, _ = samples.pack_and_tone([samples.TRACK_A])
        tone = struct.pack("<I", 100_001) + b"\x00" * 16
        sections = [(b"BINF", samples.binf_payload()), (b"TONE", tone), (b"PACK", pack)]
        with self.assertRaises(InvalidFormat) as ctx:
            parse_bytes(samples.build_toc_bank(sections))
        self.assertIn("100001", str(ctx.exception))

    def test_oversized_pack(self):
        self.assertEqual(nus3bank_parser.MAX_PACK_SIZE, 100 * 1024 * 1024)
        data = samples.build_sequential_bank()
        with mock.patch.object(nus3bank_parser, "MAX_PACK_SIZE", 91):
            with self.assertRaises(InvalidFormat) as ctx:
                parse_bytes(data)
        self.assertIn("PACK too large", str(ctx.exception))
        with mock.patch.object(nus3bank_parser, "MAX_PACK_SIZE", 92):
            self.assertEqual(len(parse_bytes(data).tracks), 2)

    def test_oversized_prop(self):
        data = bytearray(samples.build_sequential_bank([(b"PROP", b"")]))
        data += b"\x00" * 8
        struct.pack_into("<I", data, 12, (1 << 20) + 1)
        data += b"\x00" * ((1 << 20) + 1)
        with self.assertRaises(InvalidFormat):
            parse_bytes(bytes(data))

    def test_truncated_header(self):
        with self.assertRaises(Truncated):
            parse_bytes(b"NUS3\x00")

    def test_truncated_toc_section(self):
        data = samples.build_toc_bank()
        with self.assertRaises(InvalidFormat):
            parse_bytes(data[:-10])

    def test_scan_reports_spans(self):
        scan = scan_sections(samples.build_toc_bank())
        pack = scan.first(b"PACK")
        self.assertEqual(pack.size, 92)
        self.assertEqual(pack.toc_index, 7)


if __name__ == '__main__':
    unittest.main()
