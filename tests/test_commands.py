from __future__ import annotations

import unittest

from broadcast_serial_bridge.commands import (
    FLEXICART_COMMANDS,
    LONG_OPERATION_TIMEOUT,
    SONY_COMMANDS,
    SONY_REPLY_WINDOW,
    Protocol,
    encode_request,
    lookup,
    parse_timecode,
)
from broadcast_serial_bridge.errors import InvalidParameter
from broadcast_serial_bridge.interpreter import Decoder


class TestFlexiCartCommands(unittest.TestCase):
    def test_move_to_slot(self):
        spec, frame = encode_request(Protocol.FLEXICART, "move_to_slot", {"slot": 7}, cart_address=1)
        self.assertEqual(frame, bytes.fromhex("020601010010078061"))
        self.assertEqual(spec.decoder, Decoder.REPLY)
        self.assertEqual(spec.expected_length, 1)

    def test_slot_range(self):
        for slot in (0, -1, 361):
            with self.subTest(slot=slot):
                with self.assertRaises(InvalidParameter):
                    encode_request(Protocol.FLEXICART, "move_to_slot", {"slot": slot})
        with self.assertRaises(InvalidParameter):
            encode_request(Protocol.FLEXICART, "move_to_slot", {"slot": 11}, slots=10)
        _, frame = encode_request(Protocol.FLEXICART, "move_to_slot", {"slot": 10}, slots=10)
        self.assertEqual(frame[6], 10)

    def test_fractional_numbers_rejected(self):
        for params in ({"slot": 7.9}, {"slot": float("nan")}, {"slot": 7, "data": 1.5}):
            with self.subTest(params=params):
                with self.assertRaises(InvalidParameter):
                    encode_request(Protocol.FLEXICART, "move_to_slot", params)
        _, frame = encode_request(Protocol.FLEXICART, "move_to_slot", {"slot": 7.0}, cart_address=1)
        self.assertEqual(frame, bytes.fromhex("020601010010078061"))

    def test_slot_required(self):
        with self.assertRaises(InvalidParameter):
            encode_request(Protocol.FLEXICART, "move_to_slot")

    def test_string_parameters(self):
        _, frame = encode_request(Protocol.FLEXICART, "set_bin_lamp", {"slot": "0x0a", "cart": "2"})
        self.assertEqual(frame[3], 2)
        self.assertEqual(frame[5], 0x09)
        self.assertEqual(frame[6], 10)
        with self.assertRaises(InvalidParameter):
            encode_request(Protocol.FLEXICART, "set_bin_lamp", {"slot": "seven"})

    def test_fixed_control_bytes(self):
        cases = {
            "status": (0x61, 0x00),
            "sense_status": (0x61, 0x10),
            "sense_inventory": (0x61, 0x30),
            "sense_errors": (0x61, 0x40),
            "elevator_initialize": (0x1D, 0x01),
            "load_cassette": (0x44, 0x01),
            "unload_cassette": (0x44, 0x02),
            "calibrate": (0x47, 0x00),
        }
        for name, (command, control) in cases.items():
            with self.subTest(name=name):
                _, frame = encode_request(Protocol.FLEXICART, name)
                self.assertEqual((frame[5], frame[6], frame[7]), (command, control, 0x80))
                self.assertEqual(sum(frame[1:]) & 0xFF, 0)

    def test_raw_command(self):
        _, frame = encode_request(Protocol.FLEXICART, "raw", {"command": 0x65, "control": 0x01, "data": 0x00})
        self.assertEqual((frame[5], frame[6], frame[7]), (0x65, 0x01, 0x00))
        with self.assertRaises(InvalidParameter):
            encode_request(Protocol.FLEXICART, "raw", {"control": 1})
        with self.assertRaises(InvalidParameter):
            encode_request(Protocol.FLEXICART, "raw", {"command": 0x1FF})

    def test_unknown_parameter(self):
        with self.assertRaises(InvalidParameter):
            encode_request(Protocol.FLEXICART, "stop", {"slot": 3})

    def test_long_operations(self):
        for name in ("calibrate", "initialize", "elevator_initialize"):
            with self.subTest(name=name):
                self.assertEqual(FLEXICART_COMMANDS[name].response_timeout, LONG_OPERATION_TIMEOUT)
        self.assertIsNone(FLEXICART_COMMANDS["stop"].response_timeout)


class TestSonyCommands(unittest.TestCase):
    def test_table_bytes(self):
        cases = {
            "stop": "200020",
            "play": "200121",
            "fast_forward": "201030",
            "rewind": "202040",
            "standby_off": "200424",
            "standby_on": "200525",
            "eject": "200f2f",
            "local_disable": "000c0c",
            "local_enable": "001d1d",
            "device_type": "001111",
            "status": "612041",
            "extended_status": "602040",
            "full_status": "632043",
            "position": "712051",
            "search_data": "722052",
            "ltc": "782058",
            "jog_forward_still": "21110030",
            "jog_forward_slow": "21112010",
            "jog_forward_normal": "21114030",
            "jog_reverse_slow": "21212000",
            "jog_reverse_normal": "21214020",
            "status_simple": "61",
            "status_2byte": "6120",
        }
        for name, expected in cases.items():
            with self.subTest(name=name):
                _, frame = encode_request(Protocol.SONY9PIN, name)
                self.assertEqual(frame.hex(), expected)

    def test_record_is_not_available(self):
        self.assertNotIn("record", SONY_COMMANDS)
        with self.assertRaises(InvalidParameter):
            encode_request(Protocol.SONY9PIN, "record")

    def test_cue_up_with_data(self):
        _, frame = encode_request(Protocol.SONY9PIN, "cue_up_with_data", {"timecode": "01:23:45:12"})
        self.assertEqual(frame, bytes.fromhex("243112452301d0"))

    def test_cue_up_bad_timecode(self):
        for tc in ("1:2:3", "25:00:00:00", "00:60:00:00", "00:00:00:30", "abc"):
            with self.subTest(tc=tc):
                with self.assertRaises(InvalidParameter):
                    encode_request(Protocol.SONY9PIN, "cue_up_with_data", {"timecode": tc})
        with self.assertRaises(InvalidParameter):
            encode_request(Protocol.SONY9PIN, "cue_up_with_data")

    def test_reply_shapes(self):
        self.assertEqual(SONY_COMMANDS["device_type"].expected_length, 3)
        self.assertEqual(SONY_COMMANDS["ltc"].expected_length, 3)
        self.assertEqual(SONY_COMMANDS["status"].terminators, frozenset())
        self.assertEqual(SONY_COMMANDS["status"].response_timeout, SONY_REPLY_WINDOW)
        self.assertEqual(SONY_COMMANDS["jog_forward_still"].response_timeout, SONY_REPLY_WINDOW)
        self.assertIsNone(SONY_COMMANDS["play"].response_timeout)


class TestLookup(unittest.TestCase):
    def test_name_normalisation(self):
        self.assertIs(lookup(Protocol.FLEXICART, "Move-To-Slot"), FLEXICART_COMMANDS["move_to_slot"])
        self.assertIs(lookup("sony9pin", " PLAY "), SONY_COMMANDS["play"])

    def test_unknown(self):
        with self.assertRaises(InvalidParameter):
            lookup(Protocol.FLEXICART, "play")

    def test_parse_timecode(self):
        self.assertEqual(parse_timecode("23:59:59:29"), (23, 59, 59, 29))
        self.assertEqual(parse_timecode("00:00:10;05"), (0, 0, 10, 5))


if __name__ == "__main__":
    unittest.main()
