import unittest
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from tutoring_rtc.negotiator.ice_buffer import PendingIceBuffer
from tutoring_rtc.negotiator.signals import (
    AnswerSignal,
    IceCandidatePayload,
    IceCandidateSignal,
    OfferSignal,
    parse_signal,
    parse_signals,
)
from tutoring_rtc.negotiator.util import candidate_from_payload, elapsed_minutes

CANDIDATE = "candidate:842163049 1 udp 1677729535 203.0.113.7 46154 typ srflx raddr 10.0.0.2 rport 46154 generation 0"


class TestParseSignal(unittest.TestCase):
    def test_offer(self):
        signal = parse_signal({"type": "offer", "sdp": "v=0", "sessionId": "abc123", "sender": "volunteer"})
        self.assertIsInstance(signal, OfferSignal)
        self.assertEqual(signal.session_id, "abc123")
        self.assertEqual(signal.sender, "volunteer")

    def test_nested_description(self):
        signal = parse_signal({"type": "answer", "answer": {"type": "answer", "sdp": "v=0 nested"}, "sessionId": "s"})
        self.assertIsInstance(signal, AnswerSignal)
        self.assertEqual(signal.sdp, "v=0 nested")

    def test_ice_candidate(self):
        signal = parse_signal({
            "type": "ice-candidate",
            "sessionId": "s",
            "candidate": {"candidate": CANDIDATE, "sdpMid": "0", "sdpMLineIndex": 0},
        })
        self.assertIsInstance(signal, IceCandidateSignal)
        self.assertEqual(signal.candidate.sdp_mid, "0")

    def test_rejects_bad_input(self):
        for data in (
            {"type": "offer", "sessionId": "s"},
            {"type": "hangup", "sessionId": "s"},
            {"type": "ice-candidate", "sessionId": "s"},
            {"sdp": "v=0", "sessionId": "s"},
        ):
            with self.assertRaises(ValidationError, msg=data):
                parse_signal(data)

    def test_wire_form_uses_camel_case(self):
        wire = IceCandidateSignal(
            session_id="s",
            candidate=IceCandidatePayload(candidate=CANDIDATE, sdp_mid="1", sdp_mline_index=1),
        ).to_wire()
        self.assertEqual(wire, {
            "type": "ice-candidate",
            "sessionId": "s",
            "candidate": {"candidate": CANDIDATE, "sdpMid": "1", "sdpMLineIndex": 1},
        })
        self.assertEqual(parse_signals([wire])[0].candidate.sdp_mline_index, 1)


class TestCandidateFromPayload(unittest.TestCase):
    def test_browser_candidate_line(self):
        candidate = candidate_from_payload(IceCandidatePayload(candidate=CANDIDATE, sdpMid="0", sdpMLineIndex=0))
        self.assertEqual(candidate.ip, "203.0.113.7")
        self.assertEqual(candidate.port, 46154)
        self.assertEqual(candidate.type, "srflx")
        self.assertEqual(candidate.relatedAddress, "10.0.0.2")
        self.assertEqual((candidate.sdpMid, candidate.sdpMLineIndex), ("0", 0))

    def test_attribute_prefix_is_accepted(self):
        candidate = candidate_from_payload(IceCandidatePayload(candidate="a=" + CANDIDATE))
        self.assertEqual(candidate.foundation, "842163049")

    def test_end_of_candidates(self):
        self.assertIsNone(candidate_from_payload(IceCandidatePayload(candidate="")))

    def test_garbage(self):
        with self.assertRaises(ValueError):
            candidate_from_payload(IceCandidatePayload(candidate="candidate:nonsense"))


class TestElapsedMinutes(unittest.TestCase):
    def test_whole_minutes(self):
        start = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        self.assertEqual(elapsed_minutes(start, start + timedelta(minutes=12, seconds=59)), 12)

    def test_naive_start_is_utc_and_future_is_zero(self):
        now = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        self.assertEqual(elapsed_minutes(datetime(2024, 5, 1, 9, 30), now), 30)
        self.assertEqual(elapsed_minutes(now + timedelta(minutes=5), now), 0)


class TestPendingIceBuffer(unittest.IsolatedAsyncioTestCase):
    async def test_flush_applies_in_order_exactly_once(self):
        buffer = PendingIceBuffer()
        for n in range(3):
            buffer.push(n)
        applied = []

        async def apply(candidate):
            applied.append(candidate)

        self.assertEqual(len(buffer), 3)
        self.assertEqual(await buffer.flush(apply), 3)
        self.assertEqual(await buffer.flush(apply), 0)
        self.assertEqual(applied, [0, 1, 2])
        self.assertEqual(len(buffer), 0)

    async def test_push_during_flush_waits_for_next_flush(self):
        buffer = PendingIceBuffer()
        buffer.push("a")
        applied = []

        async def apply(candidate):
            applied.append(candidate)
            if candidate == "a":
                buffer.push("b")

        await buffer.flush(apply)
        self.assertEqual(applied, ["a"])
        self.assertEqual(buffer.drain(), ["b"])

    def test_clear(self):
        buffer = PendingIceBuffer()
        buffer.push(1)
        buffer.clear()
        self.assertEqual(len(buffer), 0)
