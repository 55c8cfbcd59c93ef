"""
Test suite for gift wrap envelopes.

Tests verify:
- Rumor payload survives wrap and unwrap unchanged
- Seal carries the real sender, the gift wrap a fresh throwaway key
- Timestamps are pushed into the past within the configured window
- Anything that cannot be opened yields None
"""

import time

import pytest

from mostro.core import config
from mostro.core.exceptions import CryptoError
from mostro.network.envelope import create_gift_wrap, create_rumor, create_seal, random_past_timestamp, unwrap, wrap
from mostro.network.events import GIFT_WRAP_KIND, SEAL_KIND, NostrEvent, finalize_event
from mostro.security import nip44


class TestWrap:
    def test_round_trip_text(self, alice, bob):
        gift_wrap = wrap("hello bob", alice[0], bob[1])
        unwrapped = unwrap(gift_wrap, bob[0])
        assert unwrapped is not None
        assert unwrapped.rumor.content == "hello bob"
        assert unwrapped.sender == alice[1]
        assert unwrapped.rumor.sig is None

    def test_round_trip_json_payload(self, alice, bob):
        payload = {"order": {"version": 1, "request_id": 3, "action": "release", "id": "o1", "content": None}}
        unwrapped = unwrap(wrap(payload, alice[0], bob[1]), bob[0])
        assert unwrapped.rumor.content == '{"order":{"version":1,"request_id":3,"action":"release","id":"o1","content":null}}'

    def test_outer_layer_hides_sender(self, alice, bob):
        gift_wrap = wrap("x", alice[0], bob[1])
        assert gift_wrap.kind == GIFT_WRAP_KIND
        assert gift_wrap.pubkey != alice[1]
        assert gift_wrap.tags == [["p", bob[1]]]
        unwrapped = unwrap(gift_wrap, bob[0])
        assert unwrapped.seal.kind == SEAL_KIND
        assert unwrapped.seal.pubkey == alice[1]

    def test_throwaway_key_is_fresh_each_time(self, alice, bob):
        authors = {wrap("x", alice[0], bob[1]).pubkey for _ in range(5)}
        assert len(authors) == 5

    def test_timestamps_in_recent_past(self, alice, bob):
        before = int(time.time())
        gift_wrap = wrap("x", alice[0], bob[1])
        seal = unwrap(gift_wrap, bob[0]).seal
        for created_at in (gift_wrap.created_at, seal.created_at):
            assert before - config.GIFT_WRAP_TIME_WINDOW < created_at <= int(time.time())

    def test_random_past_timestamp_bounds(self):
        values = [random_past_timestamp(now=1000, window=10) for _ in range(50)]
        assert all(991 <= value <= 1000 for value in values)
        assert random_past_timestamp(now=1000, window=0) == 1000

    def test_npub_recipient_accepted(self, alice, bob):
        from mostro.security.crypto_utils import encode_public_key

        gift_wrap = wrap("x", alice[0], encode_public_key(bob[1]))
        assert gift_wrap.tags == [["p", bob[1]]]

    def test_bad_recipient(self, alice):
        with pytest.raises(CryptoError):
            wrap("x", alice[0], "not a key")

    def test_rumor_tags_preserved(self, alice, bob):
        gift_wrap = wrap("x", alice[0], bob[1], kind=14, tags=[["subject", "trade"]])
        rumor = unwrap(gift_wrap, bob[0]).rumor
        assert rumor.kind == 14
        assert rumor.tags == [["subject", "trade"]]


class TestUnwrapFailures:
    def test_wrong_recipient(self, alice, bob):
        gift_wrap = wrap("secret", alice[0], bob[1])
        assert unwrap(gift_wrap, alice[0]) is None

    def test_not_a_gift_wrap(self, alice, bob):
        event = finalize_event(NostrEvent(kind=1, content="x"), alice[0])
        assert unwrap(event, bob[0]) is None

    def test_tampered_outer_signature(self, alice, bob):
        gift_wrap = wrap("secret", alice[0], bob[1])
        gift_wrap.created_at += 1
        assert unwrap(gift_wrap, bob[0]) is None

    def test_garbage_content(self, alice, bob):
        gift_wrap = finalize_event(NostrEvent(kind=GIFT_WRAP_KIND, content="garbage", tags=[["p", bob[1]]]), alice[0])
        assert unwrap(gift_wrap, bob[0]) is None

    def test_seal_author_must_match_rumor(self, alice, bob, mostro_keys):
        # rumor claims to come from the daemon, seal is signed by alice
        rumor = create_rumor("forged", mostro_keys[0])
        seal = create_seal(rumor, alice[0], bob[1])
        assert unwrap(create_gift_wrap(seal, bob[1]), bob[0]) is None

    def test_unsigned_seal_rejected(self, alice, bob):
        rumor = create_rumor("x", alice[0])
        seal = NostrEvent(
            kind=SEAL_KIND,
            content=nip44.encrypt_message(rumor.to_json(), alice[0], bob[1]),
            created_at=1,
            pubkey=alice[1],
        )
        assert unwrap(create_gift_wrap(seal, bob[1]), bob[0]) is None
