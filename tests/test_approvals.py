"""Unit tests for Approval log reconstruction.

No blockchain calls are made: logs are served by an in-memory fake client.
"""

import unittest

from approval_risk.abi import NULL_ADDRESS
from approval_risk.approvals import (
    ProtocolError,
    decode_approval_log,
    get_approval_logs,
    reconstruct_approvals,
)
from fakes import OWNER, SPENDER_1, SPENDER_2, TOKEN_A, TOKEN_B, FakeRPC, make_log


class TestReconstruction(unittest.TestCase):
    def test_latest_event_wins(self):
        """Two approvals for the same token and spender keep only the later amount."""
        rpc = FakeRPC(logs=[
            make_log(TOKEN_A, SPENDER_1, 100, block=10),
            make_log(TOKEN_A, SPENDER_1, 50, block=20),
        ])
        approvals = reconstruct_approvals(rpc, OWNER, 100)
        self.assertEqual(len(approvals), 1)
        self.assertEqual(
            approvals[0].as_dict(),
            {"contract": TOKEN_A, "spender": SPENDER_1, "amount": "50"},
        )

    def test_out_of_order_logs(self):
        """Log order from the client does not change the result."""
        logs = [
            make_log(TOKEN_A, SPENDER_1, 3, block=20, tx_index=1, log_index=0),
            make_log(TOKEN_A, SPENDER_1, 1, block=20, tx_index=0, log_index=5),
            make_log(TOKEN_A, SPENDER_1, 2, block=20, tx_index=1, log_index=2),
            make_log(TOKEN_B, SPENDER_1, 7, block=5),
        ]
        forward = reconstruct_approvals(FakeRPC(logs=logs), OWNER, 100)
        backward = reconstruct_approvals(FakeRPC(logs=logs[::-1]), OWNER, 100)
        by_key = lambda approvals: {a.key: a.amount for a in approvals}
        self.assertEqual(by_key(forward), by_key(backward))
        self.assertEqual(by_key(forward)[(TOKEN_A, SPENDER_1)], 2)

    def test_separate_keys(self):
        rpc = FakeRPC(logs=[
            make_log(TOKEN_A, SPENDER_1, 1, block=1),
            make_log(TOKEN_A, SPENDER_2, 2, block=2),
            make_log(TOKEN_B, SPENDER_1, 3, block=3),
        ])
        approvals = reconstruct_approvals(rpc, OWNER, 100)
        self.assertEqual(
            sorted((a.contract, a.spender, a.amount) for a in approvals),
            [(TOKEN_A, SPENDER_1, 1), (TOKEN_A, SPENDER_2, 2), (TOKEN_B, SPENDER_1, 3)],
        )

    def test_null_spender_excluded(self):
        rpc = FakeRPC(logs=[
            make_log(TOKEN_A, NULL_ADDRESS, 10, block=1),
            make_log(TOKEN_A, SPENDER_1, 10, block=2),
        ])
        approvals = reconstruct_approvals(rpc, OWNER, 100)
        self.assertEqual([a.spender for a in approvals], [SPENDER_1])

    def test_zero_amount_kept(self):
        rpc = FakeRPC(logs=[
            make_log(TOKEN_A, SPENDER_1, 10, block=1),
            make_log(TOKEN_A, SPENDER_1, 0, block=2),
        ])
        approvals = reconstruct_approvals(rpc, OWNER, 100)
        self.assertEqual(len(approvals), 1)
        self.assertEqual(approvals[0].amount, 0)

    def test_amount_beyond_64_bits(self):
        unlimited = 2 ** 256 - 1
        rpc = FakeRPC(logs=[make_log(TOKEN_A, SPENDER_1, unlimited, block=1)])
        approvals = reconstruct_approvals(rpc, OWNER, 100)
        self.assertEqual(approvals[0].as_dict()["amount"], str(unlimited))

    def test_query_is_pinned(self):
        rpc = FakeRPC(logs=[])
        reconstruct_approvals(rpc, OWNER.upper().replace("0X", "0x"), 1234)
        (log_filter,) = rpc.log_filters
        self.assertEqual(log_filter["fromBlock"], "0x1")
        self.assertEqual(log_filter["toBlock"], hex(1234))
        self.assertEqual(log_filter["topics"][1], "0x" + "0" * 24 + OWNER[2:])


class TestProtocolViolations(unittest.TestCase):
    def test_owner_mismatch(self):
        other = "0x" + "9" * 40
        rpc = FakeRPC(logs=[make_log(TOKEN_A, SPENDER_1, 1, block=1, owner=other)])
        with self.assertRaises(ProtocolError):
            reconstruct_approvals(rpc, OWNER, 100)

    def test_bad_topic_padding(self):
        log = make_log(TOKEN_A, SPENDER_1, 1, block=1)
        log["topics"][2] = "0x" + "f" * 64
        with self.assertRaises(ProtocolError):
            decode_approval_log(log)

    def test_non_approval_topic(self):
        log = make_log(TOKEN_A, SPENDER_1, 1, block=1)
        log["topics"][0] = "0x" + "1" * 64
        with self.assertRaises(ProtocolError):
            decode_approval_log(log)

    def test_missing_topic(self):
        log = make_log(TOKEN_A, SPENDER_1, 1, block=1)
        log["topics"] = log["topics"][:2]
        with self.assertRaises(ProtocolError):
            decode_approval_log(log)


class SplittingRPC(FakeRPC):
    """Refuses log queries spanning more than `max_span` blocks."""

    def __init__(self, max_span, **kwargs):
        super().__init__(**kwargs)
        self.max_span = max_span

    def get_logs(self, log_filter):
        self.log_filters.append(log_filter)
        start, end = int(log_filter["fromBlock"], 16), int(log_filter["toBlock"], 16)
        if end - start + 1 > self.max_span:
            raise RuntimeError("RPC error -32005: query returned more than 10000 results")
        return [
            log for log in self.logs if start <= int(log["blockNumber"], 16) <= end
        ]


class TestLogRetrieval(unittest.TestCase):
    def test_range_split_on_provider_limit(self):
        logs = [make_log(TOKEN_A, SPENDER_1, b, block=b) for b in (3, 40, 77, 100)]
        rpc = SplittingRPC(max_span=30, logs=logs)
        fetched = get_approval_logs(rpc, OWNER, 1, 100)
        self.assertEqual(len(fetched), 4)
        self.assertGreater(len(rpc.log_filters), 1)

    def test_rate_limit_is_not_split(self):
        class RateLimitedRPC(FakeRPC):
            def get_logs(self, log_filter):
                self.log_filters.append(log_filter)
                raise RuntimeError("RPC HTTP 429: Too Many Requests")

        rpc = RateLimitedRPC()
        with self.assertRaises(RuntimeError):
            get_approval_logs(rpc, OWNER, 1, 1000)
        self.assertEqual(len(rpc.log_filters), 1)

    def test_other_errors_propagate(self):
        class BrokenRPC(FakeRPC):
            def get_logs(self, log_filter):
                raise RuntimeError("RPC HTTP 502: bad gateway")

        with self.assertRaises(RuntimeError):
            get_approval_logs(BrokenRPC(), OWNER, 1, 100)


if __name__ == "__main__":
    unittest.main()
