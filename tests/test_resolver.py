import unittest

from approval_risk.approvals import Approval
from approval_risk.resolver import (
    distinct_contracts,
    resolve_allowances,
    resolve_balances,
    resolve_decimals,
    resolve_exchange_rates,
)
from fakes import (
    OWNER,
    ROUTER,
    SPENDER_1,
    SPENDER_2,
    TOKEN_A,
    TOKEN_B,
    WETH,
    FakeChain,
    FakeRPC,
)


def _approvals():
    return [
        Approval(contract=TOKEN_A, spender=SPENDER_1, amount=100),
        Approval(contract=TOKEN_A, spender=SPENDER_2, amount=200),
        Approval(contract=TOKEN_B, spender=SPENDER_1, amount=300),
    ]


class TestAllowancePass(unittest.TestCase):
    def test_failure_is_isolated(self):
        chain = FakeChain(allowances={(TOKEN_A, SPENDER_1): 40, (TOKEN_B, SPENDER_1): 0})
        rpc = FakeRPC(responder=chain)
        approvals = _approvals()
        resolve_allowances(rpc, OWNER, approvals, 77)

        ok_a, failed, ok_b = approvals
        self.assertEqual(ok_a.allowance, 40)
        self.assertFalse(ok_a.allowance_error)
        self.assertIsNone(failed.allowance)
        self.assertTrue(failed.allowance_error)
        self.assertEqual(ok_b.allowance, 0)
        self.assertEqual(failed.as_dict()["allowanceError"], True)
        self.assertNotIn("allowance", failed.as_dict())

    def test_single_batch_at_pinned_block(self):
        rpc = FakeRPC(responder=FakeChain())
        resolve_allowances(rpc, OWNER, _approvals(), 77)
        self.assertEqual(len(rpc.batches), 1)
        self.assertEqual(len(rpc.batches[0]), 3)
        for method, params in rpc.batches[0]:
            self.assertEqual(method, "eth_call")
            self.assertEqual(params[1], hex(77))

    def test_empty_set_makes_no_call(self):
        rpc = FakeRPC()
        resolve_allowances(rpc, OWNER, [], 77)
        self.assertEqual(rpc.batches, [])

    def test_undecodable_result_counts_as_error(self):
        rpc = FakeRPC(responder=lambda to, data, block: "0x")
        approvals = _approvals()[:1]
        resolve_allowances(rpc, OWNER, approvals, 77)
        self.assertTrue(approvals[0].allowance_error)


class TestBalancePass(unittest.TestCase):
    def test_failed_balance_is_zero(self):
        rpc = FakeRPC(responder=FakeChain(balances={TOKEN_A: 5}))
        approvals = _approvals()
        resolve_balances(rpc, OWNER, approvals, 1)
        self.assertEqual([a.balance for a in approvals], [5, 5, 0])


class TestDecimalsAndRates(unittest.TestCase):
    def test_decimals_once_per_contract(self):
        rpc = FakeRPC(responder=FakeChain(decimals={TOKEN_A: 6}))
        decimals = resolve_decimals(rpc, distinct_contracts(_approvals()), 1)
        self.assertEqual(decimals, {TOKEN_A: 6, TOKEN_B: 18})
        self.assertEqual(len(rpc.batches[0]), 2)

    def test_oversized_decimals_fall_back(self):
        """A decimals() of 100 would need a unit above uint256; use 18 instead."""
        chain = FakeChain(decimals={TOKEN_A: 100, TOKEN_B: 6}, quotes={TOKEN_A: 10 ** 18, TOKEN_B: 10 ** 18})
        rpc = FakeRPC(responder=chain)
        decimals = resolve_decimals(rpc, [TOKEN_A, TOKEN_B], 1)
        self.assertEqual(decimals, {TOKEN_A: 18, TOKEN_B: 6})
        rates = resolve_exchange_rates(rpc, [TOKEN_A, TOKEN_B], decimals, 1, router=ROUTER, weth=WETH)
        self.assertEqual(chain.amounts_in[TOKEN_A], 10 ** 18)
        self.assertGreater(rates[TOKEN_A], 0)
        self.assertGreater(rates[TOKEN_B], 0)

    def test_unencodable_quote_only_fails_its_token(self):
        chain = FakeChain(quotes={TOKEN_B: 10 ** 18})
        rpc = FakeRPC(responder=chain)
        rates = resolve_exchange_rates(
            rpc, [TOKEN_A, TOKEN_B], {TOKEN_A: 100, TOKEN_B: 18}, 1, router=ROUTER, weth=WETH
        )
        self.assertEqual(rates[TOKEN_A], 0.0)
        self.assertEqual(rates[TOKEN_B], 1 / 10 ** 18)
        self.assertEqual(len(rpc.batches[0]), 1)

    def test_decimals_fallback_feeds_rate_request(self):
        chain = FakeChain(decimals={TOKEN_A: 6}, quotes={TOKEN_A: 10 ** 15, TOKEN_B: 2 * 10 ** 18})
        rpc = FakeRPC(responder=chain)
        contracts = [TOKEN_A, TOKEN_B]
        decimals = resolve_decimals(rpc, contracts, 1)
        rates = resolve_exchange_rates(rpc, contracts, decimals, 1, router=ROUTER, weth=WETH)

        self.assertEqual(chain.amounts_in[TOKEN_A], 10 ** 6)
        self.assertEqual(chain.amounts_in[TOKEN_B], 10 ** 18)
        self.assertEqual(rates[TOKEN_A], 10 ** 15 / 10 ** 24)
        self.assertEqual(rates[TOKEN_B], 2 / 10 ** 18)

    def test_failed_quote_is_zero(self):
        rpc = FakeRPC(responder=FakeChain())
        rates = resolve_exchange_rates(rpc, [TOKEN_A], {TOKEN_A: 18}, 1, router=ROUTER, weth=WETH)
        self.assertEqual(rates, {TOKEN_A: 0.0})

    def test_weth_is_not_quoted(self):
        rpc = FakeRPC(responder=FakeChain())
        rates = resolve_exchange_rates(rpc, [WETH], {WETH: 18}, 1, router=ROUTER, weth=WETH)
        self.assertEqual(rates, {WETH: 1 / 10 ** 18})
        self.assertEqual(rpc.batches, [])


if __name__ == "__main__":
    unittest.main()
