import pytest

from flasharb.core.amm_math import (
    apply_bps,
    constant_product_amount_out,
    conservative_amount_out_estimate,
    price_difference_pct,
    rescale,
    stable_amount_out_estimate,
    weighted_amount_out_estimate,
)
from flasharb.core.cache import TTLCache
from flasharb.core.errors import (
    AuthorizationFailure,
    ChainRevert,
    RevertReason,
    SubmissionFailure,
    ArbitrageError,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_constant_product_matches_router_formula():
    """Fee comes off the input before the x*y=k step."""
    amount_out = constant_product_amount_out(10 ** 18, 100 * 10 ** 18, 200 * 10 ** 18)

    expected = (10 ** 18 * 9970 * 200 * 10 ** 18) // (100 * 10 ** 18 * 10000 + 10 ** 18 * 9970)
    assert amount_out == expected
    assert amount_out < 2 * 10 ** 18


def test_constant_product_degenerate_inputs():
    assert constant_product_amount_out(0, 100, 100) == 0
    assert constant_product_amount_out(10, 0, 100) == 0
    assert constant_product_amount_out(10, 100, 0) == 0


def test_output_grows_with_input():
    outputs = [constant_product_amount_out(x * 10 ** 17, 10 ** 21, 10 ** 21) for x in range(1, 20)]
    assert outputs == sorted(outputs)


def test_rescale_between_decimals():
    assert rescale(10 ** 18, 18, 6) == 10 ** 6
    assert rescale(10 ** 6, 6, 18) == 10 ** 18
    assert rescale(123, 18, 18) == 123


def test_estimates():
    assert apply_bps(10000, 30) == 9970
    assert weighted_amount_out_estimate(100, 80, 20, 0) == 25
    assert weighted_amount_out_estimate(100, 0, 20, 0) == 0
    assert stable_amount_out_estimate(10 ** 18, 4, 18, 6) == 999600
    assert conservative_amount_out_estimate(1000) == 900


def test_price_difference_pct():
    assert price_difference_pct(10 ** 18, 105 * 10 ** 16) == 5.0
    assert price_difference_pct(10 ** 18, 10 ** 18) == 0.0
    assert price_difference_pct(0, 10) == 0.0


def test_cache_expires_with_injected_clock():
    clock = FakeClock()
    cache = TTLCache(ttl=60, clock=clock)
    cache.set("reserves", (1, 2))

    clock.now += 59
    assert cache.get("reserves") == (1, 2)

    clock.now += 1
    assert cache.get("reserves") is None
    assert "reserves" not in cache


def test_cache_without_ttl_keeps_entries():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("pair", None)

    clock.now += 10 ** 6
    assert "pair" in cache
    assert cache.get("pair", "missing") is None

    cache.invalidate("pair")
    assert "pair" not in cache


def test_cache_rejects_bad_ttl():
    with pytest.raises(ValueError):
        TTLCache(ttl=0)


@pytest.mark.parametrize("message, reason", [
    ("execution reverted: ARB: insufficient profit", RevertReason.INSUFFICIENT_PROFIT),
    ("ARB: path mismatch", RevertReason.PATH_MISMATCH),
    ("execution reverted: ARB: unauthorized", RevertReason.UNAUTHORIZED),
    ("execution reverted: something else entirely", RevertReason.UNKNOWN),
    ("", RevertReason.UNKNOWN),
    (None, RevertReason.UNKNOWN),
])
def test_revert_reason_lookup(message, reason):
    assert RevertReason.from_message(message) == reason


def test_revert_reason_is_exact_not_substring():
    """Text that merely contains a reason does not classify as it."""
    assert RevertReason.from_message("not ARB: insufficient profit") == RevertReason.UNKNOWN


def test_error_hierarchy():
    revert = ChainRevert(RevertReason.SWAP_FAILED)
    assert revert.message == "ARB: swap failed"
    assert isinstance(revert, ArbitrageError)

    auth = AuthorizationFailure()
    assert isinstance(auth, ChainRevert)
    assert auth.reason == RevertReason.UNAUTHORIZED

    assert not isinstance(SubmissionFailure("rpc down"), ChainRevert)
