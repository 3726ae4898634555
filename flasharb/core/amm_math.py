"""Integer pricing helpers shared by the venue adapters and the local contract model."""

BPS = 10000

# Uniswap V2 style pools charge 0.3%
DEFAULT_CONSTANT_PRODUCT_FEE_BPS = 30

# Last-resort discount for pools whose pricing curve is unknown
CONSERVATIVE_DISCOUNT_BPS = 1000


def apply_bps(amount: int, bps: int) -> int:
    """Return ``amount`` reduced by ``bps`` basis points."""
    return amount * (BPS - bps) // BPS


def constant_product_amount_out(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_bps: int = DEFAULT_CONSTANT_PRODUCT_FEE_BPS
) -> int:
    """x*y=k output for an exact input, fee taken from the input side.

    amountOut = amountIn*(1-fee)*reserveOut / (reserveIn + amountIn*(1-fee))
    """
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0

    amount_in_with_fee = amount_in * (BPS - fee_bps)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * BPS + amount_in_with_fee
    return numerator // denominator


def rescale(amount: int, decimals_in: int, decimals_out: int) -> int:
    """Move an amount between two decimal precisions."""
    if decimals_out >= decimals_in:
        return amount * 10 ** (decimals_out - decimals_in)
    return amount // 10 ** (decimals_in - decimals_out)


def weighted_amount_out_estimate(
    amount_in: int,
    weight_in: int,
    weight_out: int,
    fee_bps: int
) -> int:
    """Closed-form approximation for weighted pools.

    amountOut ~ amountIn * (weightOut / weightIn) * (1 - fee)
    """
    if amount_in <= 0 or weight_in <= 0 or weight_out <= 0:
        return 0
    return apply_bps(amount_in * weight_out // weight_in, fee_bps)


def stable_amount_out_estimate(
    amount_in: int,
    fee_bps: int,
    decimals_in: int = 18,
    decimals_out: int = 18
) -> int:
    """Stable pools trade close to 1:1, so only the fee is taken."""
    if amount_in <= 0:
        return 0
    return apply_bps(rescale(amount_in, decimals_in, decimals_out), fee_bps)


def conservative_amount_out_estimate(amount_in: int) -> int:
    if amount_in <= 0:
        return 0
    return apply_bps(amount_in, CONSERVATIVE_DISCOUNT_BPS)


def price_difference_pct(amount_in: int, amount_out: int) -> float:
    """Round-trip gain as a percentage with basis point precision."""
    if amount_in <= 0:
        return 0.0
    return ((amount_out - amount_in) * BPS // amount_in) / 100
