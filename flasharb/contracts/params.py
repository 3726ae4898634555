"""Callback parameter codec.

Layout: ``(uint8 tag, address[] path, uint8[] venues, uint24[] fees)``. The
tag is always present, so the callback never has to guess the layout.
"""
from typing import Sequence, Tuple
from dataclasses import dataclass

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from ..core.errors import ChainRevert, RevertReason
from ..models.opportunity import RouteLayout

PARAMS_TYPES = ["uint8", "address[]", "uint8[]", "uint24[]"]


@dataclass(frozen=True)
class CallbackParams:
    layout: RouteLayout
    path: Tuple[str, ...]
    venues: Tuple[int, ...]
    fees: Tuple[int, ...] = ()


def encode_params(
    layout: RouteLayout,
    path: Sequence[str],
    venues: Sequence[int],
    fees: Sequence[int] = ()
) -> bytes:
    return encode(
        PARAMS_TYPES,
        [
            int(layout),
            [Web3.to_checksum_address(token) for token in path],
            list(venues),
            list(fees)
        ]
    )


def decode_params(data: bytes) -> CallbackParams:
    """Decode callback data; malformed data or an unknown tag reverts."""
    try:
        tag, path, venues, fees = decode(PARAMS_TYPES, data)
    except (DecodingError, ValueError, TypeError) as e:
        raise ChainRevert(RevertReason.INVALID_PATH) from e

    try:
        layout = RouteLayout(tag)
    except ValueError as e:
        raise ChainRevert(RevertReason.INVALID_PATH) from e

    return CallbackParams(
        layout=layout,
        path=tuple(path),
        venues=tuple(venues),
        fees=tuple(fees)
    )
