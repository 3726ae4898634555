from .client import ArbitrageContractClient, FLASH_ARBITRAGE_ABI
from .flash_arbitrage import ContractState, FlashArbitrageContract, RouterKind, resolve_fee_tier
from .ledger import Event, Ledger, LocalChain, LocalContract, Receipt
from .params import CallbackParams, decode_params, encode_params
from .venues import ConcentratedLiquidityRouter, ConstantProductRouter, LendingPool
