from typing import Any, Callable, Dict, List, Optional
import asyncio
import json
import logging

import aiohttp
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TransactionNotFound

from ..config.chains import FLASHBOTS_RELAYS
from ..core.errors import ChainRevert, RevertReason, SubmissionFailure


class RelayError(SubmissionFailure):
    """The relay rejected a request or could not be reached."""


class FlashbotsRelay:
    """Private bundle submission over the Flashbots JSON-RPC relay.

    Bundles are simulated against a target block first; only a clean
    simulation is sent, once per consecutive block until it lands.
    """

    def __init__(
        self,
        web3: Web3,
        signer: LocalAccount,
        relay_url: str = FLASHBOTS_RELAYS["mainnet"],
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
        timeout: float = 10.0,
        poll_interval: float = 1.0,
        max_polls: int = 30,
        sleep: Callable = asyncio.sleep
    ):
        self.web3 = web3
        self.signer = signer
        self.relay_url = relay_url
        self.session_factory = session_factory
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)
        self._request_id = 0

    def signature_header(self, body: str) -> str:
        """``address:signature`` over the hex keccak of the request body."""
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        signed = self.signer.sign_message(message)
        return f"{self.signer.address}:{Web3.to_hex(signed.signature)}"

    async def _rpc(self, method: str, params: List[Any]) -> Dict:
        self._request_id += 1
        body = json.dumps({
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params
        })
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": self.signature_header(body)
        }

        try:
            async with self.session_factory() as session:
                async with session.post(
                    self.relay_url,
                    data=body,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RelayError(f"{method} failed: {str(e)}") from e

        if "error" in payload:
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RelayError(f"{method} rejected: {message}")
        return payload.get("result") or {}

    def sign_bundle(self, transactions: List[Dict]) -> List[str]:
        return [
            Web3.to_hex(self.signer.sign_transaction(tx).raw_transaction)
            for tx in transactions
        ]

    async def simulate(self, signed_bundle: List[str], block_number: int) -> Dict:
        """eth_callBundle against ``block_number``; a reverting transaction raises ChainRevert."""
        result = await self._rpc("eth_callBundle", [{
            "txs": signed_bundle,
            "blockNumber": hex(block_number),
            "stateBlockNumber": "latest"
        }])

        for tx_result in result.get("results", []):
            if "error" in tx_result or "revert" in tx_result:
                message = tx_result.get("revert") or tx_result.get("error")
                raise ChainRevert(RevertReason.from_message(message), f"Simulation error: {message}")

        self.logger.info(
            f"Bundle simulation succeeded for block {block_number}, "
            f"gas used {result.get('totalGasUsed')}"
        )
        return result

    async def send_bundle(self, signed_bundle: List[str], block_number: int) -> Optional[str]:
        result = await self._rpc("eth_sendBundle", [{
            "txs": signed_bundle,
            "blockNumber": hex(block_number)
        }])
        return result.get("bundleHash")

    async def wait_for_inclusion(self, tx_hash: str, target_block: int) -> Optional[Dict]:
        """Receipt once ``target_block`` is mined, or None if the bundle missed it."""
        for _ in range(self.max_polls):
            if await self.web3.eth.block_number >= target_block:
                break
            await self.sleep(self.poll_interval)
        else:
            return None

        try:
            return await self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    async def submit(
        self,
        signed_bundle: List[str],
        tx_hash: str,
        start_block: int,
        max_blocks: int = 5
    ) -> Optional[Dict]:
        for i in range(max_blocks):
            target = start_block + i
            self.logger.info(
                f"Attempting to include bundle in block {target} (attempt {i + 1}/{max_blocks})"
            )
            try:
                bundle_hash = await self.send_bundle(signed_bundle, target)
            except RelayError as e:
                self.logger.error(f"Error sending bundle for block {target}: {str(e)}")
                continue

            self.logger.info(f"Bundle {bundle_hash} submitted for block {target}")
            receipt = await self.wait_for_inclusion(tx_hash, target)
            if receipt is not None:
                self.logger.info(f"Bundle included in block {receipt['blockNumber']}")
                return receipt

        self.logger.warning(f"Bundle not included after {max_blocks} blocks")
        return None
