"""EVM chain access: ERC-20 metadata lookup and Transfer log streams."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Deque, Dict, Mapping, Optional

from aiohttp import ClientError, ClientTimeout
from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from buytracker.errors import (
    SubscriptionError,
    TokenResolutionError,
    TransientIntegrationError,
)
from buytracker.models import TokenMetadata, TransferEvent
from buytracker.utils.logging import get_logger

logger = get_logger(__name__)

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]

# Networks whose block headers carry PoA extra data
POA_NETWORKS = {"bnb"}

RPC_TIMEOUT_SECONDS = 15
_NETWORK_ERRORS = (ClientError, asyncio.TimeoutError, OSError)


class ChainClient:
    """One ``AsyncWeb3`` HTTP connection per configured network."""

    def __init__(
        self,
        rpc_urls: Mapping[str, str],
        poll_interval: float = 5.0,
        max_block_range: int = 500,
    ) -> None:
        self.poll_interval = poll_interval
        self.max_block_range = max_block_range
        self._web3: Dict[str, AsyncWeb3] = {}
        for network, url in rpc_urls.items():
            w3 = AsyncWeb3(
                AsyncWeb3.AsyncHTTPProvider(
                    url,
                    request_kwargs={"timeout": ClientTimeout(total=RPC_TIMEOUT_SECONDS)},
                )
            )
            if network in POA_NETWORKS:
                w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            self._web3[network] = w3

    @property
    def networks(self) -> list[str]:
        return list(self._web3)

    def web3_for(self, network: str) -> AsyncWeb3:
        w3 = self._web3.get(network)
        if w3 is None:
            raise KeyError(f"No RPC endpoint configured for network '{network}'")
        return w3

    async def check_connectivity(self) -> Dict[str, int]:
        """Fetch the head block of every network; any failure is fatal at boot."""
        heads: Dict[str, int] = {}
        for network, w3 in self._web3.items():
            try:
                heads[network] = await w3.eth.get_block_number()
            except (Web3Exception, *_NETWORK_ERRORS) as exc:
                raise RuntimeError(
                    f"RPC endpoint for '{network}' is unreachable: {exc}"
                ) from exc
            logger.info("rpc_connected", network=network, head=heads[network])
        return heads

    async def resolve_token(self, address: str, network: str) -> TokenMetadata:
        """Look up ERC-20 name, symbol and decimals.

        Raises:
            TokenResolutionError: malformed address, or the contract does not
                answer the ERC-20 metadata calls.
            TransientIntegrationError: the RPC endpoint failed or timed out.
        """
        w3 = self.web3_for(network)
        candidate = (address or "").strip()
        if not AsyncWeb3.is_address(candidate):
            raise TokenResolutionError(
                "Not a valid contract address", {"address": candidate}
            )

        contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(candidate), abi=ERC20_ABI
        )
        try:
            name, symbol, decimals = await asyncio.gather(
                contract.functions.name().call(),
                contract.functions.symbol().call(),
                contract.functions.decimals().call(),
            )
        except (ContractLogicError, BadFunctionCallOutput) as exc:
            raise TokenResolutionError(
                "Contract does not implement ERC-20 metadata",
                {"address": candidate, "network": network},
            ) from exc
        except (Web3Exception, *_NETWORK_ERRORS) as exc:
            logger.warning(
                "token_resolution_rpc_failed",
                address=candidate,
                network=network,
                error=str(exc),
            )
            raise TransientIntegrationError(
                "RPC request failed", {"address": candidate, "network": network}
            ) from exc

        if not isinstance(decimals, int) or not 0 <= decimals <= 255:
            raise TokenResolutionError(
                "Token reported invalid decimals", {"address": candidate}
            )
        return TokenMetadata(name=str(name), symbol=str(symbol), decimal_places=decimals)

    async def open_transfer_stream(self, address: str, network: str) -> "TransferStream":
        """Start following ``Transfer`` logs of ``address`` from the current head.

        Raises:
            SubscriptionError: unknown network, malformed address or
                unreachable RPC endpoint.
        """
        try:
            w3 = self.web3_for(network)
        except KeyError as exc:
            raise SubscriptionError(str(exc), {"network": network}) from exc
        if not AsyncWeb3.is_address(address):
            raise SubscriptionError("Not a valid contract address", {"address": address})
        try:
            head = await w3.eth.get_block_number()
        except (Web3Exception, *_NETWORK_ERRORS) as exc:
            raise SubscriptionError(
                f"RPC endpoint for '{network}' is unreachable",
                {"network": network, "address": address},
            ) from exc

        return TransferStream(
            w3,
            AsyncWeb3.to_checksum_address(address),
            network=network,
            start_block=head + 1,
            poll_interval=self.poll_interval,
            max_block_range=self.max_block_range,
        )


class TransferStream:
    """Lazy, infinite async iterator over decoded ``Transfer`` events.

    Polls ``eth_getLogs`` in bounded block ranges. A failed poll is logged and
    retried on the next interval without skipping blocks. ``aclose`` ends the
    iteration.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        network: str,
        start_block: int,
        poll_interval: float,
        max_block_range: int,
    ) -> None:
        self.w3 = w3
        self.address = address
        self.network = network
        self.next_block = start_block
        self.poll_interval = poll_interval
        self.max_block_range = max_block_range
        self._pending: Deque[TransferEvent] = deque()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "TransferStream":
        return self

    async def __anext__(self) -> TransferEvent:
        while not self._pending:
            if self._closed:
                raise StopAsyncIteration
            fetched = await self._poll()
            if not fetched and not self._closed:
                await asyncio.sleep(self.poll_interval)
        if self._closed:
            raise StopAsyncIteration
        return self._pending.popleft()

    async def aclose(self) -> None:
        self._closed = True
        self._pending.clear()

    async def _poll(self) -> bool:
        try:
            head = await self.w3.eth.get_block_number()
            if head < self.next_block:
                return False
            to_block = min(head, self.next_block + self.max_block_range - 1)
            logs = await self.w3.eth.get_logs(
                {
                    "address": self.address,
                    "topics": [TRANSFER_TOPIC],
                    "fromBlock": self.next_block,
                    "toBlock": to_block,
                }
            )
        except (Web3Exception, *_NETWORK_ERRORS) as exc:
            logger.warning(
                "transfer_poll_failed",
                network=self.network,
                address=self.address,
                from_block=self.next_block,
                error=str(exc),
            )
            return False

        self.next_block = to_block + 1
        for entry in logs:
            event = decode_transfer_log(entry)
            if event is not None:
                self._pending.append(event)
        return bool(self._pending)


def decode_transfer_log(entry: Mapping[str, Any]) -> Optional[TransferEvent]:
    """Decode a raw ``Transfer(address,address,uint256)`` log.

    Returns ``None`` for logs that do not have the ERC-20 shape (ERC-721
    transfers carry the token id as a third topic and an empty data field).
    """
    topics = entry.get("topics") or []
    if len(topics) != 3:
        return None
    if "0x" + _to_bytes(topics[0]).hex() != TRANSFER_TOPIC:
        return None
    data = _to_bytes(entry.get("data") or b"")
    if len(data) < 32:
        return None

    return TransferEvent(
        from_address="0x" + _to_bytes(topics[1])[-20:].hex(),
        to_address="0x" + _to_bytes(topics[2])[-20:].hex(),
        amount=int.from_bytes(data[:32], "big"),
        tx_hash="0x" + _to_bytes(entry.get("transactionHash") or b"").hex(),
        block_number=int(entry.get("blockNumber") or 0),
        log_index=int(entry.get("logIndex") or 0),
    )


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        stripped = value[2:] if value.startswith(("0x", "0X")) else value
        return bytes.fromhex(stripped)
    return bytes(value)
