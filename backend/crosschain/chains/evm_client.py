"""
EVM client for Ethereum, BSC, Base and their testnets.

Every RPC round-trip is bounded by the configured call timeout and every
failure surfaces as ChainClientError.
"""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TimeExhausted
from web3.logs import DISCARD

from ..core.exceptions import ChainClientError, ConfigurationError
from ..core.retry import rpc_retry
from ..core.settings import get_settings
from .protocols import ChainClient

logger = logging.getLogger(__name__)


class EvmChainClient(ChainClient):
    """
    web3.py-backed client for one EVM chain.

    Reads are retried on transient connection errors; writes are submitted
    once and never replayed.
    """

    def __init__(
        self,
        chain: str,
        rpc_url: str,
        chain_id: Optional[int] = None,
        private_key: Optional[str] = None,
        call_timeout: Optional[float] = None,
        receipt_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        gas_buffer: Optional[float] = None,
        w3: Optional[AsyncWeb3] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            chain: Chain identifier
            rpc_url: HTTP RPC endpoint
            chain_id: EIP-155 chain id used when signing
            private_key: Signer key; read-only client when omitted
            call_timeout: Per-call timeout in seconds
            receipt_timeout: Receipt wait timeout in seconds
            poll_interval: Receipt polling interval in seconds
            gas_buffer: Multiplier applied to gas estimates
            w3: Pre-built AsyncWeb3 instance
        """
        settings = get_settings()
        self.chain = chain
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.call_timeout = call_timeout or settings.chain_call_timeout_seconds
        self.receipt_timeout = receipt_timeout or settings.receipt_timeout_seconds
        self.poll_interval = poll_interval or settings.receipt_poll_interval_seconds
        self.gas_buffer = gas_buffer or settings.gas_buffer_multiplier

        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self.call_timeout})
        )
        self._account = Account.from_key(private_key) if private_key else None
        self._submit_lock = asyncio.Lock()

    @property
    def has_signer(self) -> bool:
        return self._account is not None

    @property
    def signer_address(self) -> Optional[str]:
        return self._account.address if self._account else None

    def _contract(self, address: str, abi: Sequence[Dict[str, Any]]):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=list(abi))

    @rpc_retry()
    async def _with_retry(self, factory: Callable[[], Awaitable[Any]]) -> Any:
        return await asyncio.wait_for(factory(), timeout=self.call_timeout)

    async def _read(self, factory: Callable[[], Awaitable[Any]], operation: str) -> Any:
        """Run a read with retry and timeout, wrapping failures."""
        try:
            return await self._with_retry(factory)
        except ChainClientError:
            raise
        except asyncio.TimeoutError as e:
            raise ChainClientError(
                f"{operation} timed out on {self.chain} after {self.call_timeout}s",
                details={"chain": self.chain, "operation": operation},
            ) from e
        except Exception as e:
            raise ChainClientError(
                f"{operation} failed on {self.chain}: {e}",
                details={"chain": self.chain, "operation": operation},
            ) from e

    async def read_balance(self, address: str) -> Decimal:
        balance_wei = await self._read(
            lambda: self.w3.eth.get_balance(Web3.to_checksum_address(address)),
            "get_balance",
        )
        return Decimal(balance_wei) / Decimal(10**18)

    async def get_code(self, address: str) -> bytes:
        code = await self._read(
            lambda: self.w3.eth.get_code(Web3.to_checksum_address(address)),
            "get_code",
        )
        return bytes(code)

    async def call(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        function: str,
        *args: Any,
    ) -> Any:
        contract = self._contract(address, abi)
        return await self._read(
            lambda: getattr(contract.functions, function)(*args).call(),
            f"call {function}",
        )

    async def submit(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        function: str,
        args: Sequence[Any] = (),
        value_wei: int = 0,
    ) -> str:
        if self._account is None:
            raise ConfigurationError(
                f"No signer configured for {self.chain}",
                details={"chain": self.chain},
            )

        contract = self._contract(address, abi)
        fn = getattr(contract.functions, function)(*args)
        sender = self._account.address

        # Serialize submissions so nonces from the same signer never collide
        async with self._submit_lock:
            try:
                estimated = await asyncio.wait_for(
                    fn.estimate_gas({"from": sender, "value": value_wei}),
                    timeout=self.call_timeout,
                )
                nonce = await asyncio.wait_for(
                    self.w3.eth.get_transaction_count(sender, "pending"),
                    timeout=self.call_timeout,
                )
                tx_params: Dict[str, Any] = {
                    "from": sender,
                    "value": value_wei,
                    "gas": int(estimated * self.gas_buffer),
                    "nonce": nonce,
                }
                if self.chain_id is not None:
                    tx_params["chainId"] = self.chain_id

                tx = await asyncio.wait_for(fn.build_transaction(tx_params), timeout=self.call_timeout)
                signed = self._account.sign_transaction(tx)
                tx_hash = await asyncio.wait_for(
                    self.w3.eth.send_raw_transaction(signed.raw_transaction),
                    timeout=self.call_timeout,
                )
            except asyncio.TimeoutError as e:
                raise ChainClientError(
                    f"{function} submission timed out on {self.chain}",
                    details={"chain": self.chain, "function": function},
                ) from e
            except Exception as e:
                raise ChainClientError(
                    f"{function} submission failed on {self.chain}: {e}",
                    details={"chain": self.chain, "function": function},
                ) from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.info(
            f"Submitted {function} on {self.chain}",
            extra={"chain": self.chain, "tx_hash": tx_hex},
        )
        return tx_hex

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout,
                poll_latency=self.poll_interval,
            )
        except TimeExhausted as e:
            raise ChainClientError(
                f"Receipt for {tx_hash} not available on {self.chain} "
                f"after {self.receipt_timeout}s",
                details={"chain": self.chain, "tx_hash": tx_hash},
            ) from e
        except Exception as e:
            raise ChainClientError(
                f"Receipt wait failed on {self.chain}: {e}",
                details={"chain": self.chain, "tx_hash": tx_hash},
            ) from e

        if receipt.get("status") == 0:
            raise ChainClientError(
                f"Transaction {tx_hash} reverted on {self.chain}",
                details={"chain": self.chain, "tx_hash": tx_hash},
            )
        return dict(receipt)

    async def decode_events(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        event_name: str,
        receipt: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        contract = self._contract(address, abi)
        try:
            events = getattr(contract.events, event_name)().process_receipt(receipt, errors=DISCARD)
        except Exception as e:
            raise ChainClientError(
                f"Failed to decode {event_name} on {self.chain}: {e}",
                details={"chain": self.chain, "event": event_name},
            ) from e
        return [_event_to_dict(event) for event in events]

    async def query_events(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        event_name: str,
        from_block: int,
        to_block: Any = "latest",
    ) -> List[Dict[str, Any]]:
        contract = self._contract(address, abi)
        event = getattr(contract.events, event_name)
        logs = await self._read(
            lambda: event.get_logs(from_block=from_block, to_block=to_block),
            f"get_logs {event_name}",
        )
        return [_event_to_dict(entry) for entry in logs]

    async def close(self) -> None:
        """Release the underlying HTTP session."""
        provider = self.w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()


def _event_to_dict(event: Any) -> Dict[str, Any]:
    return {
        "event": event["event"],
        "args": dict(event["args"]),
        "transactionHash": Web3.to_hex(event["transactionHash"]),
        "blockNumber": event["blockNumber"],
    }


__all__ = ["EvmChainClient"]
