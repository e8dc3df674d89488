"""Signed, state-changing transactions against the two contracts."""

import asyncio
import logging
from typing import Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound

from ..exceptions import ReceiptTimeout, TransactionFailure
from ..models import TransactionReceipt
from .reader import ChainReader

logger = logging.getLogger(__name__)


class ChainWriter:
    """Submit transactions with the server key and wait for receipts.

    Receipt polling is bounded: at most ``receipt_max_retries`` lookups,
    ``receipt_retry_delay`` seconds apart, optionally capped by an overall
    ``receipt_timeout``. The wait holds no locks and is cancellable.
    """

    def __init__(
        self,
        reader: ChainReader,
        private_key: str,
        receipt_max_retries: int = 10,
        receipt_retry_delay: float = 2.0,
        receipt_timeout: Optional[float] = None,
    ):
        if receipt_max_retries < 1:
            raise ValueError("receipt_max_retries must be at least 1")

        self.reader = reader
        self.account = Account.from_key(private_key)
        self.receipt_max_retries = receipt_max_retries
        self.receipt_retry_delay = receipt_retry_delay
        self.receipt_timeout = receipt_timeout

    @property
    def address(self) -> str:
        return self.account.address

    async def submit(self, contract: str, method: str, args: list, value: int = 0) -> str:
        """Build, sign and send a contract call. Returns the transaction hash.

        Raises:
            TransactionFailure: If the transaction could not be built or sent.
        """
        w3 = self.reader.w3
        fn = getattr(self.reader.contract(contract).functions, method)

        try:
            nonce = await w3.eth.get_transaction_count(self.address, "pending")
            tx = await fn(*args).build_transaction(
                {"from": self.address, "nonce": nonce, "value": int(value)}
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise TransactionFailure(f"{contract}.{method} submission failed: {e}") from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Submitted {contract}.{method}: {tx_hash_hex}")
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        """Poll for a receipt with bounded retries.

        Raises:
            ReceiptTimeout: If no receipt was found in the retry limit or
                the overall timeout expired.
        """
        if self.receipt_timeout is None:
            return await self._poll_receipt(tx_hash)

        try:
            return await asyncio.wait_for(
                self._poll_receipt(tx_hash), timeout=self.receipt_timeout
            )
        except asyncio.TimeoutError:
            raise ReceiptTimeout(
                f"Transaction receipt not found within {self.receipt_timeout}s",
                transaction_hash=tx_hash,
            )

    async def _poll_receipt(self, tx_hash: str) -> TransactionReceipt:
        w3 = self.reader.w3

        for attempt in range(1, self.receipt_max_retries + 1):
            try:
                receipt = await w3.eth.get_transaction_receipt(tx_hash)
                if receipt is not None and receipt.get("status") is not None:
                    return TransactionReceipt(
                        transaction_hash=tx_hash,
                        status=int(receipt["status"]),
                        block_number=receipt.get("blockNumber"),
                        gas_used=receipt.get("gasUsed"),
                    )
            except TransactionNotFound:
                pass
            except Exception as e:
                logger.warning(
                    f"Retry {attempt}/{self.receipt_max_retries} for transaction "
                    f"{tx_hash}: {e}"
                )

            if attempt < self.receipt_max_retries:
                await asyncio.sleep(self.receipt_retry_delay)

        raise ReceiptTimeout(
            f"Transaction receipt not found after {self.receipt_max_retries} retries",
            transaction_hash=tx_hash,
        )
