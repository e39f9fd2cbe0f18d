"""$ZOMBIE token payments on Base: cure payment verification and reward payouts."""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol

from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.logs import DISCARD

from .config import BASE_RPC_URL, EXTERNAL_TIMEOUT, TOKEN_DECIMALS, TRANSFER_GAS_LIMIT
from .errors import ExternalServiceFailure, InsufficientFunds, PayoutFailed, PayoutUnconfirmed, ValidationError


logger = logging.getLogger(__name__)

ERC20_ABI: List[Dict[str, Any]] = [
    {
        "constant": False,
        "inputs": [{"name": "_to", "type": "address"}, {"name": "_value", "type": "uint256"}],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    },
]


class PaymentVerifier(Protocol):
    async def verify(self, proof: str, expected_amount: int) -> bool: ...


class TokenPayoutService(Protocol):
    async def payout(self, address: str, amount: int) -> str: ...


def to_base_units(amount, decimals: int = TOKEN_DECIMALS) -> int:
    """Whole tokens to the token's smallest unit."""
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


class _TokenContract:
    """Shared web3 setup for the $ZOMBIE ERC-20 contract."""

    def __init__(self, token_address: str, rpc_url: str = BASE_RPC_URL,
                 rpc_timeout: float = EXTERNAL_TIMEOUT, decimals: int = TOKEN_DECIMALS,
                 w3: Optional[Web3] = None):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": rpc_timeout}))
        self.token_address = Web3.to_checksum_address(token_address)
        self.decimals = decimals
        self.contract = self.w3.eth.contract(address=self.token_address, abi=ERC20_ABI)


class Web3PaymentVerifier(_TokenContract):
    """Checks that a transaction moved exactly the expected amount of $ZOMBIE to the treasury."""

    def __init__(self, token_address: str, treasury_address: str, **kwargs):
        super().__init__(token_address, **kwargs)
        self.treasury_address = Web3.to_checksum_address(treasury_address)

    async def verify(self, proof: str, expected_amount: int) -> bool:
        expected = to_base_units(expected_amount, self.decimals)

        def _verify() -> bool:
            try:
                receipt = self.w3.eth.get_transaction_receipt(proof)
            except TransactionNotFound:
                logger.info(f"Cure payment {proof} not found on chain")
                return False
            if receipt["status"] != 1:
                logger.info(f"Cure payment {proof} reverted")
                return False
            transfers = self.contract.events.Transfer().process_receipt(receipt, errors=DISCARD)
            for event in transfers:
                if event["address"] != self.token_address:
                    continue
                if event["args"]["to"] == self.treasury_address and int(event["args"]["value"]) == expected:
                    return True
            logger.info(f"Cure payment {proof} has no matching transfer of {expected_amount} $ZOMBIE")
            return False

        try:
            return await asyncio.to_thread(_verify)
        except Exception as exc:
            raise ExternalServiceFailure(f"Could not verify payment {proof}: {exc}") from exc


class Web3TokenPayout(_TokenContract):
    """Sends $ZOMBIE from the bot wallet."""

    def __init__(self, token_address: str, private_key: str, chain_id: Optional[int] = None,
                 receipt_timeout: float = 120, **kwargs):
        super().__init__(token_address, **kwargs)
        self.account = Account.from_key(private_key)
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        logger.info(f"Token payouts enabled from wallet {self.account.address}")

    async def balance(self) -> int:
        return await asyncio.to_thread(self.contract.functions.balanceOf(self.account.address).call)

    async def payout(self, address: str, amount: int) -> str:
        """Send ``amount`` whole tokens to ``address`` and wait for the receipt.

        Failures before the transaction is broadcast raise PayoutFailed and
        nothing was sent. Once it is broadcast, a timeout or a failed receipt
        raises PayoutUnconfirmed carrying the transaction hash.
        """
        try:
            recipient = Web3.to_checksum_address(address)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{address} is not a valid Ethereum address.") from exc
        value = to_base_units(amount, self.decimals)

        try:
            balance = await self.balance()
        except Exception as exc:
            raise PayoutFailed(f"Could not read bot wallet balance: {exc}") from exc
        if balance < value:
            raise InsufficientFunds(
                f"Insufficient $ZOMBIE balance. Need: {amount}, have: {Decimal(balance) / (Decimal(10) ** self.decimals)}"
            )

        def _send() -> str:
            chain_id = self.chain_id or self.w3.eth.chain_id
            txn = self.contract.functions.transfer(recipient, value).build_transaction({
                "from": self.account.address,
                "gas": TRANSFER_GAS_LIMIT,
                "gasPrice": self.w3.eth.gas_price,
                "nonce": self.w3.eth.get_transaction_count(self.account.address),
                "chainId": chain_id,
            })
            signed = self.account.sign_transaction(txn)
            raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")
            return Web3.to_hex(self.w3.eth.send_raw_transaction(raw))

        logger.info(f"Sending {amount} $ZOMBIE to {recipient}")
        try:
            tx_hash = await asyncio.to_thread(_send)
        except Exception as exc:
            raise PayoutFailed(f"Transfer of {amount} $ZOMBIE to {recipient} failed: {exc}") from exc

        try:
            receipt = await asyncio.to_thread(
                self.w3.eth.wait_for_transaction_receipt, tx_hash, timeout=self.receipt_timeout
            )
        except Exception as exc:
            logger.error(f"No receipt for $ZOMBIE transfer {tx_hash}: {exc}")
            raise PayoutUnconfirmed(f"Transfer {tx_hash} was sent but not confirmed: {exc}", tx_hash) from exc
        if receipt["status"] != 1:
            logger.error(f"$ZOMBIE transfer {tx_hash} reverted")
            raise PayoutUnconfirmed(f"Transfer transaction {tx_hash} failed", tx_hash)
        logger.info(f"$ZOMBIE transfer confirmed: {tx_hash}")
        return tx_hash
