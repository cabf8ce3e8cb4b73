"""
Trading Wallet
==============
Signing and broadcasting boundary for direct execution.

Key handling is delegated to eth_account: the decrypted key is turned into a
LocalAccount and the key string itself is wiped right after.
"""

import gc
from typing import Any, Dict
from urllib.parse import urlparse

from web3 import Web3
from web3.exceptions import TimeExhausted
from eth_account import Account

from .utils import LookupUnavailable, TransportTimeout, logger

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}, {"name": "_spender", "type": "address"}],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function"
    },
    {
        "constant": False,
        "inputs": [{"name": "_spender", "type": "address"}, {"name": "_value", "type": "uint256"}],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function"
    },
]


def validate_rpc_url(url: str) -> bool:
    """Accept http(s) URLs with a host; warn about plain http outside localhost."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False

    if parsed.scheme == "http" and not parsed.netloc.startswith(("localhost", "127.")):
        logger.warning("Non-HTTPS RPC URL in use")
    return True


class TradingWallet:
    """
    Wallet used by SwapExecutor.

    Args:
        private_key: hex private key
        rpc_url: RPC endpoint URL
        chain_id: chain id stamped on every transaction
        timeout: RPC request timeout in seconds
    """

    def __init__(self, private_key: str, rpc_url: str, chain_id: int, timeout: int = 30, web3: Web3 = None):
        if web3 is None:
            if not validate_rpc_url(rpc_url):
                raise ValueError("Invalid or insecure RPC URL")
            web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))
        self.web3 = web3
        self.chain_id = chain_id

        key_bytes = bytearray.fromhex(private_key[2:] if private_key.startswith("0x") else private_key)
        try:
            self._account = Account.from_key(bytes(key_bytes))
        finally:
            for i in range(len(key_bytes)):
                key_bytes[i] = 0
            gc.collect()

    @property
    def address(self) -> str:
        return self._account.address

    def get_native_balance(self) -> float:
        """Native balance in whole units; raises LookupUnavailable when the RPC read fails."""
        try:
            balance_wei = self.web3.eth.get_balance(self.address)
        except Exception as e:
            raise LookupUnavailable(f"Balance lookup failed: {e}")
        return float(self.web3.from_wei(balance_wei, 'ether'))

    def token_contract(self, token_address: str):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(token_address),
            abi=ERC20_ABI
        )

    def get_token_balance_units(self, token_address: str) -> int:
        """Raw token balance in base units."""
        return self.token_contract(token_address).functions.balanceOf(self.address).call()

    def get_nonce(self) -> int:
        return self.web3.eth.get_transaction_count(self.address, 'pending')

    def sign_transaction(self, transaction_dict: Dict[str, Any]):
        """Sign a transaction dict with the wallet's key."""
        return self._account.sign_transaction(transaction_dict)

    def broadcast(self, signed_tx) -> str:
        """Send a signed transaction; returns the transaction hash as hex."""
        tx_hash = self.web3.eth.send_raw_transaction(signed_tx.raw_transaction)
        return self.web3.to_hex(tx_hash)

    def wait_for_confirmation(self, tx_hash: str, timeout: float) -> Dict[str, Any]:
        """
        Wait for a receipt, at most ``timeout`` seconds.

        Raises:
            TransportTimeout: no receipt within the deadline. The transaction
                may still land later.
        """
        try:
            return self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted:
            raise TransportTimeout("Transaction not confirmed", step="confirm", timeout=timeout)
