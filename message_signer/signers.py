"""Private-key Signer for scripts, local development and tests."""

from __future__ import annotations

from eth_account import Account
from eth_account.messages import encode_defunct


class LocalAccountSigner:
    """Signs EIP-191 personal messages with an in-process secp256k1 key."""

    def __init__(self, private_key: str | bytes):
        self._account = Account.from_key(private_key)

    @classmethod
    def create(cls) -> LocalAccountSigner:
        """Signer with a freshly generated key."""
        return cls(Account.create().key)

    @property
    def address(self) -> str:
        """Checksummed address of the signing key."""
        return self._account.address

    def sign_sync(self, message: str) -> str:
        """65-byte r||s||v signature as 0x-prefixed hex."""
        signed = self._account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()

    async def sign(self, message: str) -> str:
        return self.sign_sync(message)
