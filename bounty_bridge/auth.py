"""Wallet login: issue a nonce, verify the signed message, open a session."""

import re
import secrets
import uuid
from typing import Any, Dict

from eth_account import Account
from eth_account.messages import encode_defunct

from .exceptions import AuthenticationError
from .memory import MemoryManager
from .models import utc_now_iso

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
APP_NAME = "GolGappe"


def build_login_message(address: str, nonce: str) -> str:
    return (
        f"Please sign this message to authenticate with {APP_NAME}:\n\n"
        f"Nonce: {nonce}\nAddress: {address}"
    )


def recover_signer(message: str, signature: str) -> str:
    """Recover the address that signed an EIP-191 personal message."""
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        raise AuthenticationError(f"Invalid signature: {str(e)[:60]}") from e


class WalletAuthenticator:
    """Nonce-based wallet authentication backed by service memory."""

    def __init__(self, memory: MemoryManager):
        self.memory = memory

    async def issue_nonce(self, address: str) -> Dict[str, str]:
        """Create a nonce for ``address`` and the message it must sign."""
        if not address or not ADDRESS_PATTERN.match(address):
            raise ValueError("Valid Ethereum address is required")

        nonce = str(secrets.randbelow(1_000_000))
        await self.memory.save_nonce(address, nonce)
        return {"nonce": nonce, "message": build_login_message(address, nonce)}

    async def verify(self, address: str, signature: str, message: str) -> Dict[str, Any]:
        """Verify a signed login message and open a session.

        The nonce is single-use: it is consumed on success.

        Raises:
            AuthenticationError: Signature, nonce or address mismatch.
        """
        recovered = recover_signer(message, signature)
        if recovered.lower() != address.lower():
            raise AuthenticationError("Invalid signature")

        nonce = await self.memory.get_nonce(address)
        if nonce is None:
            raise AuthenticationError("Invalid session or expired nonce")
        if message != build_login_message(address, nonce):
            raise AuthenticationError("Signed message does not match the issued nonce")

        await self.memory.delete_nonce(address)

        session_id = uuid.uuid4().hex
        session = {
            "address": address.lower(),
            "auth_method": "wallet",
            "created_at": utc_now_iso(),
        }
        await self.memory.save_session(session_id, session)
        return {"session_id": session_id, **session}
