from __future__ import annotations

import asyncio
import base64
import logging
import time
from decimal import Decimal
from typing import Any
from uuid import uuid4

import httpx
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.transaction import VersionedTransaction

from .config import LedgerConfig
from .exceptions import (
    LedgerError,
    LedgerNotFoundError,
    LedgerRPCError,
    LedgerTimeoutError,
    LedgerTransferError,
)
from .models import MintInfo, TransactionDetail, TransactionRef
from .token import (
    TOKEN_2022_PROGRAM_ID,
    build_create_ata_idempotent_ix,
    build_transfer_checked_ix,
    derive_ata,
    to_pubkey,
)

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = Decimal(1_000_000_000)
_NOT_FOUND_MARKERS = ("could not find account", "invalid param: could not find")


class LedgerClient:
    def __init__(
        self,
        config: LedgerConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or LedgerConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        logger.info(
            f"Initialized LedgerClient (rpc={self.config.rpc_url}, "
            f"commitment={self.config.commitment})"
        )

    async def __aenter__(self) -> LedgerClient:
        limits = httpx.Limits(
            max_connections=self.config.max_connections,
            max_keepalive_connections=self.config.max_keepalive_connections,
        )
        self._client = httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            limits=limits,
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Closed LedgerClient")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("LedgerClient must be used as async context manager")
        return self._client

    async def _request(self, method: str, params: list[Any] | None = None) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": uuid4().hex[:8],
            "method": method,
            "params": params or [],
        }

        retry_count = 0
        last_error: Exception | None = None
        payload: dict[str, Any] | None = None

        while retry_count < self.config.max_retries:
            try:
                response = await self.client.post(self.config.rpc_url, json=body)

                if response.status_code == 429:
                    wait_time = 2 ** retry_count
                    logger.warning(f"RPC rate limited on {method}, waiting {wait_time}s...")
                    await asyncio.sleep(wait_time)
                    retry_count += 1
                    continue
                elif response.status_code >= 500:
                    wait_time = 2 ** retry_count
                    logger.warning(
                        f"RPC server error {response.status_code} on {method}, "
                        f"retrying in {wait_time}s..."
                    )
                    await asyncio.sleep(wait_time)
                    retry_count += 1
                    continue

                response.raise_for_status()
                payload = response.json()
                break

            except httpx.TimeoutException as e:
                last_error = e
                retry_count += 1
                if retry_count < self.config.max_retries:
                    logger.warning(f"RPC timeout on {method}, retrying ({retry_count})...")
                    await asyncio.sleep(2)

            except httpx.HTTPStatusError as e:
                raise LedgerRPCError(
                    f"RPC {method} failed: HTTP {e.response.status_code}"
                ) from e

            except httpx.RequestError as e:
                last_error = e
                logger.error(f"RPC network error on {method}: {e}")
                break

        if payload is None:
            raise LedgerRPCError(
                f"RPC {method} failed after {retry_count} retries: {last_error}"
            )

        error = payload.get("error")
        if error:
            message = str(error.get("message", "unknown RPC error"))
            code = error.get("code")
            if any(marker in message.lower() for marker in _NOT_FOUND_MARKERS):
                raise LedgerNotFoundError(message, code=code)
            raise LedgerRPCError(f"RPC {method} error: {message}", code=code)

        return payload.get("result")

    def _commitment(self) -> dict[str, Any]:
        return {"commitment": self.config.commitment}

    async def get_balance(self, address: str) -> Decimal:
        """Native balance in SOL."""
        result = await self._request("getBalance", [address, self._commitment()])
        lamports = int((result or {}).get("value") or 0)
        return Decimal(lamports) / LAMPORTS_PER_SOL

    async def get_token_account_balance(self, account: str) -> int:
        result = await self._request(
            "getTokenAccountBalance", [account, self._commitment()]
        )
        value = (result or {}).get("value")
        if value is None:
            raise LedgerNotFoundError(f"Token account not found: {account}")
        return int(str(value.get("amount") or "0"))

    async def list_recent_transactions(
        self, address: str, limit: int = 25
    ) -> list[TransactionRef]:
        result = await self._request(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self.config.commitment}],
        )
        return [TransactionRef.from_api(item) for item in result or [] if item]

    async def get_transaction_detail(self, signature: str) -> TransactionDetail | None:
        """Fetch a parsed transaction, or ``None`` if not yet available."""
        result = await self._request(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.config.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not result:
            return None
        return TransactionDetail.from_api(signature, result)

    async def get_ledger_position(self) -> int:
        """Current slot at the configured commitment."""
        result = await self._request("getSlot", [self._commitment()])
        return int(result or 0)

    async def get_mint_info(self, mint: str) -> MintInfo:
        result = await self._request(
            "getAccountInfo",
            [mint, {"encoding": "jsonParsed", "commitment": self.config.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            raise LedgerNotFoundError(f"Mint not found: {mint}")

        data = value.get("data") or {}
        info = (data.get("parsed") or {}).get("info") if isinstance(data, dict) else None
        if not info or "decimals" not in info:
            raise LedgerRPCError(f"Account is not a parsed token mint: {mint}")

        return MintInfo(
            address=mint,
            decimals=int(info["decimals"]),
            token_program=str(value.get("owner") or TOKEN_2022_PROGRAM_ID),
        )

    def associated_token_address(
        self, owner: str, mint: str, token_program: str = str(TOKEN_2022_PROGRAM_ID)
    ) -> str:
        return str(derive_ata(to_pubkey(owner), to_pubkey(mint), to_pubkey(token_program)))

    async def resolve_token_accounts(
        self, owner: str, mint: str, token_program: str = str(TOKEN_2022_PROGRAM_ID)
    ) -> list[str]:
        """Associated token account plus any other accounts owner holds for mint."""
        accounts = [self.associated_token_address(owner, mint, token_program)]

        try:
            result = await self._request(
                "getProgramAccounts",
                [
                    token_program,
                    {
                        "commitment": self.config.commitment,
                        "encoding": "base64",
                        "dataSlice": {"offset": 0, "length": 0},
                        "filters": [
                            {"memcmp": {"offset": 0, "bytes": mint}},
                            {"memcmp": {"offset": 32, "bytes": owner}},
                        ],
                    },
                ],
            )
        except LedgerError as e:
            logger.warning(f"Token account scan failed for {owner}: {e}")
            return accounts

        for item in result or []:
            pubkey = (item or {}).get("pubkey")
            if pubkey and pubkey not in accounts:
                accounts.append(pubkey)
        return accounts

    async def _latest_blockhash(self) -> str:
        result = await self._request("getLatestBlockhash", [self._commitment()])
        value = (result or {}).get("value") or {}
        blockhash = value.get("blockhash")
        if not blockhash:
            raise LedgerRPCError("getLatestBlockhash returned no blockhash")
        return blockhash

    async def _confirm(self, signature: str) -> None:
        deadline = time.monotonic() + self.config.confirm_timeout_seconds
        wanted = {"confirmed", "finalized"}
        if self.config.commitment == "finalized":
            wanted = {"finalized"}

        while time.monotonic() < deadline:
            result = await self._request(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": False}],
            )
            statuses = (result or {}).get("value") or [None]
            status = statuses[0]
            if status:
                if status.get("err") is not None:
                    raise LedgerTransferError(
                        f"Transaction {signature} failed: {status['err']}"
                    )
                if status.get("confirmationStatus") in wanted:
                    return
            await asyncio.sleep(self.config.confirm_poll_seconds)

        raise LedgerTimeoutError(f"Transaction {signature} not confirmed in time")

    async def transfer_token(
        self,
        sender: Keypair,
        recipient_owner: str,
        mint: str,
        amount_base: int,
        decimals: int,
        token_program: str = str(TOKEN_2022_PROGRAM_ID),
    ) -> str:
        """Send ``amount_base`` of ``mint`` from sender to recipient; returns signature."""
        sender_pk = sender.pubkey()
        mint_pk = to_pubkey(mint)
        program_pk = to_pubkey(token_program)
        recipient_pk = to_pubkey(recipient_owner)

        source = derive_ata(sender_pk, mint_pk, program_pk)
        dest = derive_ata(recipient_pk, mint_pk, program_pk)
        instructions = [
            build_create_ata_idempotent_ix(sender_pk, recipient_pk, mint_pk, program_pk),
            build_transfer_checked_ix(
                source, mint_pk, dest, sender_pk, amount_base, decimals, program_pk
            ),
        ]

        logger.info(
            f"Transferring {amount_base} base units of {mint} "
            f"from {sender_pk} to {recipient_owner}"
        )

        try:
            blockhash = await self._latest_blockhash()
            message = MessageV0.try_compile(
                sender_pk, instructions, [], Hash.from_string(blockhash)
            )
            tx = VersionedTransaction(message, [sender])
            encoded = base64.b64encode(bytes(tx)).decode()
            signature = await self._request(
                "sendTransaction",
                [
                    encoded,
                    {
                        "encoding": "base64",
                        "preflightCommitment": self.config.commitment,
                    },
                ],
            )
        except LedgerRPCError as e:
            raise LedgerTransferError(f"Transfer submission failed: {e}", code=e.code) from e

        if not signature:
            raise LedgerTransferError("sendTransaction returned no signature")

        await self._confirm(str(signature))
        logger.info(f"Transfer confirmed: {signature}")
        return str(signature)


def create_ledger_client(rpc_url: str, **overrides: Any) -> LedgerClient:
    config = LedgerConfig(rpc_url=rpc_url, **overrides)
    return LedgerClient(config)
