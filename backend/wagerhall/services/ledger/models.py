from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

MEMO_PROGRAM_IDS = frozenset(
    {
        "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr",
        "Memo1UhkJRfHyvLMcVucJwxXeuD728EqVDDwQDxFMNo",
    }
)
MEMO_PROGRAM_NAMES = frozenset({"memo", "spl-memo"})


class TransactionRef(BaseModel):
    """Signature listing entry for an address."""

    signature: str
    slot: int = 0
    failed: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> TransactionRef:
        return cls(
            signature=data.get("signature", ""),
            slot=int(data.get("slot") or 0),
            failed=data.get("err") is not None,
        )


class BalanceDelta(BaseModel):
    """Token balance change of one account within one transaction."""

    account_index: int
    account: str = ""
    mint: str
    owner: str = ""
    pre: int = 0
    post: int = 0

    @property
    def delta(self) -> int:
        return self.post - self.pre


class TransactionDetail(BaseModel):
    """Normalised view of a confirmed transaction."""

    signature: str
    slot: int = 0
    success: bool = True
    memo_present: bool = False
    signers: list[str] = Field(default_factory=list)
    balance_deltas: list[BalanceDelta] = Field(default_factory=list)

    @classmethod
    def from_api(cls, signature: str, data: dict[str, Any]) -> TransactionDetail:
        meta = data.get("meta") or {}
        message = (data.get("transaction") or {}).get("message") or {}
        account_keys = _account_key_strings(message)

        return cls(
            signature=signature,
            slot=int(data.get("slot") or 0),
            success=meta.get("err") is None,
            memo_present=_has_memo_instruction(message, meta),
            signers=_signers(message, account_keys),
            balance_deltas=_balance_deltas(meta, account_keys),
        )


class MintInfo(BaseModel):
    address: str
    decimals: int
    token_program: str


def _key_string(key: Any) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, dict):
        return str(key.get("pubkey", ""))
    return str(key)


def _account_key_strings(message: dict[str, Any]) -> list[str]:
    return [_key_string(k) for k in message.get("accountKeys") or []]


def _signers(message: dict[str, Any], account_keys: list[str]) -> list[str]:
    raw_keys = message.get("accountKeys") or []
    flagged = [
        _key_string(k) for k in raw_keys if isinstance(k, dict) and k.get("signer")
    ]
    if flagged:
        return flagged

    header = message.get("header") or {}
    required = int(header.get("numRequiredSignatures") or 0)
    return account_keys[: min(required, len(account_keys))]


def _is_memo(instruction: dict[str, Any]) -> bool:
    program_id = str(instruction.get("programId") or "")
    if program_id in MEMO_PROGRAM_IDS:
        return True
    program = str(instruction.get("program") or "").lower()
    return program in MEMO_PROGRAM_NAMES


def _has_memo_instruction(message: dict[str, Any], meta: dict[str, Any]) -> bool:
    for instruction in message.get("instructions") or []:
        if _is_memo(instruction):
            return True
    for group in meta.get("innerInstructions") or []:
        for instruction in group.get("instructions") or []:
            if _is_memo(instruction):
                return True
    return False


def _token_amount(entry: dict[str, Any]) -> int:
    amount = (entry.get("uiTokenAmount") or {}).get("amount")
    if amount is None:
        return 0
    try:
        return int(str(amount))
    except ValueError:
        return 0


def _balance_deltas(
    meta: dict[str, Any], account_keys: list[str]
) -> list[BalanceDelta]:
    rows: dict[tuple[int, str], BalanceDelta] = {}

    for entry in meta.get("preTokenBalances") or []:
        index = int(entry.get("accountIndex", -1))
        mint = str(entry.get("mint") or "")
        rows[(index, mint)] = BalanceDelta(
            account_index=index,
            account=account_keys[index] if 0 <= index < len(account_keys) else "",
            mint=mint,
            owner=str(entry.get("owner") or ""),
            pre=_token_amount(entry),
        )

    for entry in meta.get("postTokenBalances") or []:
        index = int(entry.get("accountIndex", -1))
        mint = str(entry.get("mint") or "")
        row = rows.get((index, mint))
        if row is None:
            row = BalanceDelta(
                account_index=index,
                account=account_keys[index] if 0 <= index < len(account_keys) else "",
                mint=mint,
                owner=str(entry.get("owner") or ""),
            )
            rows[(index, mint)] = row
        elif not row.owner:
            # Pre-transaction owner wins; fill only when absent
            row.owner = str(entry.get("owner") or "")
        row.post = _token_amount(entry)

    return sorted(rows.values(), key=lambda r: r.account_index)
