from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from solders.hash import Hash
from solders.transaction import VersionedTransaction

from orbminer.chain.addresses import derive_address
from orbminer.chain.codec import encode_account
from orbminer.core.exceptions import DecodeError

CONFIRMED = "confirmed"
FAILED = "failed"
TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ConfirmationStatus:
    status: str
    error: Any = None
    slot: Optional[int] = None

    @property
    def confirmed(self) -> bool:
        return self.status == CONFIRMED

    @property
    def failed(self) -> bool:
        return self.status == FAILED

    @property
    def timed_out(self) -> bool:
        return self.status == TIMED_OUT


class ChainGateway(Protocol):
    async def get_account(self, address: str) -> Optional[bytes]:
        ...

    def derive_address(self, seeds: Sequence[bytes]) -> str:
        ...

    async def submit(self, signed_tx: bytes) -> str:
        ...

    async def confirm(self, signature: str, timeout: float) -> ConfirmationStatus:
        ...

    async def get_balance(self, address: str) -> int:
        ...

    async def get_token_balance(self, owner: str, mint: str) -> int:
        ...

    async def get_latest_blockhash(self) -> str:
        ...

    async def get_recent_prioritization_fees(self, addresses: Optional[List[str]] = None) -> List[int]:
        ...


@dataclass(frozen=True)
class DecodedTransaction:
    signature: str
    fee_payer: str
    instructions: List[Tuple[str, bytes]]

    def program_data(self, program_id: str) -> List[bytes]:
        return [data for program, data in self.instructions if program == program_id]


def decode_transaction(raw: bytes) -> DecodedTransaction:
    """Parse a signed legacy or v0 transaction into (program id, data) pairs."""
    try:
        tx = VersionedTransaction.from_bytes(bytes(raw))
    except Exception as exc:  # solders raises its own bincode error type
        raise DecodeError(f"transaction bytes malformed: {exc}") from exc
    message = tx.message
    keys = [str(key) for key in message.account_keys]
    instructions = [(keys[ix.program_id_index], bytes(ix.data)) for ix in message.instructions]
    return DecodedTransaction(signature=str(tx.signatures[0]), fee_payer=keys[0], instructions=instructions)


MockOutcome = Union[BaseException, ConfirmationStatus]


@dataclass
class MockChainGateway:
    """In-memory chain used by tests and offline runs.

    ``outcomes`` is consumed one entry per ``submit``: an exception is raised from
    ``submit`` itself, a ``ConfirmationStatus`` is returned by the matching ``confirm``.
    An empty queue confirms everything.
    """

    program_id: str
    accounts: Dict[str, bytes] = field(default_factory=dict)
    balances: Dict[str, int] = field(default_factory=dict)
    token_balances: Dict[Tuple[str, str], int] = field(default_factory=dict)
    outcomes: Deque[MockOutcome] = field(default_factory=deque)
    prioritization_fees: List[int] = field(default_factory=list)
    blockhash: str = field(default_factory=lambda: str(Hash.default()))
    on_submit: Optional[Callable[[DecodedTransaction], None]] = None
    submitted: List[DecodedTransaction] = field(default_factory=list)
    calls: List[str] = field(default_factory=list)
    _pending: Dict[str, ConfirmationStatus] = field(default_factory=dict)

    async def __aenter__(self) -> "MockChainGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    def set_account(self, address: str, record: Any) -> None:
        self.accounts[address] = record if isinstance(record, (bytes, bytearray)) else encode_account(record)

    def script(self, *outcomes: MockOutcome) -> None:
        self.outcomes.extend(outcomes)

    async def get_account(self, address: str) -> Optional[bytes]:
        self.calls.append("get_account")
        data = self.accounts.get(address)
        return bytes(data) if data is not None else None

    def derive_address(self, seeds: Sequence[bytes]) -> str:
        return derive_address(seeds, self.program_id)

    async def submit(self, signed_tx: bytes) -> str:
        self.calls.append("submit")
        outcome = self.outcomes.popleft() if self.outcomes else ConfirmationStatus(CONFIRMED, slot=1)
        if isinstance(outcome, BaseException):
            raise outcome
        decoded = decode_transaction(signed_tx)
        self.submitted.append(decoded)
        self._pending[decoded.signature] = outcome
        if outcome.confirmed and self.on_submit is not None:
            self.on_submit(decoded)
        return decoded.signature

    async def confirm(self, signature: str, timeout: float) -> ConfirmationStatus:
        self.calls.append("confirm")
        return self._pending.pop(signature, ConfirmationStatus(TIMED_OUT))

    async def get_balance(self, address: str) -> int:
        self.calls.append("get_balance")
        return int(self.balances.get(address, 0))

    async def get_token_balance(self, owner: str, mint: str) -> int:
        self.calls.append("get_token_balance")
        return int(self.token_balances.get((owner, mint), 0))

    async def get_latest_blockhash(self) -> str:
        self.calls.append("get_latest_blockhash")
        return self.blockhash

    async def get_recent_prioritization_fees(self, addresses: Optional[List[str]] = None) -> List[int]:
        return list(self.prioritization_fees)


__all__ = [
    "CONFIRMED",
    "ChainGateway",
    "ConfirmationStatus",
    "DecodedTransaction",
    "FAILED",
    "MockChainGateway",
    "TIMED_OUT",
    "decode_transaction",
]
