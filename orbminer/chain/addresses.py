from __future__ import annotations

import struct
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional, Sequence

from solders.pubkey import Pubkey

from orbminer.config import get_config
from orbminer.core.exceptions import ConfigurationError


@lru_cache(maxsize=1024)
def _find_program_address(seeds: tuple, program_id: str) -> str:
    address, _bump = Pubkey.find_program_address(list(seeds), Pubkey.from_string(program_id))
    return str(address)


def derive_address(seeds: Sequence[bytes], program_id: str) -> str:
    return _find_program_address(tuple(bytes(seed) for seed in seeds), program_id)


def _key_bytes(address: str) -> bytes:
    return bytes(Pubkey.from_string(address))


@dataclass(frozen=True)
class ProgramAddresses:
    program_id: str
    orb_mint: str
    fee_collector: str
    wsol_mint: str
    token_program: str
    associated_token_program: str

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "ProgramAddresses":
        chain = (cfg if cfg is not None else get_config()).get("chain", {})
        try:
            addresses = cls(
                program_id=str(chain["program_id"]),
                orb_mint=str(chain["orb_mint"]),
                fee_collector=str(chain["fee_collector"]),
                wsol_mint=str(chain.get("wsol_mint", "So11111111111111111111111111111111111111112")),
                token_program=str(chain.get("token_program", "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")),
                associated_token_program=str(
                    chain.get("associated_token_program", "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
                ),
            )
            for value in (addresses.program_id, addresses.orb_mint, addresses.fee_collector):
                Pubkey.from_string(value)
        except (KeyError, ValueError) as exc:
            raise ConfigurationError(f"invalid chain addresses: {exc}") from exc
        return addresses

    def derive(self, seeds: Sequence[bytes]) -> str:
        return derive_address(seeds, self.program_id)

    def board(self) -> str:
        return self.derive([b"board"])

    def round(self, round_id: int) -> str:
        return self.derive([b"round", struct.pack("<Q", int(round_id))])

    def treasury(self) -> str:
        return self.derive([b"treasury"])

    def miner(self, authority: str) -> str:
        return self.derive([b"miner", _key_bytes(authority)])

    def stake(self, authority: str) -> str:
        return self.derive([b"stake", _key_bytes(authority)])

    def automation(self, authority: str) -> str:
        return self.derive([b"automation", _key_bytes(authority)])

    def associated_token(self, owner: str, mint: Optional[str] = None) -> str:
        seeds = [_key_bytes(owner), _key_bytes(self.token_program), _key_bytes(mint or self.orb_mint)]
        return derive_address(seeds, self.associated_token_program)


__all__ = ["ProgramAddresses", "derive_address"]
