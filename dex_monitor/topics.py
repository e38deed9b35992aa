"""
Topics the stream subscribes to: the static DEX program table plus the
watched accounts loaded from the store.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

DEX_PROGRAM_IDS: dict[str, str] = {
    "RAYDIUM": "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",
    "JUPITER": "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",
    "ORCA": "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc",
    "PUMP_FUN": "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P",
    "METEORA": "Eo7WjKq67rjJQSZxS6z3YkapzY3eMj6Xy8X5EQVn5UaB",
    "OPENBOOK": "srmqPiDkJXRLGgxtFBRNJhGjLhQKLLqPKCCQGLFTQqo",
}


class TopicKind(str, Enum):
    PROGRAM = "PROGRAM"
    WALLET = "WALLET"


@dataclass(frozen=True)
class Topic:
    address: str
    kind: TopicKind

    @property
    def short(self) -> str:
        return f"{self.address[:8]}…"


class TopicSet:
    """Programs are fixed for the process lifetime; watched accounts are swapped wholesale."""

    def __init__(
        self,
        programs: Mapping[str, str] = DEX_PROGRAM_IDS,
        watched: Iterable[str] = (),
    ):
        self.program_table = dict(programs)
        self.program_names = {addr: name for name, addr in programs.items()}
        self.programs = tuple(Topic(addr, TopicKind.PROGRAM) for addr in programs.values())
        self.watched: frozenset[str] = frozenset(watched)

    @property
    def program_ids(self) -> tuple[str, ...]:
        return tuple(t.address for t in self.programs)

    def replace_watched(self, accounts: Iterable[str]) -> None:
        self.watched = frozenset(accounts)

    def ordered(self) -> list[Topic]:
        """Programs first, then watched accounts in a stable order."""
        wallets = [Topic(addr, TopicKind.WALLET) for addr in sorted(self.watched)]
        return [*self.programs, *wallets]

    def label(self, topic: Topic) -> str:
        if topic.kind is TopicKind.PROGRAM:
            return f"{self.program_names.get(topic.address, 'program')} ({topic.address})"
        return f"tracked wallet {topic.short}"

    def __len__(self) -> int:
        return len(self.programs) + len(self.watched)
