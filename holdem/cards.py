from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Sequence

RANKS = ("2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A")
SUITS = ("hearts", "diamonds", "clubs", "spades")
SUIT_CODES = {suit[0]: suit for suit in SUITS}


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str
    face_up: bool = False

    def __post_init__(self) -> None:
        if self.rank not in RANKS:
            raise ValueError(f"Invalid rank: {self.rank}")
        if self.suit not in SUITS:
            raise ValueError(f"Invalid suit: {self.suit}")

    @property
    def label(self) -> str:
        return f"{self.rank}{self.suit[0]}"

    def facing(self, face_up: bool) -> Card:
        if self.face_up == face_up:
            return self
        return replace(self, face_up=face_up)


def build_deck() -> List[Card]:
    return [Card(rank, suit) for suit in SUITS for rank in RANKS]


def deal(deck: List[Card], count: int) -> List[Card]:
    if len(deck) < count:
        raise ValueError("Not enough cards left in deck")
    cards = deck[:count]
    del deck[:count]
    return cards


def cards_to_labels(cards: Sequence[Card]) -> List[str]:
    return [card.label for card in cards]


def parse_label(label: str, face_up: bool = False) -> Card:
    if len(label) not in (2, 3):
        raise ValueError(f"Invalid card label: {label}")
    rank, code = label[:-1], label[-1]
    if rank == "T":
        rank = "10"
    suit = SUIT_CODES.get(code)
    if suit is None:
        raise ValueError(f"Invalid suit: {code}")
    return Card(rank, suit, face_up)


def parse_cards(labels: Sequence[str], face_up: bool = False) -> List[Card]:
    return [parse_label(label, face_up) for label in labels]
