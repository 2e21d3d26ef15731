"""Row models for the shared table store.

One ``HandRow`` per hand and one ``SeatRow`` per seat of that hand. Rows are
plain JSON on the wire; every inbound row is validated here before it reaches
the state machine.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from holdem.cards import Card
from holdem.errors import SyncFailure
from holdem.models import Hand, Phase, Position, Seat, SeatStatus

SCHEMA_VERSION = 1

Rank = Literal["2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A"]
Suit = Literal["hearts", "diamonds", "clubs", "spades"]


class CardRow(BaseModel):
    suit: Suit
    rank: Rank
    face_up: bool = False

    @classmethod
    def from_card(cls, card: Card) -> CardRow:
        return cls(suit=card.suit, rank=card.rank, face_up=card.face_up)  # type: ignore[arg-type]

    def to_card(self) -> Card:
        return Card(self.rank, self.suit, self.face_up)


class HandRow(BaseModel):
    schema_version: int = SCHEMA_VERSION
    hand_id: str = Field(min_length=1)
    room_id: str = Field(min_length=1)
    hand_number: int = Field(ge=1)
    phase: Phase
    dealer_position: int = Field(ge=0, le=7)
    current_bet: int = Field(default=0, ge=0)
    pot: int = Field(default=0, ge=0)
    rake: int = Field(default=0, ge=0)
    house: int = Field(default=0, ge=0)
    community_cards: List[CardRow] = Field(default_factory=list)
    deck: List[CardRow] = Field(default_factory=list)
    turn: Optional[int] = Field(default=None, ge=0, le=7)
    winners: List[int] = Field(default_factory=list)
    winning_rank: Optional[str] = None
    winning_score: List[int] = Field(default_factory=list)
    aborted: bool = False
    version: int = Field(default=0, ge=0)

    @field_validator("community_cards")
    @classmethod
    def _board_size(cls, value: List[CardRow]) -> List[CardRow]:
        if len(value) not in (0, 3, 4, 5):
            raise ValueError(f"board cannot hold {len(value)} cards")
        return value


class SeatRow(BaseModel):
    schema_version: int = SCHEMA_VERSION
    hand_id: str = Field(min_length=1)
    hand_number: int = Field(ge=1)
    seat: int = Field(ge=0, le=7)
    player_id: str = Field(min_length=1)
    display_name: str
    position: Position
    chip_stack: int = Field(ge=0)
    automated: bool = False
    status: SeatStatus
    current_bet: int = Field(default=0, ge=0)
    total_in_pot: int = Field(default=0, ge=0)
    hole_cards: List[CardRow] = Field(default_factory=list)
    version: int = Field(default=0, ge=0)

    @field_validator("hole_cards")
    @classmethod
    def _two_or_none(cls, value: List[CardRow]) -> List[CardRow]:
        if len(value) not in (0, 2):
            raise ValueError(f"a seat holds 0 or 2 hole cards, not {len(value)}")
        return value


def hand_to_row(hand: Hand) -> Dict[str, Any]:
    return HandRow(
        hand_id=hand.hand_id,
        room_id=hand.room_id,
        hand_number=hand.hand_number,
        phase=hand.phase,
        dealer_position=hand.dealer_position,
        current_bet=hand.current_bet,
        pot=hand.pot,
        rake=hand.rake,
        house=hand.house,
        community_cards=[CardRow.from_card(card) for card in hand.community],
        deck=[CardRow.from_card(card) for card in hand.deck],
        turn=hand.turn,
        winners=list(hand.winners),
        winning_rank=hand.winning_rank,
        winning_score=list(hand.winning_score),
        aborted=hand.aborted,
        version=hand.version,
    ).model_dump(mode="json")


def seat_to_row(seat: Seat, hand: Hand) -> Dict[str, Any]:
    return SeatRow(
        hand_id=hand.hand_id,
        hand_number=hand.hand_number,
        seat=seat.seat,
        player_id=seat.player_id,
        display_name=seat.display_name,
        position=seat.position,
        chip_stack=seat.chip_stack,
        automated=seat.automated,
        status=seat.status,
        current_bet=seat.current_bet,
        total_in_pot=seat.total_in_pot,
        hole_cards=[CardRow.from_card(card) for card in seat.hole_cards],
        version=seat.version,
    ).model_dump(mode="json")


def parse_hand_row(data: Dict[str, Any]) -> HandRow:
    try:
        row = HandRow.model_validate(data)
    except ValidationError as exc:
        raise SyncFailure(f"Malformed hand row: {exc.error_count()} error(s); {exc.errors()[0]['msg']}") from exc
    _check_schema(row.schema_version)
    return row


def parse_seat_row(data: Dict[str, Any]) -> SeatRow:
    try:
        row = SeatRow.model_validate(data)
    except ValidationError as exc:
        raise SyncFailure(f"Malformed seat row: {exc.error_count()} error(s); {exc.errors()[0]['msg']}") from exc
    _check_schema(row.schema_version)
    return row


def _check_schema(version: int) -> None:
    if version != SCHEMA_VERSION:
        raise SyncFailure(f"Unsupported row schema {version}; expected {SCHEMA_VERSION}")


def hand_fields(row: HandRow) -> Dict[str, Any]:
    """Domain-typed field values of a hand row, keyed by ``Hand`` attribute name."""
    return {
        "room_id": row.room_id,
        "phase": row.phase,
        "dealer_position": row.dealer_position,
        "current_bet": row.current_bet,
        "pot": row.pot,
        "rake": row.rake,
        "house": row.house,
        "community": [card.to_card() for card in row.community_cards],
        "deck": [card.to_card() for card in row.deck],
        "turn": row.turn,
        "winners": list(row.winners),
        "winning_rank": row.winning_rank,
        "winning_score": list(row.winning_score),
        "aborted": row.aborted,
    }


def seat_fields(row: SeatRow) -> Dict[str, Any]:
    return {
        "player_id": row.player_id,
        "display_name": row.display_name,
        "chip_stack": row.chip_stack,
        "automated": row.automated,
        "status": row.status,
        "current_bet": row.current_bet,
        "total_in_pot": row.total_in_pot,
        "hole_cards": [card.to_card() for card in row.hole_cards],
    }
