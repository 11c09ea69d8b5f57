"""
Card types and card instances.
"""
import itertools
import random
from dataclasses import dataclass, field
from typing import List

from shared.constants import CARD_DATA, TRADE_DECK_COPIES, STARTING_CARD_IDS
from shared.enums import CardKind, Faction


_instance_counter = itertools.count(1)


def _next_instance_id() -> str:
    return f"c{next(_instance_counter)}"


@dataclass(frozen=True)
class CardType:
    """Static definition of a card."""

    id: str
    name: str
    kind: CardKind
    cost: int
    faction: Faction | None = None
    trade: int = 0
    combat: int = 0
    authority: int = 0
    defense: int = 0
    outpost: bool = False

    @property
    def is_base(self) -> bool:
        return self.kind == CardKind.BASE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "cost": self.cost,
            "faction": self.faction.value if self.faction else None,
            "trade": self.trade,
            "combat": self.combat,
            "authority": self.authority,
            "defense": self.defense,
            "outpost": self.outpost,
        }


@dataclass
class CardInstance:
    """A physical copy of a card in play, identified by instance_id."""

    type: CardType
    instance_id: str = field(default_factory=_next_instance_id)
    damage: int = 0  # Damage taken this turn (bases only)

    @property
    def name(self) -> str:
        return self.type.name

    @property
    def cost(self) -> int:
        return self.type.cost

    @property
    def is_outpost(self) -> bool:
        return self.type.is_base and self.type.outpost

    @property
    def remaining_defense(self) -> int:
        return max(0, self.type.defense - self.damage)

    def to_dict(self) -> dict:
        data = self.type.to_dict()
        data["instance_id"] = self.instance_id
        if self.type.is_base:
            data["damage"] = self.damage
        return data


def _build_card_types() -> dict[str, CardType]:
    types = {}
    for card_id, info in CARD_DATA.items():
        types[card_id] = CardType(
            id=card_id,
            name=info["name"],
            kind=CardKind(info["kind"]),
            cost=info["cost"],
            faction=Faction(info["faction"]) if info["faction"] else None,
            trade=info["trade"],
            combat=info["combat"],
            authority=info["authority"],
            defense=info["defense"],
            outpost=info["outpost"],
        )
    return types


CARD_TYPES: dict[str, CardType] = _build_card_types()


def get_card_type(card_id: str) -> CardType:
    """Look up a card type by id. Raises KeyError for unknown ids."""
    return CARD_TYPES[card_id]


def create_instance(card_id: str) -> CardInstance:
    """Create a new instance of the given card type."""
    return CardInstance(type=get_card_type(card_id))


def build_trade_deck(rng: random.Random | None = None) -> List[CardInstance]:
    """
    Build and shuffle the shared trade deck.

    Starting cards (scouts, vipers, explorers) are not part of it.
    """
    rng = rng or random.Random()
    deck = [
        create_instance(card_id)
        for card_id in CARD_TYPES
        if card_id not in STARTING_CARD_IDS
        for _ in range(TRADE_DECK_COPIES)
    ]
    rng.shuffle(deck)
    return deck
