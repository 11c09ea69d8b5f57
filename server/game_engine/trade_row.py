"""
The shared trade row of purchasable cards.
"""
import random
from typing import List, Optional

from shared.constants import TRADE_ROW_SLOTS, EXPLORER_COST

from .cards import CardInstance, build_trade_deck, create_instance


class TradeRow:
    """Five face-up slots refilled from the trade deck, plus unlimited explorers."""

    def __init__(self, rng: random.Random | None = None, deck: List[CardInstance] | None = None):
        self._rng = rng or random.Random()
        self.deck: List[CardInstance] = deck if deck is not None else build_trade_deck(self._rng)
        self.slots: List[Optional[CardInstance]] = [None] * TRADE_ROW_SLOTS
        self.scrapped: List[CardInstance] = []
        self.explorer_cost = EXPLORER_COST
        self.fill()

    def fill(self) -> None:
        """Fill every empty slot from the top of the trade deck."""
        for slot in range(TRADE_ROW_SLOTS):
            if self.slots[slot] is None and self.deck:
                self.slots[slot] = self.deck.pop()

    def get_slot(self, slot: int) -> Optional[CardInstance]:
        if 0 <= slot < TRADE_ROW_SLOTS:
            return self.slots[slot]
        return None

    def get_cost(self, slot: int) -> int:
        card = self.get_slot(slot)
        return card.cost if card else 0

    def take(self, slot: int) -> Optional[CardInstance]:
        """Remove the card in a slot (buying it) and refill the slot."""
        card = self.get_slot(slot)
        if card is None:
            return None
        self.slots[slot] = None
        self.fill()
        return card

    def scrap(self, slot: int) -> Optional[CardInstance]:
        """Remove the card in a slot from the game and refill the slot."""
        card = self.take(slot)
        if card is not None:
            self.scrapped.append(card)
        return card

    def new_explorer(self) -> CardInstance:
        return create_instance("explorer")

    def to_dict(self) -> dict:
        return {
            "slots": [card.to_dict() if card else None for card in self.slots],
            "deck_count": len(self.deck),
            "explorer_cost": self.explorer_cost,
        }
