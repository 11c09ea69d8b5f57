"""
Player state management.
"""
import random
from dataclasses import dataclass, field
from typing import List, Optional

from shared.constants import (
    STARTING_AUTHORITY, STARTING_HAND_SIZE, STARTING_SCOUTS, STARTING_VIPERS
)

from .cards import CardInstance, create_instance


@dataclass
class Player:
    """Represents a player in the game."""

    id: int
    name: str
    authority: int = STARTING_AUTHORITY
    trade: int = 0
    combat: int = 0

    # Card zones
    draw_pile: List[CardInstance] = field(default_factory=list)
    hand: List[CardInstance] = field(default_factory=list)
    discard: List[CardInstance] = field(default_factory=list)
    played: List[CardInstance] = field(default_factory=list)
    bases: List[CardInstance] = field(default_factory=list)

    # Cards drawn at the start of each turn
    hand_size: int = STARTING_HAND_SIZE

    # Connection tracking
    connected: bool = True

    @classmethod
    def with_starting_deck(cls, player_id: int, name: str, rng: random.Random) -> "Player":
        """Create a player holding the standard starting deck, shuffled."""
        player = cls(id=player_id, name=name)
        player.draw_pile = (
            [create_instance("scout") for _ in range(STARTING_SCOUTS)]
            + [create_instance("viper") for _ in range(STARTING_VIPERS)]
        )
        rng.shuffle(player.draw_pile)
        return player

    # =========================================================================
    # Resources
    # =========================================================================

    def spend_trade(self, amount: int) -> bool:
        """
        Spend trade if available.

        Returns:
            True if successful, False if insufficient trade
        """
        if self.trade >= amount:
            self.trade -= amount
            return True
        return False

    def spend_combat(self, amount: int) -> bool:
        """Spend combat if available."""
        if self.combat >= amount:
            self.combat -= amount
            return True
        return False

    def take_damage(self, amount: int) -> int:
        """Reduce authority. Returns the new authority."""
        self.authority = max(0, self.authority - amount)
        return self.authority

    @property
    def is_alive(self) -> bool:
        return self.authority > 0

    # =========================================================================
    # Zone lookups
    # =========================================================================

    @staticmethod
    def _find(zone: List[CardInstance], instance_id: str) -> Optional[CardInstance]:
        for card in zone:
            if card.instance_id == instance_id:
                return card
        return None

    def find_in_hand(self, instance_id: str) -> Optional[CardInstance]:
        return self._find(self.hand, instance_id)

    def find_in_discard(self, instance_id: str) -> Optional[CardInstance]:
        return self._find(self.discard, instance_id)

    def find_base(self, instance_id: str) -> Optional[CardInstance]:
        return self._find(self.bases, instance_id)

    @property
    def outposts(self) -> List[CardInstance]:
        return [base for base in self.bases if base.is_outpost]

    @property
    def has_outpost(self) -> bool:
        return any(base.is_outpost for base in self.bases)

    # =========================================================================
    # Drawing and cleanup
    # =========================================================================

    def refill_draw_pile(self, rng: random.Random, needed: int) -> None:
        """Shuffle the discard pile under the draw pile when it runs short."""
        if len(self.draw_pile) >= needed or not self.discard:
            return
        reshuffled = list(self.discard)
        self.discard.clear()
        rng.shuffle(reshuffled)
        self.draw_pile.extend(reshuffled)

    def cards_to_draw(self) -> int:
        """Number of cards the next draw will take."""
        return min(self.hand_size, len(self.draw_pile))

    def draw_in_order(self, order: List[int]) -> List[CardInstance]:
        """
        Draw the draw-pile cards at the given indices, in that order.

        Indices refer to draw pile positions before any card is removed.
        """
        chosen = [self.draw_pile[index] for index in order]
        picked = set(order)
        self.draw_pile = [
            card for index, card in enumerate(self.draw_pile) if index not in picked
        ]
        self.hand.extend(chosen)
        return chosen

    def cleanup(self) -> None:
        """Move hand and played ships to the discard pile and reset resources."""
        self.discard.extend(self.played)
        self.discard.extend(self.hand)
        self.played.clear()
        self.hand.clear()
        self.trade = 0
        self.combat = 0
        for base in self.bases:
            base.damage = 0

    def to_dict(self, reveal_hand: bool = True) -> dict:
        """
        Convert player to dictionary.

        Args:
            reveal_hand: When False, the hand is reduced to a count
        """
        data = {
            "id": self.id,
            "name": self.name,
            "authority": self.authority,
            "trade": self.trade,
            "combat": self.combat,
            "hand_count": len(self.hand),
            "draw_pile_count": len(self.draw_pile),
            "discard": [card.to_dict() for card in self.discard],
            "played": [card.to_dict() for card in self.played],
            "bases": [card.to_dict() for card in self.bases],
            "connected": self.connected,
            "alive": self.is_alive,
        }
        if reveal_hand:
            data["hand"] = [card.to_dict() for card in self.hand]
        return data
