"""
Main game orchestration - ties all components together.

The engine assumes actions have already passed the validation gate in
server.network.validation; its mutation methods still refuse impossible
requests and report them as (False, message) rather than raising.
"""
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from shared.constants import (
    CARD_CHOICES, FIRST_PLAYER_HAND_SIZE, MAX_PLAYERS, MIN_PLAYERS, STARTING_HAND_SIZE
)
from shared.enums import GamePhase, PendingActionType

from .cards import CardInstance
from .player import Player
from .trade_row import TradeRow


@dataclass
class GameEvent:
    """Represents something that happened in the game."""
    event_type: str
    data: dict
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PendingAction:
    """An engine-initiated choice that blocks the turn until answered."""
    type: PendingActionType
    player_id: int
    optional: bool = True
    min_count: int = 1
    source: Optional[str] = None  # card id that opened the choice

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "player_id": self.player_id,
            "optional": self.optional,
            "min_count": self.min_count,
            "source": self.source,
        }


@dataclass
class Game:
    """
    Main game class that orchestrates all gameplay.

    Player ids are seat indices: players[i].id == i.
    """

    id: int = 0
    players: List[Player] = field(default_factory=list)
    active_player: int = 0
    phase: GamePhase = GamePhase.NOT_STARTED
    turn_number: int = 0
    winner: Optional[int] = None
    pending: List[PendingAction] = field(default_factory=list)
    events: List[GameEvent] = field(default_factory=list)
    rng: random.Random = field(default_factory=random.Random)
    trade_row: TradeRow = field(init=False)

    def __post_init__(self):
        self.trade_row = TradeRow(self.rng)

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def started(self) -> bool:
        return self.phase != GamePhase.NOT_STARTED

    @property
    def game_over(self) -> bool:
        return self.phase == GamePhase.GAME_OVER

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def current_player(self) -> Optional[Player]:
        return self.get_player(self.active_player)

    @property
    def has_pending_action(self) -> bool:
        return bool(self.pending)

    @property
    def pending_action(self) -> Optional[PendingAction]:
        return self.pending[0] if self.pending else None

    def get_player(self, player_id: int) -> Optional[Player]:
        if 0 <= player_id < len(self.players):
            return self.players[player_id]
        return None

    def cards_to_draw(self, player_id: int) -> int:
        player = self.get_player(player_id)
        return player.cards_to_draw() if player else 0

    def alive_players(self) -> List[Player]:
        return [p for p in self.players if p.is_alive]

    def find_opponent_base(self, player_id: int, instance_id: str) -> Optional[Tuple[Player, CardInstance]]:
        """Find a base owned by anyone other than player_id."""
        for player in self.players:
            if player.id == player_id:
                continue
            base = player.find_base(instance_id)
            if base:
                return player, base
        return None

    def pending_options(self, pending: PendingAction) -> List[str]:
        """Instance ids that are legal answers to a pending choice."""
        player = self.get_player(pending.player_id)
        if not player:
            return []
        if pending.type in (PendingActionType.DISCARD, PendingActionType.SCRAP_HAND):
            return [c.instance_id for c in player.hand]
        if pending.type in (PendingActionType.SCRAP_DISCARD, PendingActionType.TOP_DECK):
            return [c.instance_id for c in player.discard]
        if pending.type == PendingActionType.SCRAP_HAND_DISCARD:
            return [c.instance_id for c in player.hand + player.discard]
        if pending.type == PendingActionType.SCRAP_TRADE_ROW:
            return [c.instance_id for c in self.trade_row.slots if c]
        if pending.type == PendingActionType.DESTROY_BASE:
            return [
                base.instance_id
                for other in self.players if other.id != player.id
                for base in other.bases
            ]
        return []

    def _log_event(self, event_type: str, data: dict) -> GameEvent:
        """Log a game event."""
        event = GameEvent(event_type=event_type, data=data)
        self.events.append(event)
        return event

    # =========================================================================
    # Setup
    # =========================================================================

    def add_player(self, name: str) -> Tuple[bool, str, Optional[Player]]:
        """
        Add a player to the game.

        Returns:
            Tuple of (success, message, player)
        """
        if self.started:
            return False, "Game has already started", None

        if len(self.players) >= MAX_PLAYERS:
            return False, f"Game is full ({MAX_PLAYERS} players maximum)", None

        player = Player.with_starting_deck(len(self.players), name, self.rng)
        self.players.append(player)

        self._log_event("player_joined", {"player_id": player.id, "player_name": name})
        return True, f"{name} joined the game", player

    def start(self) -> Tuple[bool, str]:
        """Start the game. The first player draws a short hand on turn one."""
        if self.started:
            return False, "Game has already started"

        if len(self.players) < MIN_PLAYERS:
            return False, f"Need at least {MIN_PLAYERS} players to start"

        self.turn_number = 1
        self.active_player = 0
        self.players[0].hand_size = FIRST_PLAYER_HAND_SIZE

        self._log_event("game_started", {"players": [p.name for p in self.players]})
        self._start_turn()
        return True, "Game started!"

    def _start_turn(self) -> None:
        player = self.current_player

        # Bases keep producing every turn
        for base in player.bases:
            player.trade += base.type.trade
            player.combat += base.type.combat
            player.authority += base.type.authority

        player.refill_draw_pile(self.rng, player.hand_size)
        self.phase = GamePhase.DRAW_ORDER if player.cards_to_draw() > 0 else GamePhase.MAIN

        self._log_event("turn_started", {
            "player_id": player.id,
            "turn_number": self.turn_number,
        })

    # =========================================================================
    # Drawing
    # =========================================================================

    def submit_draw_order(self, player_id: int, order: List[int]) -> Tuple[bool, str]:
        """Draw the chosen draw-pile positions and move to the main phase."""
        player = self.get_player(player_id)
        if not player or self.phase != GamePhase.DRAW_ORDER:
            return False, "Not drawing"

        if len(order) != player.cards_to_draw() or len(set(order)) != len(order):
            return False, "Invalid draw order"
        if any(i < 0 or i >= len(player.draw_pile) for i in order):
            return False, "Invalid draw order"

        drawn = player.draw_in_order(list(order))
        self.phase = GamePhase.MAIN

        self._log_event("cards_drawn", {"player_id": player_id, "count": len(drawn)})
        return True, f"Drew {len(drawn)} cards"

    # =========================================================================
    # Main phase actions
    # =========================================================================

    def play_card(self, player_id: int, card_id: str) -> Tuple[bool, str]:
        """Play a card from hand, gaining its resources."""
        player = self.get_player(player_id)
        card = player.find_in_hand(card_id) if player else None
        if not card:
            return False, "Card not in hand"

        player.hand.remove(card)
        if card.type.is_base:
            player.bases.append(card)
        else:
            player.played.append(card)

        player.trade += card.type.trade
        player.combat += card.type.combat
        player.authority += card.type.authority

        choice = CARD_CHOICES.get(card.type.id)
        if choice:
            pending = PendingAction(
                type=PendingActionType(choice[0]),
                player_id=player_id,
                optional=choice[1],
                min_count=0 if choice[1] else 1,
                source=card.type.id,
            )
            # A choice with nothing to choose is never opened
            if self.pending_options(pending):
                self.pending.append(pending)

        self._log_event("card_played", {"player_id": player_id, "card": card.type.id})
        return True, f"Played {card.name}"

    def buy_card(self, player_id: int, slot: int) -> Tuple[bool, str]:
        """Buy a trade row card into the discard pile."""
        player = self.get_player(player_id)
        cost = self.trade_row.get_cost(slot)
        if not player or self.trade_row.get_slot(slot) is None:
            return False, "Invalid slot"
        if not player.spend_trade(cost):
            return False, "Not enough trade"

        card = self.trade_row.take(slot)
        player.discard.append(card)

        self._log_event("card_bought", {"player_id": player_id, "card": card.type.id, "cost": cost})
        return True, f"Bought {card.name} for {cost}"

    def buy_explorer(self, player_id: int) -> Tuple[bool, str]:
        player = self.get_player(player_id)
        if not player or not player.spend_trade(self.trade_row.explorer_cost):
            return False, "Not enough trade"

        player.discard.append(self.trade_row.new_explorer())
        self._log_event("card_bought", {"player_id": player_id, "card": "explorer"})
        return True, "Bought Explorer"

    def attack_player(self, player_id: int, target: int, amount: int) -> Tuple[bool, str]:
        """Spend combat to reduce a player's authority."""
        attacker = self.get_player(player_id)
        defender = self.get_player(target)
        if not attacker or not defender or defender is attacker:
            return False, "Invalid target"
        if not attacker.spend_combat(amount):
            return False, "Not enough combat"

        remaining = defender.take_damage(amount)
        self._log_event("player_attacked", {
            "player_id": player_id,
            "target": target,
            "amount": amount,
            "authority": remaining,
        })

        if remaining == 0:
            self._log_event("player_defeated", {"player_id": target})
            if len(self.alive_players()) <= 1:
                self._end_game()

        return True, f"Dealt {amount} damage to {defender.name}"

    def attack_base(self, player_id: int, target: int, base_id: str, amount: int) -> Tuple[bool, str]:
        """Spend combat against a base. Damage accumulates until the turn ends."""
        attacker = self.get_player(player_id)
        defender = self.get_player(target)
        base = defender.find_base(base_id) if defender else None
        if not attacker or not base:
            return False, "Base not found"
        if not attacker.spend_combat(amount):
            return False, "Not enough combat"

        base.damage += amount
        if base.damage >= base.type.defense:
            self._destroy_base(defender, base)
            return True, f"Destroyed {base.name}"

        return True, f"Dealt {amount} damage to {base.name}"

    def _destroy_base(self, owner: Player, base: CardInstance) -> None:
        owner.bases.remove(base)
        base.damage = 0
        owner.discard.append(base)
        self._log_event("base_destroyed", {"owner": owner.id, "card": base.type.id})

    def scrap_from_hand(self, player_id: int, card_id: str) -> Tuple[bool, str]:
        player = self.get_player(player_id)
        card = player.find_in_hand(card_id) if player else None
        if not card:
            return False, "Card not in hand"
        player.hand.remove(card)
        self._log_event("card_scrapped", {"player_id": player_id, "card": card.type.id, "zone": "hand"})
        return True, f"Scrapped {card.name}"

    def scrap_from_discard(self, player_id: int, card_id: str) -> Tuple[bool, str]:
        player = self.get_player(player_id)
        card = player.find_in_discard(card_id) if player else None
        if not card:
            return False, "Card not in discard pile"
        player.discard.remove(card)
        self._log_event("card_scrapped", {"player_id": player_id, "card": card.type.id, "zone": "discard"})
        return True, f"Scrapped {card.name}"

    def scrap_from_trade_row(self, player_id: int, slot: int) -> Tuple[bool, str]:
        card = self.trade_row.scrap(slot)
        if not card:
            return False, "Invalid slot"
        self._log_event("card_scrapped", {"player_id": player_id, "card": card.type.id, "zone": "trade_row"})
        return True, f"Scrapped {card.name} from the trade row"

    # =========================================================================
    # Pending choices
    # =========================================================================

    def resolve_pending(
        self,
        player_id: int,
        response_type: PendingActionType,
        card_id: str
    ) -> Tuple[bool, str]:
        """Answer the oldest pending choice with a card instance id."""
        pending = self.pending_action
        player = self.get_player(player_id)
        if not pending or not player or pending.player_id != player_id:
            return False, "No pending choice"

        if response_type == PendingActionType.DISCARD:
            card = player.find_in_hand(card_id)
            if not card:
                return False, "Card not in hand"
            player.hand.remove(card)
            player.discard.append(card)
        elif response_type == PendingActionType.SCRAP_HAND:
            card = player.find_in_hand(card_id)
            if not card:
                return False, "Card not in hand"
            player.hand.remove(card)
        elif response_type == PendingActionType.SCRAP_DISCARD:
            card = player.find_in_discard(card_id)
            if not card:
                return False, "Card not in discard pile"
            player.discard.remove(card)
        elif response_type == PendingActionType.TOP_DECK:
            card = player.find_in_discard(card_id)
            if not card:
                return False, "Card not in discard pile"
            player.discard.remove(card)
            player.draw_pile.insert(0, card)
        elif response_type == PendingActionType.SCRAP_TRADE_ROW:
            slot = next(
                (i for i, c in enumerate(self.trade_row.slots) if c and c.instance_id == card_id),
                None,
            )
            if slot is None:
                return False, "Card not in trade row"
            card = self.trade_row.scrap(slot)
        elif response_type == PendingActionType.DESTROY_BASE:
            found = self.find_opponent_base(player_id, card_id)
            if not found:
                return False, "Base not found"
            owner, card = found
            self._destroy_base(owner, card)
        else:
            return False, "Unsupported response"

        self.pending.pop(0)
        self._log_event("pending_resolved", {
            "player_id": player_id,
            "type": pending.type.value,
            "card": card.type.id,
        })
        return True, f"Resolved {pending.type.value} with {card.name}"

    def skip_pending(self, player_id: int) -> Tuple[bool, str]:
        pending = self.pending_action
        if not pending or pending.player_id != player_id:
            return False, "No pending choice"
        self.pending.pop(0)
        self._log_event("pending_skipped", {"player_id": player_id, "type": pending.type.value})
        return True, f"Skipped {pending.type.value}"

    # =========================================================================
    # Turn Management
    # =========================================================================

    def end_turn(self, player_id: int) -> Tuple[bool, str]:
        """End the active player's turn and start the next living player's."""
        player = self.get_player(player_id)
        if not player or player_id != self.active_player:
            return False, "Not your turn"

        player.cleanup()
        player.hand_size = STARTING_HAND_SIZE

        next_id = self.active_player
        for _ in range(len(self.players)):
            next_id = (next_id + 1) % len(self.players)
            if self.players[next_id].is_alive:
                break

        self.active_player = next_id
        self.turn_number += 1
        self._start_turn()

        return True, f"Turn ended. {self.current_player.name}'s turn"

    def _end_game(self) -> None:
        """End the game and declare winner."""
        self.phase = GamePhase.GAME_OVER
        self.pending.clear()

        alive = self.alive_players()
        if alive:
            self.winner = alive[0].id
            self._log_event("game_over", {
                "winner_id": self.winner,
                "winner_name": alive[0].name,
            })

    # =========================================================================
    # Serialization
    # =========================================================================

    def get_state_for_player(self, player_id: int | None) -> dict:
        """
        Get game state formatted for a specific player.

        Opponents' hands and every draw pile are reduced to counts. A
        player_id of None (a spectator) sees no hand at all.
        """
        pending = self.pending_action
        pending_data = None
        if pending:
            pending_data = pending.to_dict()
            if pending.player_id == player_id:
                pending_data["options"] = self.pending_options(pending)

        return {
            "game_id": self.id,
            "phase": self.phase.value,
            "turn_number": self.turn_number,
            "active_player": self.active_player,
            "is_your_turn": self.active_player == player_id and not self.game_over,
            "you": player_id,
            "players": [
                p.to_dict(reveal_hand=(p.id == player_id))
                for p in self.players
            ],
            "trade_row": self.trade_row.to_dict(),
            "cards_to_draw": self.cards_to_draw(player_id)
            if self.phase == GamePhase.DRAW_ORDER and self.active_player == player_id else 0,
            "pending": pending_data,
            "winner_id": self.winner,
        }
