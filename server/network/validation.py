"""
Server-side validation of player actions.

Every check is a pure predicate over the current game state; nothing here
mutates the game. Callers hold the session's game lock across validation
and the engine mutation that follows, so a result stays true until applied.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from shared.constants import TRADE_ROW_SLOTS
from shared.enums import ActionType, ErrorKind, GamePhase, PendingActionType
from shared.protocol import Action

from server.game_engine import Game


@dataclass
class ValidationResult:
    """Result of validating an action."""
    valid: bool
    error: ErrorKind | None = None
    message: str = ""

    @classmethod
    def success(cls, message: str = "") -> "ValidationResult":
        return cls(valid=True, message=message)

    @classmethod
    def failure(cls, error: ErrorKind, message: str = "") -> "ValidationResult":
        return cls(valid=False, error=error, message=message)


# =============================================================================
# Common preconditions
# =============================================================================

def _check_game(game: Optional[Game]) -> Optional[ValidationResult]:
    if game is None or not game.started:
        return ValidationResult.failure(ErrorKind.GAME_NOT_STARTED, "Game has not started")
    if game.game_over:
        return ValidationResult.failure(ErrorKind.GAME_OVER, "Game is over")
    return None


def _check_turn(game: Optional[Game], player_id: int, phase: GamePhase) -> Optional[ValidationResult]:
    """Game running, acting player is active, and the turn is in the given phase."""
    failure = _check_game(game)
    if failure:
        return failure

    if game.get_player(player_id) is None or game.active_player != player_id:
        return ValidationResult.failure(ErrorKind.NOT_YOUR_TURN, "It's not your turn")

    if game.phase != phase:
        return ValidationResult.failure(
            ErrorKind.WRONG_PHASE,
            f"Cannot do that during the {game.phase.value} phase"
        )
    return None


def _check_combat(game: Game, player_id: int, amount: Optional[int]) -> Optional[ValidationResult]:
    if amount is None or amount <= 0:
        return ValidationResult.failure(ErrorKind.MISSING_FIELD, "Attack amount must be positive")
    if amount > game.players[player_id].combat:
        return ValidationResult.failure(
            ErrorKind.INSUFFICIENT_COMBAT,
            f"You have {game.players[player_id].combat} combat"
        )
    return None


def _check_opponent(game: Game, player_id: int, target: Optional[int]) -> Optional[ValidationResult]:
    if target is None or game.get_player(target) is None or target == player_id:
        return ValidationResult.failure(ErrorKind.INVALID_TARGET, "Choose an opponent to attack")
    if not game.players[target].is_alive:
        return ValidationResult.failure(ErrorKind.INVALID_TARGET, "That player is already defeated")
    return None


# =============================================================================
# Main phase actions
# =============================================================================

def validate_play_card(game: Optional[Game], player_id: int, card_id: Optional[str]) -> ValidationResult:
    """Validate playing a card from hand."""
    failure = _check_turn(game, player_id, GamePhase.MAIN)
    if failure:
        return failure

    if not card_id:
        return ValidationResult.failure(ErrorKind.MISSING_FIELD, "card_id is required")

    if game.players[player_id].find_in_hand(card_id) is None:
        return ValidationResult.failure(ErrorKind.CARD_NOT_FOUND, "That card is not in your hand")

    return ValidationResult.success()


def validate_buy_card(game: Optional[Game], player_id: int, slot: Optional[int]) -> ValidationResult:
    """Validate buying a card from the trade row."""
    failure = _check_turn(game, player_id, GamePhase.MAIN)
    if failure:
        return failure

    if slot is None or not 0 <= slot < TRADE_ROW_SLOTS or game.trade_row.get_slot(slot) is None:
        return ValidationResult.failure(ErrorKind.INVALID_SLOT, "No card in that trade row slot")

    cost = game.trade_row.get_cost(slot)
    if game.players[player_id].trade < cost:
        return ValidationResult.failure(ErrorKind.INSUFFICIENT_TRADE, f"You need {cost} trade")

    return ValidationResult.success()


def validate_buy_explorer(game: Optional[Game], player_id: int) -> ValidationResult:
    failure = _check_turn(game, player_id, GamePhase.MAIN)
    if failure:
        return failure

    cost = game.trade_row.explorer_cost
    if game.players[player_id].trade < cost:
        return ValidationResult.failure(ErrorKind.INSUFFICIENT_TRADE, f"You need {cost} trade")

    return ValidationResult.success()


def validate_attack_player(
    game: Optional[Game],
    player_id: int,
    target: Optional[int],
    amount: Optional[int]
) -> ValidationResult:
    """Validate spending combat against an opponent's authority."""
    failure = _check_turn(game, player_id, GamePhase.MAIN)
    if failure:
        return failure

    failure = _check_opponent(game, player_id, target) or _check_combat(game, player_id, amount)
    if failure:
        return failure

    if game.players[target].has_outpost:
        return ValidationResult.failure(
            ErrorKind.INVALID_TARGET,
            f"{game.players[target].name} is protected by an outpost"
        )

    return ValidationResult.success()


def validate_attack_base(
    game: Optional[Game],
    player_id: int,
    target: Optional[int],
    base_id: Optional[str],
    amount: Optional[int]
) -> ValidationResult:
    """Validate spending combat against one of an opponent's bases."""
    failure = _check_turn(game, player_id, GamePhase.MAIN)
    if failure:
        return failure

    failure = _check_opponent(game, player_id, target)
    if failure:
        return failure

    if not base_id:
        return ValidationResult.failure(ErrorKind.MISSING_FIELD, "base_id is required")

    failure = _check_combat(game, player_id, amount)
    if failure:
        return failure

    defender = game.players[target]
    base = defender.find_base(base_id)
    if base is None:
        return ValidationResult.failure(ErrorKind.CARD_NOT_FOUND, "That base is not in play")

    # Outposts must fall before any other base can be attacked
    if defender.has_outpost and not base.is_outpost:
        return ValidationResult.failure(
            ErrorKind.INVALID_TARGET,
            "Destroy the outposts first"
        )

    return ValidationResult.success()


def validate_scrap_hand(game: Optional[Game], player_id: int, card_id: Optional[str]) -> ValidationResult:
    failure = _check_turn(game, player_id, GamePhase.MAIN)
    if failure:
        return failure
    if not card_id:
        return ValidationResult.failure(ErrorKind.MISSING_FIELD, "card_id is required")
    if game.players[player_id].find_in_hand(card_id) is None:
        return ValidationResult.failure(ErrorKind.CARD_NOT_FOUND, "That card is not in your hand")
    return ValidationResult.success()


def validate_scrap_discard(game: Optional[Game], player_id: int, card_id: Optional[str]) -> ValidationResult:
    failure = _check_turn(game, player_id, GamePhase.MAIN)
    if failure:
        return failure
    if not card_id:
        return ValidationResult.failure(ErrorKind.MISSING_FIELD, "card_id is required")
    if game.players[player_id].find_in_discard(card_id) is None:
        return ValidationResult.failure(ErrorKind.CARD_NOT_FOUND, "That card is not in your discard pile")
    return ValidationResult.success()


def validate_scrap_trade_row(game: Optional[Game], player_id: int, slot: Optional[int]) -> ValidationResult:
    failure = _check_turn(game, player_id, GamePhase.MAIN)
    if failure:
        return failure
    if slot is None or not 0 <= slot < TRADE_ROW_SLOTS or game.trade_row.get_slot(slot) is None:
        return ValidationResult.failure(ErrorKind.INVALID_SLOT, "No card in that trade row slot")
    return ValidationResult.success()


def validate_end_turn(game: Optional[Game], player_id: int) -> ValidationResult:
    """Validate ending the turn. Unanswered choices block it."""
    failure = _check_turn(game, player_id, GamePhase.MAIN)
    if failure:
        return failure

    if game.has_pending_action:
        return ValidationResult.failure(
            ErrorKind.WRONG_PHASE,
            "Resolve the pending choice before ending your turn"
        )

    return ValidationResult.success()


def validate_draw_order(game: Optional[Game], player_id: int, order: Optional[Sequence[int]]) -> ValidationResult:
    """
    Validate a draw order.

    The order must name exactly min(hand size, draw pile) distinct draw pile
    positions. Out-of-range indices are rejected, never clamped.
    """
    failure = _check_turn(game, player_id, GamePhase.DRAW_ORDER)
    if failure:
        return failure

    if order is None:
        return ValidationResult.failure(ErrorKind.MISSING_FIELD, "order is required")

    expected = game.cards_to_draw(player_id)
    if len(order) != expected:
        return ValidationResult.failure(
            ErrorKind.INVALID_DRAW_ORDER,
            f"Expected {expected} positions, got {len(order)}"
        )

    available = len(game.players[player_id].draw_pile)
    seen = set()
    for index in order:
        if not 0 <= index < available:
            return ValidationResult.failure(
                ErrorKind.INVALID_DRAW_ORDER,
                f"Position {index} is outside the draw pile"
            )
        if index in seen:
            return ValidationResult.failure(
                ErrorKind.INVALID_DRAW_ORDER,
                f"Position {index} appears twice"
            )
        seen.add(index)

    return ValidationResult.success()


def validate_action(game: Optional[Game], player_id: int, action: Action) -> ValidationResult:
    """Dispatch an Action to the validator for its type."""
    validator = _VALIDATORS.get(action.type)
    if validator is None:
        return ValidationResult.failure(ErrorKind.UNKNOWN_ACTION, f"Unknown action: {action.type}")
    return validator(game, player_id, action)


_VALIDATORS = {
    ActionType.PLAY_CARD: lambda g, p, a: validate_play_card(g, p, a.card_id),
    ActionType.BUY_CARD: lambda g, p, a: validate_buy_card(g, p, a.slot),
    ActionType.BUY_EXPLORER: lambda g, p, a: validate_buy_explorer(g, p),
    ActionType.ATTACK_PLAYER: lambda g, p, a: validate_attack_player(g, p, a.target, a.amount),
    ActionType.ATTACK_BASE: lambda g, p, a: validate_attack_base(g, p, a.target, a.card_id, a.amount),
    ActionType.SCRAP_HAND: lambda g, p, a: validate_scrap_hand(g, p, a.card_id),
    ActionType.SCRAP_DISCARD: lambda g, p, a: validate_scrap_discard(g, p, a.card_id),
    ActionType.SCRAP_TRADE_ROW: lambda g, p, a: validate_scrap_trade_row(g, p, a.slot),
    ActionType.END_TURN: lambda g, p, a: validate_end_turn(g, p),
    ActionType.DRAW_ORDER: lambda g, p, a: validate_draw_order(g, p, a.order),
}


# =============================================================================
# Pending choices
# =============================================================================

def _check_pending_owner(game: Optional[Game], player_id: int) -> Optional[ValidationResult]:
    failure = _check_game(game)
    if failure:
        return failure

    pending = game.pending_action
    if pending is None:
        return ValidationResult.failure(ErrorKind.WRONG_PHASE, "There is no choice to make")

    if pending.player_id != player_id:
        return ValidationResult.failure(ErrorKind.NOT_YOUR_TURN, "That choice belongs to another player")
    return None


def validate_pending_response(
    game: Optional[Game],
    player_id: int,
    response_type: PendingActionType,
    card_id: Optional[str] = None
) -> ValidationResult:
    """
    Validate an answer to the oldest pending choice.

    A scrap_hand_discard choice accepts either scrap_hand or scrap_discard.
    The referenced card must be in the zone the response names.
    """
    failure = _check_pending_owner(game, player_id)
    if failure:
        return failure

    pending = game.pending_action
    if pending.type == PendingActionType.SCRAP_HAND_DISCARD:
        matches = response_type in (PendingActionType.SCRAP_HAND, PendingActionType.SCRAP_DISCARD)
    else:
        matches = response_type == pending.type
    if not matches:
        return ValidationResult.failure(
            ErrorKind.WRONG_PHASE,
            f"Expected a {pending.type.value} response"
        )

    if not card_id:
        return ValidationResult.failure(ErrorKind.MISSING_FIELD, "card_id is required")

    player = game.players[player_id]
    if response_type in (PendingActionType.DISCARD, PendingActionType.SCRAP_HAND):
        found = player.find_in_hand(card_id) is not None
    elif response_type in (PendingActionType.SCRAP_DISCARD, PendingActionType.TOP_DECK):
        found = player.find_in_discard(card_id) is not None
    elif response_type == PendingActionType.SCRAP_TRADE_ROW:
        found = any(c and c.instance_id == card_id for c in game.trade_row.slots)
    else:
        found = game.find_opponent_base(player_id, card_id) is not None

    if not found:
        return ValidationResult.failure(ErrorKind.CARD_NOT_FOUND, "That card cannot be chosen")

    return ValidationResult.success()


def validate_pending_skip(game: Optional[Game], player_id: int) -> ValidationResult:
    """Only optional choices can be skipped."""
    failure = _check_pending_owner(game, player_id)
    if failure:
        return failure

    pending = game.pending_action
    if not pending.optional and pending.min_count > 0:
        return ValidationResult.failure(ErrorKind.WRONG_PHASE, "This choice cannot be skipped")

    return ValidationResult.success()
