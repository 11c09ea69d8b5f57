"""
Game engine package.
"""
from .cards import CardType, CardInstance, get_card_type, create_instance, build_trade_deck
from .player import Player
from .trade_row import TradeRow
from .game import Game, GameEvent, PendingAction

__all__ = [
    "CardType",
    "CardInstance",
    "get_card_type",
    "create_instance",
    "build_trade_deck",
    "Player",
    "TradeRow",
    "Game",
    "GameEvent",
    "PendingAction",
]
