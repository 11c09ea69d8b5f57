"""
Game and server constants for Starfront.
All resource values are in game units (authority, trade, combat).
"""

# Players
MIN_PLAYERS = 2
MAX_PLAYERS = 4
STARTING_AUTHORITY = 50
STARTING_HAND_SIZE = 5
FIRST_PLAYER_HAND_SIZE = 3  # First player draws fewer on turn one

# Starting deck composition
STARTING_SCOUTS = 8
STARTING_VIPERS = 2

# Trade row
TRADE_ROW_SLOTS = 5
EXPLORER_COST = 2

# Connection limits
WS_MAX_CONNECTIONS = 64
SSH_MAX_CONNECTIONS = 32
CONN_MAX_CONNECTIONS = WS_MAX_CONNECTIONS + SSH_MAX_CONNECTIONS

# Message limits
WS_SEND_QUEUE_SIZE = 64
WS_MAX_MESSAGE_SIZE = 65536
PLAYER_NAME_MAX = 64
CHAT_MESSAGE_MAX = 256
SESSION_MAX_SPECTATORS = 8

# SSH
SSH_HOST_KEY_BITS = 2048
SSH_MAX_AUTH_ATTEMPTS = 3
SSH_AUTH_MAX_MESSAGES = 10
SSH_QUIT_TOKEN = "quit"

# Card data
# Format: (card_id, name, kind, cost, faction, trade, combat, authority, defense, outpost)
CARD_TYPES = [
    # Starting cards
    ("scout", "Scout", "SHIP", 0, None, 1, 0, 0, 0, False),
    ("viper", "Viper", "SHIP", 0, None, 0, 1, 0, 0, False),
    ("explorer", "Explorer", "SHIP", EXPLORER_COST, None, 2, 0, 0, 0, False),

    # Merchant Guild
    ("federation_shuttle", "Federation Shuttle", "SHIP", 1, "MERCHANT", 2, 0, 0, 0, False),
    ("cutter", "Cutter", "SHIP", 2, "MERCHANT", 2, 0, 4, 0, False),
    ("trade_escort", "Trade Escort", "SHIP", 5, "MERCHANT", 0, 4, 4, 0, False),
    ("trading_post", "Trading Post", "BASE", 3, "MERCHANT", 1, 0, 1, 4, True),
    ("port_of_call", "Port of Call", "BASE", 6, "MERCHANT", 3, 0, 0, 6, True),

    # Wilds
    ("blob_fighter", "Blob Fighter", "SHIP", 1, "WILDS", 0, 3, 0, 0, False),
    ("battle_pod", "Battle Pod", "SHIP", 2, "WILDS", 0, 4, 0, 0, False),
    ("ram", "Ram", "SHIP", 3, "WILDS", 0, 5, 0, 0, False),
    ("the_hive", "The Hive", "BASE", 5, "WILDS", 0, 3, 0, 5, False),

    # Kingdom
    ("imperial_fighter", "Imperial Fighter", "SHIP", 1, "KINGDOM", 0, 2, 0, 0, False),
    ("corvette", "Corvette", "SHIP", 2, "KINGDOM", 0, 1, 0, 0, False),
    ("space_station", "Space Station", "BASE", 4, "KINGDOM", 0, 2, 0, 4, True),
    ("royal_redoubt", "Royal Redoubt", "BASE", 6, "KINGDOM", 0, 3, 0, 6, True),

    # Artificers
    ("trade_bot", "Trade Bot", "SHIP", 1, "ARTIFICER", 1, 0, 0, 0, False),
    ("missile_bot", "Missile Bot", "SHIP", 2, "ARTIFICER", 0, 2, 0, 0, False),
    ("supply_bot", "Supply Bot", "SHIP", 3, "ARTIFICER", 2, 0, 0, 0, False),
    ("battle_station", "Battle Station", "BASE", 3, "ARTIFICER", 0, 0, 0, 5, True),
]

# Copies of each trade deck card
TRADE_DECK_COPIES = 3

# Create lookup dictionary for easy access
CARD_DATA = {card_id: {
    "name": name,
    "kind": kind,
    "cost": cost,
    "faction": faction,
    "trade": trade,
    "combat": combat,
    "authority": authority,
    "defense": defense,
    "outpost": outpost,
} for card_id, name, kind, cost, faction, trade, combat, authority, defense, outpost in CARD_TYPES}

STARTING_CARD_IDS = ("scout", "viper", "explorer")

# Cards whose play opens a choice for the player.
# Format: card_id -> (pending action type, optional)
CARD_CHOICES = {
    "trade_bot": ("scrap_hand_discard", True),
    "battle_pod": ("scrap_trade_row", True),
    "supply_bot": ("scrap_hand_discard", True),
    "missile_bot": ("destroy_base", True),
    "corvette": ("discard", False),
}
