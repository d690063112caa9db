from .coinflip import play_coinflip
from .dice import play_dice
from .roulette import play_roulette
from .rps import play_rps
from .slots import play_slots
from .wheel import play_wheel

__all__ = [
    "play_coinflip",
    "play_dice",
    "play_roulette",
    "play_rps",
    "play_slots",
    "play_wheel",
]
