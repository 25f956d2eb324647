from .address_utility import ZERO_ADDRESS, derive_address, same_address, to_checksum
from .timer import ManualTimer, Timer

__all__ = [
    "ZERO_ADDRESS",
    "derive_address",
    "same_address",
    "to_checksum",
    "ManualTimer",
    "Timer",
]
