"""Meeting scheduler: availability rules, slot computation and bookings."""

__version__ = "0.1.0"
