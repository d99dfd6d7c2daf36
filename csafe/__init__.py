"""csafe — compiler front end for the C++Safe dialect."""

__version__ = "0.1.0"
