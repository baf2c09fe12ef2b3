"""TradeVerify - target-hit detection and settlement for synthetic trade signals."""

__version__ = "0.1.0"
