"""Router — per-turn event channels for the codexline session."""

from codexline.router.router import EventRouter, TurnChannel

__all__ = ["EventRouter", "TurnChannel"]
