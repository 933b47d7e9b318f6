from __future__ import annotations


class InvalidEvent(ValueError):
    """Event rejected before any graph mutation took place."""

    MISSING_SPEAKER = "missing_speaker"
    BOT_SPEAKER = "bot_speaker"
    GUILD_MISMATCH = "guild_mismatch"
    NO_ADDRESSEE = "no_addressee"

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class PersistenceFailure(RuntimeError):
    """Load or save of a guild graph failed; the in-memory graph is unaffected."""


class RenderCancelled(RuntimeError):
    pass
