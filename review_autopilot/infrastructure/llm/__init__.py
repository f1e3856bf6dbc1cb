from .reply_service import ReplyService, enforce_word_limit

__all__ = ["ReplyService", "enforce_word_limit"]
