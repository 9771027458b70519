from .text import clip, truncate, fold_quotes, contains_word
from .time import utc_now, since

__all__ = ["clip", "truncate", "fold_quotes", "contains_word", "utc_now", "since"]
