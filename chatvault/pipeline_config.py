"""Parser configuration: date-order enum and ParserConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from chatvault.config import settings


class DateOrder(str, Enum):
    """Order of the day and month fields in a transcript date token."""

    DAY_FIRST = "day_first"
    MONTH_FIRST = "month_first"


@dataclass(frozen=True)
class ParserConfig:
    """Immutable configuration for the transcript parser.

    Defaults read ambiguous dates month first, as the exporting app writes
    them, and require a 60 % share before the dominant sender of a two-party
    chat is taken as the exporting user.
    """

    date_order: DateOrder = DateOrder.MONTH_FIRST
    self_share_threshold: float = 0.6

    @classmethod
    def from_settings(cls) -> ParserConfig:
        return cls(
            date_order=DateOrder(settings.date_order),
            self_share_threshold=settings.self_share_threshold,
        )
