"""Turn an extraction outcome into one of four check results."""

from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from ..core.types import CheckStatus
from ..extraction.consent import AntiBotResult
from ..extraction.extractor import ExtractionResult


@dataclass(frozen=True)
class Ok:
    """Selector matched; value may be an empty string."""
    value: str
    status: ClassVar[CheckStatus] = CheckStatus.OK

    @property
    def message(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class Blocked:
    """Page is a bot challenge or access-denied page."""
    reason: str
    status: ClassVar[CheckStatus] = CheckStatus.BLOCKED

    @property
    def message(self) -> str:
        return f"Page blocked: {self.reason}"


@dataclass(frozen=True)
class SelectorMissing:
    """Page loaded but nothing matched the selector."""
    detail: Optional[str] = None
    status: ClassVar[CheckStatus] = CheckStatus.SELECTOR_MISSING

    @property
    def message(self) -> str:
        if self.detail:
            return f"Selector not found ({self.detail})"
        return "Selector not found"


@dataclass(frozen=True)
class Failed:
    """Transport, timeout, quota or unexpected failure."""
    error: str
    status: ClassVar[CheckStatus] = CheckStatus.ERROR

    @property
    def message(self) -> str:
        return self.error


Classification = Union[Ok, Blocked, SelectorMissing, Failed]


def classify(outcome: Union[ExtractionResult, BaseException],
             anti_bot: Optional[AntiBotResult] = None) -> Classification:
    """
    Classify a check. First match wins: blocked, error, selector missing, ok.

    Args:
        outcome: Extraction result, or the exception the extractor raised
        anti_bot: Consent/anti-bot verdict for the extracted DOM
    """
    if anti_bot is not None and anti_bot.blocked:
        return Blocked(anti_bot.block_reason or "challenge page")

    if isinstance(outcome, BaseException):
        return Failed(str(outcome) or type(outcome).__name__)

    if outcome.match_count == 0:
        return SelectorMissing(outcome.render_skipped_reason and f"render skipped: {outcome.render_skipped_reason}")

    return Ok((outcome.matched_text or "").strip())
