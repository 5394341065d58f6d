from __future__ import annotations

import logging
from dataclasses import dataclass

from voice_note_relay.core.stt.backend import Hypothesis
from voice_note_relay.domain.models import UNKNOWN_LANGUAGE

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TranscriptReconciler:
    """Folds an ordered hypothesis sequence into one growing transcript.

    `finalized_text` only grows by whole-segment appends, `current_partial` is
    replaced wholesale and `duration_s` never decreases. The language is the most
    recently reported one and stays ``"unknown"`` if none was ever reported.
    """

    finalized_text: str = ""
    current_partial: str = ""
    detected_language: str = UNKNOWN_LANGUAGE
    duration_s: float = 0.0
    final_segments: int = 0
    _salvaged: bool = False

    @property
    def displayed_text(self) -> str:
        return self.finalized_text + self.current_partial

    def apply(self, hypothesis: Hypothesis) -> str:
        if self._salvaged:
            raise RuntimeError("transcript already finalized")

        if hypothesis.is_partial:
            self.current_partial = hypothesis.text
        else:
            self.finalized_text += hypothesis.text + " "
            self.current_partial = ""
            self.final_segments += 1

        if hypothesis.end_time_s is not None:
            self.duration_s = max(self.duration_s, hypothesis.end_time_s)
        if hypothesis.language_code:
            self.detected_language = hypothesis.language_code

        return self.displayed_text

    def salvage(self) -> str:
        """Fold a trailing, never-finalized partial into the transcript once."""
        if not self._salvaged:
            self._salvaged = True
            if self.current_partial:
                logger.info("[Transcript] Salvaging trailing partial segment")
                self.finalized_text += self.current_partial
                self.current_partial = ""
        return self.finalized_text

    @property
    def first_word(self) -> str:
        words = self.finalized_text.split()
        return words[0] if words else ""
