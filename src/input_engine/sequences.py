"""Retrospective touch-sequence analysis with confidence accumulation.

A touch sequence is replayed through an isolated recognizer. Every
recognized gesture raises the score of its (type, fingers) key by a fixed
step, capped at 1.0; a gesture is "high confidence" when its key's final
score reaches the requested minimum. Repeating the same gesture is what
builds confidence in it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from input_engine.errors import EngineError, ErrorType
from input_engine.gestures import GestureEvent, GestureThresholds
from input_engine.recognizer import DEFAULT_SESSION, GestureRecognizer, TouchInput

logger = logging.getLogger("input_engine.sequences")

CONFIDENCE_STEP = 0.2
DEFAULT_MIN_CONFIDENCE = 0.7


@dataclass
class SequenceAnalysis:
    """Result of analyzing one touch sequence."""
    gestures: list[GestureEvent]
    high_confidence: list[GestureEvent]
    scores: dict[tuple[str, int], float]
    min_confidence: float
    samples: int
    skipped: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "recognized_gestures": [g.to_dict() for g in self.gestures],
            "high_confidence_gestures": [g.to_dict() for g in self.high_confidence],
            "confidence_scores": {f"{t}_{n}": s for (t, n), s in self.scores.items()},
            "min_confidence": self.min_confidence,
            "total_samples": self.samples,
            "skipped_samples": self.skipped,
        }


class SequenceAnalyzer:
    """Runs touch sequences through a throwaway recognizer and scores the result."""

    def __init__(
        self,
        thresholds: Optional[GestureThresholds] = None,
        step: float = CONFIDENCE_STEP,
    ):
        self.thresholds = thresholds or GestureThresholds()
        self.step = step

    def analyze(
        self,
        touch_sequence: Sequence[Mapping[str, Any] | TouchInput],
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        session_id: str = DEFAULT_SESSION,
    ) -> SequenceAnalysis:
        """Recognize gestures in a sequence and keep the consistent ones.

        Samples are dicts with ``action`` (or ``type``), ``x``, ``y``,
        ``touch_id`` and optional ``pressure`` / ``timestamp``. Samples the
        state machine rejects are skipped and reported.
        """
        if not touch_sequence:
            raise EngineError(ErrorType.PARSING_ERROR, "Touch sequence is required and must not be empty")

        recognizer = GestureRecognizer(thresholds=self.thresholds)
        gestures: list[GestureEvent] = []
        scores: dict[tuple[str, int], float] = {}
        skipped: list[dict] = []

        for index, raw in enumerate(touch_sequence):
            sample = raw if isinstance(raw, TouchInput) else _to_sample(raw, session_id)
            try:
                gesture = recognizer.process(sample)
            except EngineError as e:
                logger.debug("Skipping sample %d: %s", index, e.message)
                skipped.append({"index": index, "reason": e.message})
                continue

            if gesture is None:
                continue
            gestures.append(gesture)
            # Rounded so five 0.2 steps land exactly on 1.0
            scores[gesture.key] = round(min(1.0, scores.get(gesture.key, 0.0) + self.step), 6)

        high = [g for g in gestures if scores.get(g.key, 0.0) >= min_confidence]
        return SequenceAnalysis(
            gestures=gestures,
            high_confidence=high,
            scores=scores,
            min_confidence=min_confidence,
            samples=len(touch_sequence),
            skipped=skipped,
        )


def _to_sample(raw: Mapping[str, Any], session_id: str) -> TouchInput:
    if not isinstance(raw, Mapping):
        raise EngineError(ErrorType.PARSING_ERROR, f"Touch sample must be an object, got {type(raw).__name__}")
    data = dict(raw)
    if "action" not in data and "type" in data:
        data["action"] = data.pop("type")
    return TouchInput.from_payload(data, session_id=session_id)
