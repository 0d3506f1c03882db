"""
Sentiment Service - Check-in Reply Classification
==================================================

ARCHITECTURAL DECISION:
- Labels check-in replies Positive, Neutral or Negative for HR dashboards
- Asks an OpenRouter chat model when OPENROUTER_API_KEY is set
- Otherwise, or when the call fails, scores the reply locally from the
  employee's own mood score and wellbeing keywords (with simple negation)

EXTENSIBILITY:
- To use different model: set OPENROUTER_MODEL
- To use OpenAI: change API URL and key in LLMSettings
"""

import logging
import re
from enum import Enum
from typing import Optional

import requests

from ..config import LLMSettings

logger = logging.getLogger(__name__)


class Sentiment(Enum):
    """Sentiment classification result."""
    POSITIVE = "Positive"
    NEUTRAL = "Neutral"
    NEGATIVE = "Negative"


_LABEL = re.compile(r"\b(positive|neutral|negative)\b", re.IGNORECASE)
_WORD = re.compile(r"[a-z']+")

NEGATIONS = {"not", "no", "never", "isn't", "wasn't", "don't", "didn't", "hardly"}

POSITIVE_WORDS = {
    "great", "good", "excellent", "awesome", "amazing", "happy", "fine",
    "wonderful", "fantastic", "well", "relaxed", "motivated", "rested",
    "productive", "better", "calm", "energized", "supported",
}

NEGATIVE_WORDS = {
    "bad", "terrible", "stressed", "overwhelmed", "anxious", "tired",
    "exhausted", "burnout", "sad", "awful", "horrible", "unhappy", "worried",
    "sick", "frustrated", "angry", "upset", "lonely", "drained", "overworked",
}

# Mood score bands (1-10 scale of the check-in question)
LOW_MOOD, HIGH_MOOD = 4, 7


class SentimentService:
    """
    USAGE:
        service = SentimentService(settings.llm)
        service.classify("8, good week", mood_score=8)  # Sentiment.POSITIVE
    """

    PROMPT_TEMPLATE = (
        "An employee answered a wellbeing check-in. "
        "{mood_line}"
        "Label how they are doing as Positive, Neutral or Negative. "
        "Answer with the label only.\n\n"
        "Reply: '''{message}'''"
    )

    def __init__(self, settings: LLMSettings):
        self._settings = settings

        if not settings.api_key:
            logger.warning("No OPENROUTER_API_KEY set. Check-in sentiment will be scored locally.")

    def classify(self, text: str, mood_score: Optional[int] = None) -> Sentiment:
        """Label one check-in reply. Never raises; falls back to local scoring."""
        if len(text.strip()) < 3 and mood_score is None:
            return Sentiment.NEUTRAL

        if self._settings.api_key:
            label = self._ask_model(text, mood_score)
            if label is not None:
                return label

        return self.score_locally(text, mood_score)

    def _ask_model(self, text: str, mood_score: Optional[int]) -> Optional[Sentiment]:
        mood_line = f"They rated their mood {mood_score}/10. " if mood_score is not None else ""
        payload = {
            "model": self._settings.model,
            "messages": [{
                "role": "user",
                "content": self.PROMPT_TEMPLATE.format(mood_line=mood_line, message=text),
            }],
            "temperature": self._settings.temperature,
            "max_tokens": 10,
        }

        try:
            response = requests.post(
                self._settings.api_url,
                headers={"Authorization": f"Bearer {self._settings.api_key}"},
                json=payload,
                timeout=self._settings.timeout_seconds,
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"] or ""
        except requests.RequestException as e:
            logger.warning(f"Sentiment model unavailable ({e}); scoring locally")
            return None
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning(f"Unreadable sentiment model response ({e}); scoring locally")
            return None

        match = _LABEL.search(content)
        if match is None:
            logger.warning(f"No sentiment label in model answer: {content!r}")
            return None
        return Sentiment(match.group(1).capitalize())

    def score_locally(self, text: str, mood_score: Optional[int] = None) -> Sentiment:
        """Mood score decides when given; wellbeing keywords otherwise, flipped after a negation."""
        if mood_score is not None:
            if mood_score >= HIGH_MOOD:
                return Sentiment.POSITIVE
            if mood_score <= LOW_MOOD:
                return Sentiment.NEGATIVE

        score = 0
        negated = False
        for word in _WORD.findall(text.lower()):
            if word in NEGATIONS:
                negated = True
                continue
            polarity = (word in POSITIVE_WORDS) - (word in NEGATIVE_WORDS)
            score += -polarity if negated else polarity
            if polarity:
                negated = False

        if score > 0:
            return Sentiment.POSITIVE
        if score < 0:
            return Sentiment.NEGATIVE
        return Sentiment.NEUTRAL
