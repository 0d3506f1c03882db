from .sentiment_service import Sentiment, SentimentService

__all__ = ["Sentiment", "SentimentService"]
