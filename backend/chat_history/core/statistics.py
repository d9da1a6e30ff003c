"""
Running per-session statistics, updated in O(1) per appended message.
"""

from ..models import ChatMessage, SessionStats


def update_running_stats(stats: SessionStats, message_count: int, message: ChatMessage) -> SessionStats:
    """
    Fold one appended message into the session aggregates.

    Args:
        stats: Aggregates before the append
        message_count: Number of messages before the append
        message: The appended message; missing processing time counts as 0

    Returns:
        SessionStats: New aggregates (the input is not modified)
    """
    processing_time = message.metadata.processing_time or 0.0
    total = stats.total_processing_time + processing_time
    return SessionStats(
        total_processing_time=total,
        average_response_time=total / (message_count + 1),
        topic_categories=list(stats.topic_categories),
    )
