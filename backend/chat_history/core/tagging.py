"""
Session titles and topic tags.
"""

from typing import Iterable, List, Optional

from ..config import settings

DEFAULT_TITLES = {
    "en": "New Conversation",
    "ar": "محادثة جديدة",
}

# Order matters: new tags are appended in vocabulary order
TOPIC_KEYWORDS = (
    'prayer', 'salah', 'quran', 'hadith', 'prophet', 'muhammad', 'allah',
    'islam', 'muslim', 'ramadan', 'hajj', 'zakat', 'fasting', 'mosque',
    'صلاة', 'قرآن', 'حديث', 'نبي', 'محمد', 'الله', 'إسلام', 'مسلم',
    'رمضان', 'حج', 'زكاة', 'صيام', 'مسجد',
)


def generate_title(
    content: Optional[str],
    language: str = "en",
    max_words: Optional[int] = None,
    max_length: Optional[int] = None,
) -> str:
    """
    Build a session title from the first words of the opening message.

    Args:
        content: Opening message content, or None for an empty session
        language: Session language, picks the default title
        max_words: Words kept from the message
        max_length: Longer titles are cut and end with "..."

    Returns:
        str: Title of at most max_length characters
    """
    max_words = max_words or settings.title_max_words
    max_length = max_length or settings.title_max_length

    words = (content or "").split()
    if not words:
        return DEFAULT_TITLES.get(language, DEFAULT_TITLES["en"])

    title = " ".join(words[:max_words])
    if len(title) > max_length:
        return title[:max_length - 3] + "..."
    return title


def extract_tags(
    content: str,
    existing_tags: Iterable[str] = (),
    max_tags: Optional[int] = None,
) -> List[str]:
    """
    Append vocabulary keywords found in content to the existing tags.

    Matching is a case-insensitive substring test. The result keeps insertion
    order and is cut to max_tags, so a full tag list never changes again.
    """
    max_tags = max_tags or settings.max_tags
    tags = list(existing_tags)
    content_lower = content.lower()

    for keyword in TOPIC_KEYWORDS:
        if keyword in content_lower and keyword not in tags:
            tags.append(keyword)

    return tags[:max_tags]
