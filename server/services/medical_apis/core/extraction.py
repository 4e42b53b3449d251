# =============================================================================
# services/medical_apis/core/extraction.py
# =============================================================================

import re
import logging
from typing import FrozenSet, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_STOP_WORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "us", "them",
    "my", "your", "his", "its", "our", "their", "mine", "yours", "ours", "theirs",
    "am", "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "having",
    "do", "does", "did", "doing", "will", "would", "could", "should", "may", "might", "must",
    "this", "that", "these", "those", "what", "which", "who", "when", "where", "why", "how",
    "can", "get", "go", "come", "see", "know", "think", "say", "tell", "ask", "give", "take",
    "very", "really", "quite", "just", "only", "also", "even", "still", "already", "yet",
    "not", "any", "some", "all", "about", "from", "since", "than", "then", "there", "into",
    "feel", "feeling", "taking", "got", "lot", "like", "much", "many", "been",
})

WORD_SPLIT = re.compile(r"[^\w]+")
NUMERIC = re.compile(r"^\d+$")


class TermExtractor:
    """
    Vocabulary-free search term extraction
    Every meaningful word is a candidate; the upstream APIs decide what is medical.
    """

    def __init__(self, max_terms: int = 10, min_length: int = 3,
                 stop_words: Optional[FrozenSet[str]] = None):
        if max_terms <= 0:
            raise ValueError("max_terms must be positive")
        self.max_terms = max_terms
        self.min_length = min_length
        self.stop_words = DEFAULT_STOP_WORDS if stop_words is None else stop_words

    def extract(self, text: str) -> List[str]:
        """Lowercased, de-duplicated terms in first-seen order, capped at ``max_terms``"""
        if not text or not text.strip():
            return []

        terms = []
        seen = set()
        for word in WORD_SPLIT.split(text.lower()):
            # Edge underscores are separators, inner ones belong to the term
            word = word.strip("_")
            if (len(word) < self.min_length
                    or word in self.stop_words
                    or NUMERIC.match(word)
                    or word in seen):
                continue
            seen.add(word)
            terms.append(word)
            if len(terms) >= self.max_terms:
                break

        logger.info(f"📝 Extracted {len(terms)} search terms: {', '.join(terms)}")
        return terms
