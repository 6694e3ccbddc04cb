"""English word lists and token normalization for the quality gate."""

import re

ASCII_WORD_PATTERN = re.compile(r"[a-zA-Z']+")

BASIC_ENGLISH_WORDS = frozenset({
    "i", "you", "he", "she", "it", "we", "they", "me", "him", "her", "them", "us",
    "my", "your", "his", "its", "our", "their", "mine", "yours",
    "hello", "hi", "thanks", "thank", "please", "sorry", "good", "bad", "yes", "no",
    "ok", "okay", "sure", "fine", "great", "nice", "job", "cool",
    "learn", "practice", "english", "help", "need", "want", "like", "love",
    "do", "does", "did", "am", "are", "is", "was", "were", "be", "been", "being",
    "have", "has", "had", "this", "that", "these", "those",
    "what", "when", "where", "why", "how", "who", "which",
    "can", "could", "will", "would", "should", "must", "may", "might", "maybe",
    "today", "tomorrow", "yesterday", "lesson", "word", "sentence", "speak", "talk",
    "understand", "teacher", "student", "study", "improve", "learned", "learning",
    "language", "write", "read",
})

COMMON_ENGLISH_WORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "so", "because", "if", "then", "than",
    "of", "to", "in", "on", "at", "for", "with", "from", "by", "about", "into",
    "over", "after", "before", "under", "between", "through", "during", "without",
    "not", "very", "too", "also", "just", "only", "really", "always", "never",
    "often", "sometimes", "usually", "again", "still", "already", "here", "there",
    "now", "soon", "later", "all", "some", "any", "many", "much", "more", "most",
    "few", "little", "other", "another", "every", "each", "both", "one", "two",
    "three", "first", "last", "next", "new", "old", "big", "small", "long", "short",
    "high", "low", "happy", "sad", "easy", "hard", "important", "different",
    "same", "right", "wrong", "true", "beautiful", "interesting", "difficult",
    "go", "come", "get", "make", "take", "give", "know", "think", "see", "look",
    "find", "tell", "ask", "work", "feel", "try", "leave", "call", "keep", "let",
    "begin", "start", "show", "hear", "play", "run", "move", "live", "believe",
    "bring", "happen", "sit", "stand", "lose", "pay", "meet", "include", "continue",
    "set", "change", "lead", "watch", "follow", "stop", "create", "spend", "grow",
    "open", "walk", "win", "offer", "remember", "consider", "appear", "buy", "wait",
    "serve", "die", "send", "expect", "build", "stay", "fall", "cut", "reach",
    "eat", "drink", "sleep", "cook", "travel", "visit", "use", "went", "said",
    "time", "year", "people", "way", "day", "man", "woman", "child", "children",
    "world", "life", "hand", "part", "place", "case", "week", "company", "system",
    "program", "question", "government", "number", "night", "point", "home",
    "water", "room", "mother", "father", "area", "money", "story", "fact", "month",
    "lot", "book", "eye", "friend", "family", "school", "city", "country", "food",
    "house", "car", "problem", "idea", "music", "movie", "game", "weather", "office",
    "morning", "afternoon", "evening", "weekend", "store", "park", "phone",
    "computer", "internet", "news", "team", "project", "experience", "opinion",
})

ACADEMIC_ENGLISH_WORDS = frozenset({
    "research", "researcher", "researchers", "study", "studies", "participant",
    "participants", "participation", "analysis", "analyses", "analyze", "analyzed",
    "evaluate", "evaluation", "assess", "assessment", "metric", "metrics",
    "significant", "significance", "significantly", "improvement", "improve",
    "impact", "impacts", "result", "results", "finding", "findings", "concentration",
    "performance", "development", "evidence", "conclusion", "conclusions",
    "experiment", "experiments", "academic", "cognitive", "behavior", "behaviour",
    "learning", "outcome", "outcomes", "level", "levels", "measure", "measured",
    "measurement", "data",
})

ENGLISH_VOCABULARY: frozenset[str] = (
    BASIC_ENGLISH_WORDS | COMMON_ENGLISH_WORDS | ACADEMIC_ENGLISH_WORDS
)

_SUFFIXES = ("ing", "ed", "es", "s", "ly")


def tokenize_ascii_words(text: str) -> list[str]:
    """Extract ASCII word tokens from ``text``."""
    return ASCII_WORD_PATTERN.findall(text)


def normalize_token(token: str, vocabulary: frozenset[str] = ENGLISH_VOCABULARY) -> str:
    """Lowercase ``token`` and strip a regular suffix when the stem is known."""
    word = token.lower().strip("'")
    if word.endswith("'s"):
        word = word[:-2]
    if not word or word in vocabulary:
        return word
    for suffix in _SUFFIXES:
        if word.endswith(suffix) and len(word) > len(suffix) + 1:
            stem = word[: -len(suffix)]
            if stem in vocabulary:
                return stem
            # "making" -> "make", "used" -> "use"
            if stem + "e" in vocabulary:
                return stem + "e"
    return word
