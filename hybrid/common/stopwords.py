"""
Stop Words

Categorized stop word lists with context-aware filtering, plus a light
suffix stemmer. Used by every text-matching component (query analysis,
memory keyword match, relevance scoring).
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional


STOP_WORDS: Dict[str, FrozenSet[str]] = {
    # always removed
    "articles": frozenset({"the", "a", "an"}),
    # removed in questions, kept in statements
    "question_words": frozenset({
        "what", "who", "where", "when", "why", "how", "which", "whose", "whom",
    }),
    "possessive_determiners": frozenset({
        "my", "your", "his", "her", "its", "our", "their",
        "mine", "yours", "hers", "ours", "theirs",
    }),
    "copula_verbs": frozenset({
        "is", "are", "was", "were", "am", "be", "been", "being",
    }),
    # kept inside phrases like "working on"
    "prepositions": frozenset({
        "in", "on", "at", "to", "for", "of", "with", "from", "by", "about",
        "into", "onto", "over", "under", "above", "below", "between", "among",
        "through", "during", "before", "after", "since", "until", "within",
        "without", "beside", "besides", "near", "around", "across",
    }),
    "pronouns": frozenset({
        "i", "you", "he", "she", "it", "we", "they",
        "me", "him", "her", "us", "them",
    }),
    "auxiliary_verbs": frozenset({
        "have", "has", "had", "do", "does", "did",
        "will", "would", "should", "could", "may", "might", "can", "must",
    }),
    "conjunctions": frozenset({
        "and", "or", "but", "nor", "so", "yet", "for", "because", "since", "as",
    }),
    "demonstratives": frozenset({"this", "that", "these", "those"}),
    "basic": frozenset({"the", "a", "an", "and", "or", "but"}),
}

ALL_STOP_WORDS: FrozenSet[str] = frozenset().union(*STOP_WORDS.values())

IMPORTANT_PREPOSITIONS: FrozenSet[str] = frozenset({
    "on", "over", "with", "for", "to", "from", "by", "at",
})

# Words where a trailing "s" is not a plural
_NON_PLURAL_ENDINGS = ("ss", "us", "is", "ous", "ics")


@dataclass(frozen=True)
class FilterContext:
    """How stop words should be treated for a given piece of text"""
    is_question: bool = False
    preserve_phrases: bool = False
    preserve_important_prepositions: bool = False


def get_stop_words(category: str) -> FrozenSet[str]:
    """Return the stop words of one category (empty for unknown categories)"""
    return STOP_WORDS.get(category, frozenset())


def is_in_category(word: str, category: str) -> bool:
    return word.lower() in get_stop_words(category)


def categories_for_word(word: str) -> List[str]:
    """All categories a word belongs to, in declaration order"""
    lower = word.lower()
    return [name for name, words in STOP_WORDS.items() if lower in words]


def is_stop_word(word: str, context: Optional[FilterContext] = None) -> bool:
    """
    Check whether a word is a stop word in the given context.

    Articles and basic words are always stop words. In questions,
    interrogatives, possessives and copulas are stop words. Important
    prepositions survive when phrases are being preserved.
    """
    lower = word.lower()

    if lower in STOP_WORDS["articles"] or lower in STOP_WORDS["basic"]:
        return True

    if context:
        if context.is_question and (
            lower in STOP_WORDS["question_words"]
            or lower in STOP_WORDS["possessive_determiners"]
            or lower in STOP_WORDS["copula_verbs"]
        ):
            return True

        if (
            context.preserve_important_prepositions
            and context.preserve_phrases
            and lower in IMPORTANT_PREPOSITIONS
        ):
            return False

    return lower in ALL_STOP_WORDS


def filter_stop_words(words: Iterable[str], context: Optional[FilterContext] = None) -> List[str]:
    return [w for w in words if not is_stop_word(w, context)]


def stem(word: str) -> str:
    """
    Light suffix stemmer for keyword matching.

    Only folds plurals ("colors" -> "color", "libraries" -> "library",
    "boxes" -> "box") so that stems remain substrings of the inflected
    forms wherever possible.
    """
    w = word.lower()
    if len(w) <= 3:
        return w
    if w.endswith("ies") and len(w) > 4:
        return w[:-3] + "y"
    if w.endswith(("ches", "shes", "xes", "sses", "zes")):
        return w[:-2]
    if w.endswith("s") and not w.endswith(_NON_PLURAL_ENDINGS):
        return w[:-1]
    return w
