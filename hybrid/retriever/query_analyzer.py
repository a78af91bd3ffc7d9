"""
Query Analyzer

Classifies an incoming query into an intent and a complexity tier and
extracts the keyword terms used by every downstream matcher.

Explicit patterns ("remember this", "no, that's wrong", "what do you
remember") are checked first, in order; length and keyword-density
heuristics only apply when none of them match.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from ..common.schemas import Message, Role
from ..common.stopwords import (
    FilterContext,
    filter_stop_words,
    get_stop_words,
    stem,
)

logger = logging.getLogger("hybrid.retriever.query_analyzer")


class QueryIntent(str, Enum):
    """Closed set of query intents"""
    FACTUAL = "factual"
    CORRECTION = "correction"  # "No, that's not what I meant"
    MEMORY_SAVE = "memory_save"  # "Remember that I prefer tea"
    MEMORY_LIST = "memory_list"  # "What do you remember about me?"
    WEB_SEARCH = "web_search"  # "Search the web for ..."
    CONVERSATIONAL = "conversational"  # "thanks!"
    COMPLEX_REASONING = "complex_reasoning"  # "Explain the trade-offs of ..."


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


@dataclass
class QueryClassification:
    """Analyzer output, scoped to a single query"""
    original: str
    normalized: str
    intent: QueryIntent
    complexity: Complexity
    keywords: List[str] = field(default_factory=list)
    phrases: List[str] = field(default_factory=list)
    is_question: bool = False
    is_personal: bool = False
    is_temporal: bool = False
    is_comparative: bool = False
    explicit_search: bool = False
    word_count: int = 0

    @property
    def terms(self) -> List[str]:
        """Phrases first (more specific), then keywords"""
        return list(dict.fromkeys(self.phrases + self.keywords))

    @property
    def search_text(self) -> str:
        """Text handed to semantic and web lookups"""
        return self.original.strip()

    @classmethod
    def fallback(cls, query: str) -> "QueryClassification":
        return cls(
            original=query or "",
            normalized="",
            intent=QueryIntent.CONVERSATIONAL,
            complexity=Complexity.SIMPLE,
        )


class QueryAnalyzer:
    """
    Pure, rule-based query classifier.

    Responsibilities:
    1. Normalize query text (contractions, hyphens, possessives)
    2. Detect explicit intents from an ordered rule list
    3. Fall back to heuristics for web search and complex reasoning
    4. Extract phrases and stemmed, stop-word-filtered keywords
    5. Flag query shape (personal, temporal, comparative) for planning
    """

    # Ordered: the first matching intent wins
    INTENT_PATTERNS = [
        (QueryIntent.MEMORY_LIST, [
            r"what do you remember",
            r"what memories do you have",
            r"\blist (all |my )?memories",
            r"\bshow (me )?(all |my )?memories",
            r"what'?s saved",
            r"what is saved",
            r"what information do you have",
            r"recall what",
            r"what conversations do you remember",
        ]),
        (QueryIntent.MEMORY_SAVE, [
            r"\b(remember|save|store|memorize|keep|note)\s+(this|that|it|my|i|me|for me|in mind|['\"])",
            r"\b(can you|could you|please)\s+(remember|save|store|memorize|note)\b",
            r"^\s*(remember|save|store|memorize|note)\b",
        ]),
        (QueryIntent.CORRECTION, [
            r"^no\b",
            r"^(not|wrong|incorrect) (what|how|where|when|who)\b",
            r"^that'?s not (what|how|right|correct)\b",
            r"^that is not (what|how|right|correct)\b",
            r"^(rewrite|rephrase|fix|correct)\b",
            r"^(actually|but|however),",
            r"^(i meant|i wanted|what i really)\b",
            r"\b(you'?re|you are|that'?s|that is) (wrong|incorrect|not right)\b",
        ]),
        (QueryIntent.WEB_SEARCH, [
            r"\bsearch (the )?(web|internet|online)\b",
            r"\bweb search\b",
            r"\b(search for|look up|lookup|google)\b",
            r"\bfind (out|information|info|articles|sources)\b",
            r"\bbreaking\b",
            r"\bnews\b",
            r"\bhappening (right )?now\b",
            r"\bjust (announced|released|happened)\b",
        ]),
    ]

    # "do you remember my name?" is a recall question, not a save request
    RECALL_QUESTION_PATTERNS = [
        r"^\s*(do|did|does|can|could) you (still )?(remember|recall|know)\b",
    ]

    EXPLICIT_SEARCH_PATTERNS = [
        r"\bsearch (the )?(web|internet|online)\b",
        r"\bweb search\b",
        r"\bsearch for\b",
        r"\blook up\b",
        r"\bfind (out|information)\b",
    ]

    TEMPORAL_INDICATORS = (
        r"\b(latest|recent|recently|current|currently|new|updates?|developments?"
        r"|announcements?|releases?|changes?|trends?|today|tonight|yesterday"
        r"|this week|last week|week ago|right now)\b"
    )
    YEAR_PATTERN = r"\b20[2-9]\d\b"

    PERSONAL_PATTERNS = [
        r"\bwhat did (i|we)\b",
        r"\bmy\b",
        r"\bmine\b",
        r"\bi (prefer|like|love|hate|use|said|told|mentioned|asked)\b",
        r"\bremember\b",
        r"\b(do|did) you (remember|recall|know)\b",
    ]

    COMPARATIVE_PATTERNS = [
        r"\bvs\.?\b",
        r"\bversus\b",
        r"\bcompar(e|ed|ing|ison)\b",
        r"\bdifference between\b",
        r"\bbetter than\b",
        r"\bbest\b",
        r"\bwhich (is|one|should)\b",
    ]

    CONVERSATIONAL_PATTERN = (
        r"^(hi|hello|hey|yo|thanks|thank you|thx|ok|okay|cool|great|nice|awesome"
        r"|bye|goodbye|good (morning|afternoon|evening|night)|yes|no problem|sure)"
        r"( there| so much| a lot)?[\s!.?]*$"
    )

    FOLLOW_UP_PATTERN = r"^(and |also |what about|how about|and what about)"

    EXPLANATION_TRIGGERS = (
        r"\b(explain|analy[sz]e|compare|contrast|what'?s the difference|difference between"
        r"|break down|walk (me )?through|why does|why do|how does|how do|how would"
        r"|step by step|in detail|pros and cons|trade-?offs?)\b"
    )
    TECHNICAL_TERMS = (
        r"\b(algorithm|architecture|framework|implementation|mechanism|workflow"
        r"|concurrency|distributed|protocol|latency|throughput|optimi[sz]ation"
        r"|asynchronous|scalability|microservices?|encryption|compiler|theorem)\b"
    )
    SIMPLE_PATTERNS = [
        r"^(what|who|when|where|which)\s+(is|are|was|were)\s+\w+\s*\??$",
        r"^(what|who|when|where|which)\s+\w+\s*\??$",
        r"^is\s+\w+\s*\??$",
        r"^(yes|no|maybe)\s*\??$",
    ]

    CONTRACTIONS = {
        "don't": "do not", "doesn't": "does not", "didn't": "did not",
        "won't": "will not", "wouldn't": "would not", "shouldn't": "should not",
        "couldn't": "could not", "can't": "cannot", "isn't": "is not",
        "aren't": "are not", "wasn't": "was not", "weren't": "were not",
        "hasn't": "has not", "haven't": "have not", "hadn't": "had not",
        "i'm": "i am", "you're": "you are", "he's": "he is", "she's": "she is",
        "it's": "it is", "we're": "we are", "they're": "they are",
        "i've": "i have", "you've": "you have", "we've": "we have",
        "they've": "they have", "i'll": "i will", "you'll": "you will",
        "he'll": "he will", "she'll": "she will", "we'll": "we will",
        "they'll": "they will", "what's": "what is", "that's": "that is",
    }

    # Multi-word units that should be matched as a whole
    COMMON_PHRASES = [
        "favorite color", "favorite language", "favorite food", "favorite music",
        "working on", "working with", "working at",
        "dark mode", "light mode",
        "prefer over", "prefer to",
        "currently working", "currently using",
        "project name", "project status",
        "goal is", "goal to", "goal of",
        "deadline for", "deadline is",
        "design preference", "color preference",
        "programming language", "coding language",
        "ui design", "user interface",
    ]

    QUESTION_FILLER = {"do", "does", "did", "tell", "show", "give"}

    MAX_KEYWORDS = 15

    def analyze(
        self,
        query: str,
        recent_turns: Optional[Sequence[Message]] = None,
    ) -> QueryClassification:
        """
        Classify a query. Never raises.

        Args:
            query: Raw user query string
            recent_turns: Optional last-N conversation turns

        Returns:
            QueryClassification; conversational with no keywords on failure
        """
        if not query or not query.strip():
            return QueryClassification.fallback(query)

        try:
            return self._analyze(query, recent_turns or [])
        except Exception as e:
            logger.warning("Query analysis failed, treating as conversational: %s", e)
            return QueryClassification.fallback(query)

    def _analyze(self, query: str, recent_turns: Sequence[Message]) -> QueryClassification:
        cleaned = self._clean_query(query)
        words = cleaned.split()
        word_count = len(words)

        is_question = self._is_question(query)
        normalized = self.normalize_text(cleaned)
        question_normalized = self._normalize_question(normalized) if is_question else normalized

        phrases = self._extract_phrases(question_normalized, query)
        keywords = self._extract_keywords(question_normalized, is_question)

        is_personal = self._matches_any(cleaned, self.PERSONAL_PATTERNS)
        is_temporal = bool(re.search(self.TEMPORAL_INDICATORS, cleaned))
        is_comparative = self._matches_any(cleaned, self.COMPARATIVE_PATTERNS)
        explicit_search = self._matches_any(cleaned, self.EXPLICIT_SEARCH_PATTERNS)

        # Short follow-ups inherit the shape of the previous user turn
        if recent_turns and re.search(self.FOLLOW_UP_PATTERN, cleaned):
            previous = self._last_user_turn(recent_turns)
            if previous:
                prev_cleaned = self._clean_query(previous)
                is_personal = is_personal or self._matches_any(prev_cleaned, self.PERSONAL_PATTERNS)
                is_temporal = is_temporal or bool(re.search(self.TEMPORAL_INDICATORS, prev_cleaned))

        complexity = self._detect_complexity(cleaned, word_count)
        intent = self._detect_intent(cleaned, is_temporal, complexity)

        return QueryClassification(
            original=query,
            normalized=question_normalized,
            intent=intent,
            complexity=complexity,
            keywords=keywords,
            phrases=phrases,
            is_question=is_question,
            is_personal=is_personal,
            is_temporal=is_temporal,
            is_comparative=is_comparative,
            explicit_search=explicit_search,
            word_count=word_count,
        )

    def _clean_query(self, query: str) -> str:
        """Lowercase, collapse whitespace, drop trailing punctuation (but keep '?')"""
        cleaned = query.lower().strip()
        cleaned = cleaned.replace("’", "'")
        cleaned = re.sub(r"\s+", " ", cleaned)
        cleaned = re.sub(r"[.!,;:]+$", "", cleaned)
        return cleaned

    def normalize_text(self, text: str) -> str:
        """Expand contractions, split hyphenated words, drop possessive 's"""
        normalized = text.lower().strip().replace("’", "'")
        for contraction, expansion in self.CONTRACTIONS.items():
            normalized = re.sub(rf"\b{re.escape(contraction)}\b", expansion, normalized)
        normalized = normalized.replace("-", " ")
        normalized = re.sub(r"'s\b", "", normalized)
        normalized = re.sub(r"[^\w\s'?]", " ", normalized)
        return re.sub(r"\s+", " ", normalized).strip()

    def _is_question(self, query: str) -> bool:
        trimmed = query.strip().lower()
        if trimmed.endswith("?"):
            return True
        first = re.split(r"[\s']", trimmed, maxsplit=1)[0] if trimmed else ""
        return first in get_stop_words("question_words")

    def _normalize_question(self, text: str) -> str:
        """'what is my favorite color' -> 'favorite color'"""
        drop = (
            get_stop_words("question_words")
            | get_stop_words("possessive_determiners")
            | get_stop_words("copula_verbs")
            | self.QUESTION_FILLER
        )
        words = [w.strip("?") for w in text.split()]
        return " ".join(w for w in words if w and w not in drop)

    def _extract_phrases(self, normalized: str, original: str) -> List[str]:
        phrases = []

        # Quoted strings are taken verbatim
        for double, single in re.findall(r'"([^"]+)"|\'([^\']{3,})\'', original):
            quoted = (double or single).strip().lower()
            if len(quoted.split()) >= 2 and quoted not in phrases:
                phrases.append(quoted)

        # Longest first to avoid partial matches
        for phrase in sorted(self.COMMON_PHRASES, key=len, reverse=True):
            if re.search(rf"\b{re.escape(phrase)}\b", normalized) and phrase not in phrases:
                if not any(phrase in p for p in phrases):
                    phrases.append(phrase)

        return phrases

    def _extract_keywords(self, normalized: str, is_question: bool) -> List[str]:
        """Stemmed, stop-word-filtered, de-duplicated keywords in query order"""
        words = re.findall(r"\b\w{2,}\b", normalized.lower())
        context = FilterContext(
            is_question=is_question,
            preserve_phrases=True,
            preserve_important_prepositions=True,
        )
        filtered = filter_stop_words(words, context)
        keywords = [stem(w) for w in filtered if len(w) > 2]
        return list(dict.fromkeys(keywords))[:self.MAX_KEYWORDS]

    def _detect_intent(
        self,
        query: str,
        is_temporal: bool,
        complexity: Complexity,
    ) -> QueryIntent:
        """Ordered rules first, then heuristics"""
        if re.search(self.CONVERSATIONAL_PATTERN, query):
            return QueryIntent.CONVERSATIONAL

        recall_question = self._matches_any(query, self.RECALL_QUESTION_PATTERNS)

        for intent, patterns in self.INTENT_PATTERNS:
            if intent == QueryIntent.MEMORY_SAVE and recall_question:
                continue
            if self._matches_any(query, patterns):
                return intent

        # Heuristics: current-events language needs the web
        has_year = bool(re.search(self.YEAR_PATTERN, query))
        if (is_temporal and len(query) > 15) or (has_year and is_temporal):
            return QueryIntent.WEB_SEARCH

        if complexity == Complexity.COMPLEX:
            return QueryIntent.COMPLEX_REASONING

        return QueryIntent.FACTUAL

    def _detect_complexity(self, query: str, word_count: int) -> Complexity:
        has_explanation = bool(re.search(self.EXPLANATION_TRIGGERS, query))
        has_technical = bool(re.search(self.TECHNICAL_TERMS, query))
        multiple_questions = query.count("?") > 1
        long_sentence = any(
            len(s.split()) > 20 for s in re.split(r"[.!?]", query)
        )

        if (
            self._matches_any(query, self.SIMPLE_PATTERNS)
            and word_count < 8
            and not has_explanation
            and not has_technical
        ):
            return Complexity.SIMPLE
        if has_technical or multiple_questions or long_sentence or word_count > 20 or has_explanation:
            return Complexity.COMPLEX
        return Complexity.MODERATE

    def _last_user_turn(self, turns: Sequence[Message]) -> Optional[str]:
        for turn in reversed(turns):
            if turn.role == Role.USER:
                return turn.content
        return None

    @staticmethod
    def _matches_any(text: str, patterns: List[str]) -> bool:
        return any(re.search(p, text, re.IGNORECASE) for p in patterns)
