"""Free-text answer matching."""
import re
from enum import Enum

ARTICLES = ("the ", "a ", "an ")
MAX_EDIT_DISTANCE = 2
WORD_OVERLAP_THRESHOLD = 0.5

_NON_ALNUM = re.compile(r"[^a-z0-9 ]")
_WHITESPACE = re.compile(r"\s+")


class MatchResult(Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNCERTAIN = "uncertain"


def normalize(text: str) -> str:
    """Lowercase, drop a leading article and punctuation, collapse spaces."""
    result = text.lower().strip()
    for article in ARTICLES:
        if result.startswith(article):
            result = result[len(article):]
            break
    result = _NON_ALNUM.sub("", result).strip()
    return _WHITESPACE.sub(" ", result)


def levenshtein_distance(s1: str, s2: str) -> int:
    m, n = len(s1), len(s2)
    if m == 0:
        return n
    if n == 0:
        return m
    matrix = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(m + 1):
        matrix[i][0] = i
    for j in range(n + 1):
        matrix[0][j] = j
    for i in range(1, m + 1):
        for j in range(1, n + 1):
            cost = 0 if s1[i - 1] == s2[j - 1] else 1
            matrix[i][j] = min(
                matrix[i - 1][j] + 1,
                matrix[i][j - 1] + 1,
                matrix[i - 1][j - 1] + cost,
            )
    return matrix[m][n]


def evaluate(user_answer: str, acceptable_answers: list[str], correct_answer: str) -> MatchResult:
    """Classify a free-text response against the accepted answers.

    UNCERTAIN is never resolved here. Callers escalate it to an external
    judge and treat a failed judgment as incorrect.
    """
    cleaned = normalize(user_answer)
    all_acceptable = [normalize(a) for a in [correct_answer, *acceptable_answers]]

    # Trivial input skips the fuzzy stages
    if len(cleaned) < 2:
        if cleaned in all_acceptable:
            return MatchResult.CORRECT
        return MatchResult.INCORRECT

    candidates = [a for a in all_acceptable if a]

    if cleaned in candidates:
        return MatchResult.CORRECT

    for acceptable in candidates:
        if acceptable in cleaned or cleaned in acceptable:
            return MatchResult.CORRECT

    for acceptable in candidates:
        if levenshtein_distance(cleaned, acceptable) <= MAX_EDIT_DISTANCE:
            return MatchResult.CORRECT

    user_words = set(cleaned.split(" "))
    for acceptable in candidates:
        acceptable_words = set(acceptable.split(" "))
        overlap = len(user_words & acceptable_words) / len(acceptable_words)
        if overlap >= WORD_OVERLAP_THRESHOLD:
            return MatchResult.UNCERTAIN

    return MatchResult.INCORRECT
