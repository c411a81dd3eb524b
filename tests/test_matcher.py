from knowledge_trainer.matcher import MatchResult, evaluate, levenshtein_distance, normalize


def test_normalize_strips_article_case_and_punctuation():
    assert normalize("  The Eiffel-Tower!  ") == "eiffeltower"
    assert normalize("An   apple") == "apple"


def test_normalize_only_strips_leading_article():
    assert normalize("Theodore") == "theodore"


def test_identity_is_correct():
    for answer in ["Paris", "42", "Julius Caesar", "ok"]:
        assert evaluate(answer, [], answer) == MatchResult.CORRECT


def test_article_and_case_fold():
    assert evaluate("  THE Answer  ", ["answer"], "answer") == MatchResult.CORRECT


def test_unrelated_answer_is_incorrect():
    assert evaluate("xyz", ["abc"], "abc") == MatchResult.INCORRECT


def test_small_typo_is_correct():
    assert evaluate("paris", ["parris"], "parris") == MatchResult.CORRECT


def test_substring_is_correct():
    assert evaluate("Augustus", [], "Emperor Augustus") == MatchResult.CORRECT


def test_acceptable_answer_matches():
    assert evaluate("Octavian", ["Octavian", "Augustus"], "Caesar Augustus") == MatchResult.CORRECT


def test_partial_word_overlap_is_uncertain():
    result = evaluate("battle of hastings field", [], "battle of waterloo")
    assert result == MatchResult.UNCERTAIN


def test_single_character_short_circuits():
    assert evaluate("x", [], "xylophone") == MatchResult.INCORRECT
    assert evaluate("7", [], "7") == MatchResult.CORRECT


def test_empty_answer_is_incorrect():
    assert evaluate("", [], "Rome") == MatchResult.INCORRECT


def test_empty_answer_matches_answer_that_normalizes_empty():
    assert evaluate("", [], "?!") == MatchResult.CORRECT
    assert evaluate("  ", [], "...") == MatchResult.CORRECT


def test_empty_acceptable_entries_are_skipped():
    assert evaluate("carthage", ["", "  "], "zama") == MatchResult.INCORRECT


def test_levenshtein_values():
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("abc", "") == 3
    assert levenshtein_distance("rome", "rome") == 0


def test_levenshtein_symmetric():
    pairs = [("kitten", "sitting"), ("paris", "parris"), ("", "x"), ("flaw", "lawn")]
    for a, b in pairs:
        assert levenshtein_distance(a, b) == levenshtein_distance(b, a)
