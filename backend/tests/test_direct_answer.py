from __future__ import annotations

from conftest import make_match
from kbchat.rag.direct_answer import (
    REFER_PREFIX,
    DirectAnswerDetector,
    extract_qa,
    looks_like_qa,
    pick_best_text,
)

CN_QA = "【问题】X是什么？【回答】X is Y."


def test_extract_qa_supports_all_marker_styles():
    assert extract_qa(CN_QA).answer == "X is Y."
    assert extract_qa(CN_QA).question == "X是什么？"

    bracket = extract_qa("[Q] What is X?\n[A] X is Y.")
    assert (bracket.question, bracket.answer) == ("What is X?", "X is Y.")

    colon = extract_qa("Q: What is X?\nA: X is Y.")
    assert (colon.question, colon.answer) == ("What is X?", "X is Y.")

    full_width = extract_qa("Q：什么是X？ A：X是Y。")
    assert full_width.answer == "X是Y。"


def test_extract_qa_rejects_partial_or_empty_text():
    assert extract_qa(None) is None
    assert extract_qa("   ") is None
    assert extract_qa("Q: only a question") is None
    assert extract_qa("【问题】 【回答】") is None


def test_looks_like_qa_requires_both_markers():
    assert looks_like_qa(CN_QA)
    assert looks_like_qa("[q] a [a] b")
    assert not looks_like_qa("Just a paragraph about Q and A.")
    assert not looks_like_qa("【问题】 without answer")


def test_pick_best_text_falls_back_to_metadata():
    assert pick_best_text(make_match("a", 0.9, content="body")) == "body"
    assert (
        pick_best_text(make_match("b", 0.9, content="  ", metadata={"fullText": "full"}))
        == "full"
    )
    assert pick_best_text(make_match("c", 0.9, metadata={"preview": "short"})) == "short"
    assert pick_best_text(make_match("d", 0.9)) is None


def test_direct_hit_for_confident_qa_match():
    detector = DirectAnswerDetector()
    matches = [make_match("d1", 0.80, content=CN_QA), make_match("d2", 0.70, content="other")]

    assert detector.try_direct(matches, "X是什么") == "X is Y."


def test_no_direct_hit_below_min_score():
    detector = DirectAnswerDetector()

    assert detector.try_direct([make_match("d1", 0.65, content=CN_QA)], "q") is None


def test_no_direct_hit_when_runner_up_is_close():
    detector = DirectAnswerDetector()
    matches = [make_match("d1", 0.80, content=CN_QA), make_match("d2", 0.75, content="other")]

    assert detector.try_direct(matches, "q") is None


def test_single_match_needs_no_margin():
    detector = DirectAnswerDetector()

    assert detector.try_direct([make_match("d1", 0.73, content=CN_QA)], "q") == "X is Y."


def test_plain_document_without_markers_is_not_direct():
    detector = DirectAnswerDetector()
    matches = [make_match("d1", 0.95, content="X is a kind of Y.")]

    assert detector.try_direct(matches, "q") is None


def test_qa_document_type_bypasses_marker_check():
    detector = DirectAnswerDetector()
    match = make_match(
        "d1",
        0.90,
        doc_type="chat_qa",
        metadata={"full_text": "[Q] Hours? [A] Nine to five."},
    )

    assert detector.try_direct([match], "q") == "Nine to five."


def test_refer_mode_prefixes_answer():
    detector = DirectAnswerDetector(mode="refer")

    answer = detector.try_direct([make_match("d1", 0.90, content=CN_QA)], "q")

    assert answer == REFER_PREFIX + "X is Y."


def test_unknown_mode_falls_back_to_raw():
    detector = DirectAnswerDetector(mode="quoted")

    assert detector.try_direct([make_match("d1", 0.90, content=CN_QA)], "q") == "X is Y."


def test_empty_matches():
    assert DirectAnswerDetector().try_direct([], "q") is None
