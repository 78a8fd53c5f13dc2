"""
Tests for grounded prompt assembly and context-window truncation.
"""

from rag_pipeline.generation import SYSTEM_PROMPT, build_prompt, estimate_tokens
from rag_pipeline.schemas import Source


def _source(i, content, title="T"):
    return Source(id=i, document_id=i, chunk_index=0, title=title, content=content, score=1.0 - i / 10)


class TestEstimateTokens:
    def test_four_characters_per_token_rounded_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class TestBuildPrompt:
    def test_sources_labeled_in_rank_order(self):
        plan = build_prompt("what?", [_source(1, "alpha", "A"), _source(2, "beta", "B")], [], 4000)

        assert plan.system == SYSTEM_PROMPT
        assert "[Source 1] A\nalpha" in plan.prompt
        assert "[Source 2] B\nbeta" in plan.prompt
        assert plan.prompt.index("[Source 1]") < plan.prompt.index("[Source 2]")
        assert plan.prompt.endswith("Question:\nwhat?")
        assert [s.id for s in plan.sources] == [1, 2]

    def test_no_sources_marked_in_prompt(self):
        plan = build_prompt("what?", [], [], 4000)

        assert "Context sources: (none found)" in plan.prompt
        assert plan.sources == []

    def test_history_included_oldest_first(self):
        history = [("user", "first question"), ("assistant", "first answer")]

        plan = build_prompt("second question", [], history, 4000)

        assert "User: first question\nAssistant: first answer" in plan.prompt
        assert plan.history_messages == 2


class TestTruncation:
    def _plan(self):
        # system "sys" = 1 token, "Question:\nhi" = 3 tokens, leaving 96 of 100
        sources = [
            _source(1, "c" * 147),  # 160 chars -> 40 tokens, fits
            _source(2, "d" * 227),  # 240 chars -> 60 tokens, does not fit in 56
            _source(3, "e" * 7),  # would fit, but ranks below a dropped source
        ]
        history = [
            ("user", "x"),
            ("user", "u" * 200),  # 206 chars -> 52 tokens, does not fit in 29
            ("assistant", "a" * 94),  # 105 chars -> 27 tokens, fits
        ]
        return build_prompt("hi", sources, history, 100, system="sys")

    def test_lower_ranked_sources_dropped_after_first_overflow(self):
        plan = self._plan()

        assert [s.id for s in plan.sources] == [1]
        assert "[Source 1]" in plan.prompt
        assert "[Source 2]" not in plan.prompt
        assert "eeeeeee" not in plan.prompt

    def test_newest_turns_kept_until_budget_runs_out(self):
        plan = self._plan()

        assert plan.history_messages == 1
        assert "Assistant: " + "a" * 94 in plan.prompt
        assert "u" * 200 not in plan.prompt
        assert "User: x" not in plan.prompt

    def test_truncation_is_deterministic(self):
        assert self._plan() == self._plan()

    def test_question_kept_even_when_window_too_small(self):
        plan = build_prompt("q" * 400, [_source(1, "content")], [("user", "old")], 10, system="sys")

        assert plan.sources == []
        assert plan.history_messages == 0
        assert plan.prompt.endswith("Question:\n" + "q" * 400)
