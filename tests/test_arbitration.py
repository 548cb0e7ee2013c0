"""Tests for processing.arbitration."""

import asyncio

import pytest

from core.entities import BorderlinePair, EmbeddingResult, StoryCluster
from core.errors import ArbitrationUnavailable
from processing.arbitration import (
    LLMStoryArbitrator,
    build_comparison_prompt,
    find_borderline_pairs,
    parse_verdict,
    verify_and_merge,
)
from fakes import FakeArbitrator, blend, make_article, unit


def _embeddings(vectors):
    return [EmbeddingResult(article_id=k, embedding=v, text=k) for k, v in vectors.items()]


def _singletons(articles):
    return [StoryCluster(cluster_id=f"c_{a.id}", articles=[a]) for a in articles]


class TestFindBorderlinePairs:
    def test_finds_pairs_in_band(self) -> None:
        vectors = {
            "a": unit(5, 0),
            "b": blend(5, 0, 1, 0.75),
            "c": unit(5, 2),
            "d": blend(5, 2, 3, 0.78),
            "e": unit(5, 4),
        }
        pairs = find_borderline_pairs(_embeddings(vectors), 0.70, 0.85)

        assert [(p.article1_id, p.article2_id) for p in pairs] == [("a", "b"), ("c", "d")]
        assert pairs[0].similarity == pytest.approx(0.75)
        assert pairs[1].similarity == pytest.approx(0.78)

    def test_band_is_half_open(self) -> None:
        vectors = {
            "a": unit(4, 0),
            "lower": blend(4, 0, 1, 0.70),
            "upper": blend(4, 0, 2, 0.85),
        }
        pairs = find_borderline_pairs(_embeddings(vectors), 0.70, 0.85)

        ids = {(p.article1_id, p.article2_id) for p in pairs}
        assert ("a", "lower") in ids
        assert ("a", "upper") not in ids

    def test_ascending_index_order(self) -> None:
        vectors = {
            "a": unit(3, 0),
            "b": blend(3, 0, 1, 0.8),
            "c": blend(3, 0, 2, 0.75),
        }
        pairs = find_borderline_pairs(_embeddings(vectors), 0.5, 0.85)

        assert [(p.article1_id, p.article2_id) for p in pairs] == [("a", "b"), ("a", "c"), ("b", "c")]

    def test_no_pairs(self) -> None:
        assert find_borderline_pairs([], 0.7, 0.85) == []


class TestVerifyAndMerge:
    def test_merges_same_story(self) -> None:
        articles = [make_article(k) for k in "abc"]
        clusters = _singletons(articles)
        pairs = [BorderlinePair("a", "c", 0.8)]
        arbitrator = FakeArbitrator(same=[("a", "c")])

        outcome = asyncio.run(verify_and_merge(clusters, pairs, articles, arbitrator))

        assert [[a.id for a in c.articles] for c in outcome.clusters] == [["a", "c"], ["b"]]
        assert outcome.arbitrations == 1
        assert outcome.merges == 1

    def test_different_story_is_not_merged(self) -> None:
        articles = [make_article(k) for k in "ab"]
        clusters = _singletons(articles)
        outcome = asyncio.run(
            verify_and_merge(clusters, [BorderlinePair("a", "b", 0.8)], articles, FakeArbitrator())
        )

        assert len(outcome.clusters) == 2
        assert outcome.merges == 0
        assert outcome.arbitrations == 1

    def test_failure_resolves_to_different(self) -> None:
        articles = [make_article(k) for k in "abcd"]
        clusters = _singletons(articles)
        pairs = [BorderlinePair("a", "b", 0.8), BorderlinePair("c", "d", 0.8)]
        arbitrator = FakeArbitrator(same=[("c", "d")], failing=[("a", "b")])

        outcome = asyncio.run(verify_and_merge(clusters, pairs, articles, arbitrator))

        assert len(outcome.clusters) == 3
        assert outcome.merges == 1
        assert arbitrator.calls == [("a", "b"), ("c", "d")]

    def test_skips_pairs_already_in_same_cluster(self) -> None:
        articles = [make_article(k) for k in "abc"]
        clusters = _singletons(articles)
        pairs = [
            BorderlinePair("a", "b", 0.8),
            BorderlinePair("a", "c", 0.8),
            BorderlinePair("b", "c", 0.8),
            BorderlinePair("a", "b", 0.8),
        ]
        arbitrator = FakeArbitrator(same=[("a", "b"), ("a", "c")])

        outcome = asyncio.run(verify_and_merge(clusters, pairs, articles, arbitrator))

        assert len(outcome.clusters) == 1
        assert [a.id for a in outcome.clusters[0].articles] == ["a", "b", "c"]
        assert arbitrator.calls == [("a", "b"), ("a", "c")]
        assert outcome.arbitrations == 2

    def test_repoints_merged_members(self) -> None:
        a, b, c, d = (make_article(k) for k in "abcd")
        clusters = [
            StoryCluster(cluster_id="c1", articles=[a]),
            StoryCluster(cluster_id="c2", articles=[b, c]),
            StoryCluster(cluster_id="c3", articles=[d]),
        ]
        pairs = [BorderlinePair("a", "b", 0.8), BorderlinePair("c", "d", 0.8)]
        arbitrator = FakeArbitrator(same=[("a", "b"), ("c", "d")])

        outcome = asyncio.run(verify_and_merge(clusters, pairs, [a, b, c, d], arbitrator))

        assert [cl.cluster_id for cl in outcome.clusters] == ["c1"]
        assert [x.id for x in outcome.clusters[0].articles] == ["a", "b", "c", "d"]

    def test_caps_number_of_arbitrations(self) -> None:
        articles = [make_article(f"a{i}") for i in range(8)]
        clusters = _singletons(articles)
        pairs = [BorderlinePair(f"a{i}", f"a{i + 1}", 0.8) for i in range(7)]
        arbitrator = FakeArbitrator()

        outcome = asyncio.run(verify_and_merge(clusters, pairs, articles, arbitrator, max_pairs=3))

        assert len(arbitrator.calls) == 3
        assert arbitrator.calls[0] == ("a0", "a1")
        assert outcome.arbitrations == 3

    def test_beyond_cap_left_unmerged(self) -> None:
        articles = [make_article(k) for k in "abc"]
        clusters = _singletons(articles)
        pairs = [BorderlinePair("a", "b", 0.8), BorderlinePair("b", "c", 0.8)]
        arbitrator = FakeArbitrator(same=[("a", "b"), ("b", "c")])

        outcome = asyncio.run(verify_and_merge(clusters, pairs, articles, arbitrator, max_pairs=1))

        assert len(outcome.clusters) == 2

    def test_does_not_mutate_input_list(self) -> None:
        articles = [make_article(k) for k in "ab"]
        clusters = _singletons(articles)
        original = list(clusters)

        asyncio.run(
            verify_and_merge(clusters, [BorderlinePair("a", "b", 0.8)], articles, FakeArbitrator(same=[("a", "b")]))
        )

        assert clusters == original
        assert len(clusters) == 2


class FakeLLM:
    def __init__(self, content: str = "SAME", error: Exception | None = None):
        self.content = content
        self.error = error
        self.prompts = []

    async def evaluate(self, prompt: str):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return {"raw": None, "content": self.content, "latency_ms": 5}


class TestParseVerdict:
    @pytest.mark.parametrize("reply", ["SAME", "same", " Same.\n", "**SAME**"])
    def test_same(self, reply: str) -> None:
        assert parse_verdict(reply) is True

    @pytest.mark.parametrize("reply", ["DIFFERENT", "different.", "", "maybe", "SAME story probably"])
    def test_different_or_unparseable(self, reply: str) -> None:
        assert parse_verdict(reply) is False


class TestLLMStoryArbitrator:
    def test_prompt_contains_both_articles(self) -> None:
        a = make_article("1", title="Police bust ticket ring", source="RTHK", summary="Twelve arrested")
        b = make_article("2", title="Fake tickets seized", source="HK01", content="x" * 500)

        prompt = build_comparison_prompt(a, b)

        assert '"Police bust ticket ring"' in prompt
        assert "Source: RTHK" in prompt
        assert "Twelve arrested" in prompt
        assert "x" * 200 in prompt
        assert "x" * 201 not in prompt
        assert prompt.rstrip().endswith("Respond with only: SAME or DIFFERENT")

    def test_same_reply(self) -> None:
        llm = FakeLLM("SAME")
        arbitrator = LLMStoryArbitrator(llm)
        assert asyncio.run(arbitrator.is_same_story(make_article("1"), make_article("2"))) is True
        assert len(llm.prompts) == 1

    def test_unparseable_reply_is_different(self) -> None:
        arbitrator = LLMStoryArbitrator(FakeLLM("I am not sure"))
        assert asyncio.run(arbitrator.is_same_story(make_article("1"), make_article("2"))) is False

    def test_transport_failure_raises_unavailable(self) -> None:
        arbitrator = LLMStoryArbitrator(FakeLLM(error=TimeoutError("timed out")))
        with pytest.raises(ArbitrationUnavailable):
            asyncio.run(arbitrator.is_same_story(make_article("1"), make_article("2")))
