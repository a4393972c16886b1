"""Tests for cosine scoring, ranking and thresholding."""

import math

import pytest

from errors import DimensionMismatchError
from models import Memory, SearchResult
from vector_search import DEFAULT_MIN_SCORE, cosine_similarity, filter_by_threshold, rank


def make_memory(memory_id: str, embedding: list[float]) -> Memory:
    return Memory(
        id=memory_id,
        user_id="tester",
        question=f"q-{memory_id}",
        answer=f"a-{memory_id}",
        embedding=embedding,
        created_at="2026-01-01T00:00:00+00:00",
        updated_at="2026-01-01T00:00:00+00:00",
    )


class TestCosineSimilarity:
    @pytest.mark.parametrize("vector", [[1.0, 2.0, 3.0], [-0.5, 0.25], [1e-3, 7.0, -2.0, 0.0]])
    def test_self_similarity_is_one(self, vector):
        assert cosine_similarity(vector, vector) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)

    def test_magnitude_is_ignored(self):
        assert cosine_similarity([1.0, 1.0], [10.0, 10.0]) == pytest.approx(1.0)

    def test_known_value(self):
        assert cosine_similarity([1.0, 1.0, 1.0, 1.0], [1.0, 0.0, 0.0, 0.0]) == 0.5

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
        assert cosine_similarity([1.0, 2.0], [0.0, 0.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0

    def test_dimension_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError) as exc:
            cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0])
        assert exc.value.expected == 3
        assert exc.value.actual == 2

    def test_result_is_bounded(self):
        a = [0.1] * 1024
        assert -1.0 <= cosine_similarity(a, a) <= 1.0


class TestRank:
    def test_empty_candidates(self):
        assert rank([1.0, 0.0], [], 5) == []

    def test_sorted_descending(self):
        candidates = [
            make_memory("far", [0.0, 1.0]),
            make_memory("near", [1.0, 0.1]),
            make_memory("mid", [1.0, 1.0]),
        ]
        results = rank([1.0, 0.0], candidates, 10)
        assert [r.memory.id for r in results] == ["near", "mid", "far"]
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_limit_truncates(self):
        candidates = [make_memory(str(i), [1.0, float(i)]) for i in range(6)]
        results = rank([1.0, 0.0], candidates, 2)
        assert [r.memory.id for r in results] == ["0", "1"]

    def test_ties_keep_input_order(self):
        candidates = [make_memory(name, [2.0, 2.0]) for name in ("b", "a", "c")]
        results = rank([1.0, 1.0], candidates, 3)
        assert [r.memory.id for r in results] == ["b", "a", "c"]

    def test_scores_match_cosine_similarity(self):
        candidates = [make_memory("x", [0.3, -0.7, 2.0]), make_memory("y", [1.0, 1.0, 1.0])]
        query = [0.5, 0.5, -0.1]
        for result in rank(query, candidates, 2):
            assert result.score == pytest.approx(cosine_similarity(query, result.memory.embedding))

    def test_zero_embedding_scores_zero(self):
        results = rank([1.0, 0.0], [make_memory("zero", [0.0, 0.0])], 1)
        assert results[0].score == 0.0

    def test_dimension_mismatch_raises(self):
        candidates = [make_memory("ok", [1.0, 0.0]), make_memory("bad", [1.0, 0.0, 0.0])]
        with pytest.raises(DimensionMismatchError):
            rank([1.0, 0.0], candidates, 5)


class TestThreshold:
    def test_default_is_half(self):
        assert DEFAULT_MIN_SCORE == 0.5

    def test_keeps_scores_at_or_above(self):
        memory = make_memory("m", [1.0])
        results = [SearchResult(memory, s) for s in (0.9, 0.5, 0.49, 0.7, -0.2)]
        kept = filter_by_threshold(results)
        assert [r.score for r in kept] == [0.9, 0.5, 0.7]

    def test_custom_threshold(self):
        memory = make_memory("m", [1.0])
        results = [SearchResult(memory, s) for s in (0.3, 0.1, 0.2)]
        assert [r.score for r in filter_by_threshold(results, 0.2)] == [0.3, 0.2]

    def test_near_miss_excluded(self):
        memory = make_memory("m", [1.0])
        below = math.nextafter(0.5, 0.0)
        assert filter_by_threshold([SearchResult(memory, below)]) == []
