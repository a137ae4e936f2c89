"""Tests for Reciprocal Rank Fusion."""

import copy

import pytest

from search_service.errors import InvalidParameterError, MissingIdentifierError
from search_service.ranking.fusion import DEFAULT_K, ReciprocalRankFusion, extract_score


def ids(results):
    return [doc["id"] for doc in results]


class TestConstruction:
    """Construction-time validation of ``k``."""

    def test_default_k(self):
        assert ReciprocalRankFusion().k == DEFAULT_K == 60

    @pytest.mark.parametrize("k", [0, -1, -60])
    def test_non_positive_k_rejected(self, k):
        with pytest.raises(InvalidParameterError):
            ReciprocalRankFusion(k=k)

    def test_invalid_parameter_is_value_error(self):
        with pytest.raises(ValueError):
            ReciprocalRankFusion(k=0)


class TestMerge:
    """Scoring, ordering and deduplication."""

    def test_empty_inputs(self):
        fusion = ReciprocalRankFusion()
        assert fusion.merge([], []) == []
        assert fusion.merge(None, None) == []

    def test_keyword_only_scores(self):
        """Keyword list [1, 2] with no vector hits keeps order with 1/61 and 1/62."""
        fusion = ReciprocalRankFusion(k=60)
        results = fusion.merge([{"id": "1"}, {"id": "2"}], [])

        assert ids(results) == ["1", "2"]
        assert results[0]["rrf_score"] == pytest.approx(1 / 61)
        assert results[1]["rrf_score"] == pytest.approx(1 / 62)

    def test_document_in_both_lists_ranks_first(self):
        """A at rank 1 in both lists scores 2/61; B at keyword rank 2 scores 1/62."""
        fusion = ReciprocalRankFusion(k=60)
        keyword = [{"id": "A"}, {"id": "B"}]
        vector = [{"id": "A"}]

        results = fusion.merge(keyword, vector)

        assert ids(results) == ["A", "B"]
        assert results[0]["rrf_score"] == pytest.approx(2 / 61)
        assert results[0]["rrf_score"] == pytest.approx(0.03279, abs=1e-5)
        assert results[1]["rrf_score"] == pytest.approx(1 / 62)
        assert results[1]["rrf_score"] == pytest.approx(0.01613, abs=1e-5)

    def test_score_is_sum_of_reciprocal_ranks(self):
        fusion = ReciprocalRankFusion(k=10)
        keyword = [{"id": "x"}, {"id": "y"}, {"id": "z"}]
        vector = [{"id": "q"}, {"id": "z"}]

        results = {doc["id"]: doc for doc in fusion.merge(keyword, vector)}

        assert results["z"]["rrf_score"] == pytest.approx(1 / 13 + 1 / 12)
        assert results["q"]["rrf_score"] == pytest.approx(1 / 11)
        assert results["z"]["keyword_rank"] == 3
        assert results["z"]["vector_rank"] == 2
        assert "vector_rank" not in results["x"]

    def test_sorted_descending(self):
        fusion = ReciprocalRankFusion()
        keyword = [{"id": str(i)} for i in range(10)]
        vector = [{"id": str(i)} for i in reversed(range(5, 15))]

        scores = [doc["rrf_score"] for doc in fusion.merge(keyword, vector)]

        assert scores == sorted(scores, reverse=True)

    def test_ties_keep_first_seen_order(self):
        fusion = ReciprocalRankFusion()
        # "k1" and "v1" both score 1/61; keyword documents are seen first
        results = fusion.merge([{"id": "k1"}], [{"id": "v1"}])
        assert ids(results) == ["k1", "v1"]

    def test_deterministic(self):
        fusion = ReciprocalRankFusion()
        keyword = [{"id": "a", "score": 3.0}, {"id": "b"}, {"id": "c"}]
        vector = [{"id": "c", "score": 0.9}, {"id": "d"}, {"id": "a"}]

        first = fusion.merge(keyword, vector)
        second = fusion.merge(keyword, vector)

        assert first == second
        assert first is not second

    def test_ids_compared_as_strings(self):
        fusion = ReciprocalRankFusion()
        results = fusion.merge([{"id": 7}], [{"id": "7"}])

        assert len(results) == 1
        assert results[0]["rrf_score"] == pytest.approx(2 / 61)

    def test_missing_id_fails_whole_merge(self):
        fusion = ReciprocalRankFusion()
        with pytest.raises(MissingIdentifierError):
            fusion.merge([{"id": "1"}, {"title": "no id"}], [])
        with pytest.raises(MissingIdentifierError):
            fusion.merge([], [{"id": None}])


class TestFieldHandling:
    """Field merging and source scores."""

    def test_vector_fields_win_on_conflict(self):
        fusion = ReciprocalRankFusion()
        keyword = [{"id": "A", "title": "keyword title", "genre": "sf", "score": 12.5}]
        vector = [{"id": "A", "title": "vector title", "score": 0.91}]

        doc = fusion.merge(keyword, vector)[0]

        assert doc["id"] == "A"
        assert doc["title"] == "vector title"
        assert doc["genre"] == "sf"
        assert doc["score"] == doc["rrf_score"]
        assert doc["keyword_score"] == 12.5
        assert doc["vector_score"] == 0.91

    def test_non_numeric_score_is_omitted(self):
        fusion = ReciprocalRankFusion()
        doc = fusion.merge([{"id": "A", "score": "high"}], [{"id": "A", "score": True}])[0]

        assert "keyword_score" not in doc
        assert "vector_score" not in doc
        assert doc["rrf_score"] == pytest.approx(2 / 61)

    def test_inputs_not_mutated(self):
        fusion = ReciprocalRankFusion()
        keyword = [{"id": "A", "title": "k", "score": 1.0}, {"id": "B", "tags": ["x"]}]
        vector = [{"id": "A", "title": "v", "score": 0.5}]
        keyword_before = copy.deepcopy(keyword)
        vector_before = copy.deepcopy(vector)

        results = fusion.merge(keyword, vector)
        results[0]["title"] = "changed"

        assert keyword == keyword_before
        assert vector == vector_before


def test_extract_score():
    assert extract_score({"score": 2}) == 2.0
    assert extract_score({"score": 0.5}) == 0.5
    assert extract_score({"score": "1.0"}) is None
    assert extract_score({"score": False}) is None
    assert extract_score({}) is None
