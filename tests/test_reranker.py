"""Tests for the LLM reranker, its lexical boosts and the repacker."""

import pytest

from helpers import ScriptedGenerator
from rag_engine.cancellation import CancellationToken
from rag_engine.errors import ModelUnavailable, QueryCancelled
from rag_engine.index.base import SearchResult
from rag_engine.retrieval.reranker import Reranker, lexical_boost, reverse_repack


def hit(id_, content, score=0.5):
    return SearchResult(id=id_, score=score, content=content, small_content=content)


class FixedGenerator:
    def __init__(self, output):
        self.output = output

    def generate(self, prompt, **kwargs):
        return self.output


class ExplodingGenerator(ScriptedGenerator):
    def generate(self, prompt, **kwargs):
        if "boom" in prompt:
            raise RuntimeError("model crashed")
        return super().generate(prompt, **kwargs)


class OfflineGenerator:
    def generate(self, prompt, **kwargs):
        raise ModelUnavailable("reranker server is down")


class TestLexicalBoost:
    def test_phrase_match_doubles(self):
        assert lexical_boost("Inled Group", "About inled group lamps", 0.4) == pytest.approx(0.8)

    def test_word_overlap(self):
        # words: what, is, inled -> only "inled" is long enough and present
        assert lexical_boost("What is Inled?", "inled lamps", 1.0) == pytest.approx(1 + (1 / 3) * 0.5)

    def test_short_words_never_count(self):
        assert lexical_boost("is it on", "it is on the table", 1.0) == pytest.approx(1.0)

    def test_no_overlap(self):
        assert lexical_boost("saffron rice", "LED luminaires", 0.3) == pytest.approx(0.3)


class TestReranker:
    def test_relevant_documents_rise(self):
        results = [
            hit("paella", "Paella needs saffron.", score=0.9),
            hit("inled", "Inled Group is a lighting company.", score=0.5),
        ]
        ranked = Reranker(ScriptedGenerator()).rerank("What is Inled Group?", results)

        assert [r.id for r in ranked] == ["inled", "paella"]
        # inled: 0.5 * (1 + 2/4 * 0.5) * 1.0 ; paella: 0.9 * 1.0 * 0.05
        assert ranked[0].rerank_score == pytest.approx(0.625)
        assert ranked[1].rerank_score == pytest.approx(0.045)

    def test_prompt_and_sampling(self):
        generator = ScriptedGenerator()
        Reranker(generator).rerank("lamps", [hit("a", "Inled lamps")])
        assert generator.prompts == ["Query: lamps Document: Inled lamps Relevant:"]
        assert generator.kwargs[0]["do_sample"] is False
        assert generator.kwargs[0]["max_new_tokens"] == 2

    @pytest.mark.parametrize("output,expected", [
        ("Yes.", 1.0),
        ("TRUE", 1.0),
        ("false", 0.05),
        ("truest", 0.05),
        ("", 0.05),
    ])
    def test_verdict_parsing(self, output, expected):
        ranked = Reranker(FixedGenerator(output)).rerank("zzz", [hit("a", "content", score=1.0)])
        assert ranked[0].rerank_score == pytest.approx(expected)

    def test_non_text_output_scores_zero(self):
        ranked = Reranker(FixedGenerator(None)).rerank("zzz", [hit("a", "content", score=1.0)])
        assert ranked[0].rerank_score == 0.0

    def test_failure_scores_document_zero_and_continues(self):
        results = [
            hit("broken", "boom Inled Group", score=0.9),
            hit("fine", "Inled Group lamps", score=0.2),
        ]
        ranked = Reranker(ExplodingGenerator()).rerank("Inled Group", results)
        assert [r.id for r in ranked] == ["fine", "broken"]
        assert ranked[1].rerank_score == 0.0

    def test_unavailable_model_is_fatal(self):
        results = [hit("a", "Inled Group lamps"), hit("b", "Inled catalogue")]
        with pytest.raises(ModelUnavailable):
            Reranker(OfflineGenerator()).rerank("Inled Group", results)

    def test_ties_break_on_fusion_score(self):
        results = [hit("low", "same text", score=0.2), hit("high", "same text", score=0.3)]
        ranked = Reranker(FixedGenerator("false")).rerank("zzz", results)
        # rerank scores differ only through the fusion score here
        assert [r.id for r in ranked] == ["high", "low"]

    def test_only_top_k_are_scored(self):
        generator = ScriptedGenerator()
        results = [hit(str(i), f"Inled doc {i}") for i in range(5)]
        ranked = Reranker(generator).rerank("Inled", results, top_k=2)
        assert len(ranked) == 2
        assert len(generator.prompts) == 2

    def test_cancellation(self):
        token = CancellationToken()
        token.cancel()
        generator = ScriptedGenerator()
        with pytest.raises(QueryCancelled):
            Reranker(generator).rerank("Inled", [hit("a", "Inled")], cancel=token)
        assert generator.prompts == []


class TestReverseRepack:
    def test_best_goes_last(self):
        results = [hit("1", "a"), hit("2", "b"), hit("3", "c")]
        assert [r.id for r in reverse_repack(results)] == ["3", "2", "1"]
        assert [r.id for r in results] == ["1", "2", "3"]

    def test_involution(self):
        results = [hit("1", "a"), hit("2", "b")]
        assert reverse_repack(reverse_repack(results)) == results


def test_exact_phrase_beats_partial_overlap():
    results = [
        hit("partial", "Inled lamps and a separate group of products", score=0.5),
        hit("phrase", "About Inled Group and its lamps", score=0.5),
    ]
    ranked = Reranker(ScriptedGenerator()).rerank("Inled Group", results)
    assert [r.id for r in ranked] == ["phrase", "partial"]
    assert ranked[0].rerank_score == pytest.approx(1.0)
    assert ranked[1].rerank_score == pytest.approx(0.75)
