"""
Feedback subpackage -- user relevance votes turned into score boosts.
"""

from rag_engine.feedback.relevance import RelevanceBoost, RelevanceStore
