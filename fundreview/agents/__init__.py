"""Agents package for the fund document review stages."""

from fundreview.agents.classification_agent import ClassificationAgent
from fundreview.agents.analysis_agent import AnalysisAgent
from fundreview.agents.conversation_agent import ConversationAgent

__all__ = [
    "ClassificationAgent",
    "AnalysisAgent",
    "ConversationAgent",
]
