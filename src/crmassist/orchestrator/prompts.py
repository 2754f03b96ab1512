"""Prompt templates for the classifier, query answers and coaching answers."""

import json
from typing import Any

from crmassist.memory.conversation import ConversationTurn

CLASSIFIER_SYSTEM_PROMPT = """You are a conversation router for a CRM AI assistant. Your task is to classify user messages into one of two modes:

1. QUERY mode: User wants to retrieve data, see information, get facts, or query the database
   Examples: "How many contacts do I have?", "Show me my activities", "List all accounts", "What's my sales performance?"

2. COACH mode: User wants advice, guidance, strategic help, or coaching
   Examples: "How can I improve my sales?", "What should I do next?", "Give me tips", "Help me understand this"

Consider the conversation history to understand context. Follow-up questions often relate to the previous mode.

Respond with JSON:
{
  "mode": "QUERY" or "COACH",
  "confidence": 0.0 to 1.0,
  "reason": "brief explanation"
}"""

QUERY_SYSTEM_PROMPT = """You are a precise CRM data analyst. Your role is to provide accurate, data-driven answers based on database query results.

User Context:
- Name: {name}
- Role: {role}

Guidelines:
1. Be accurate and precise - only use data from the provided context
2. Cite specific numbers, dates, and facts from the query results
3. If data is missing or unavailable, clearly state that
4. NEVER hallucinate or invent data - if you don't have the information, say so
5. Do not introduce any number that does not appear in the context
6. If the query returned no results, explain what that means

Response Format:
- Use markdown tables for structured data
- Use **bold** for key metrics
- Cite the query results as your source"""

COACH_SYSTEM_PROMPT = """You are an expert CRM sales coach and advisor. Your role is to provide strategic guidance, encouragement, and actionable tips to help sales professionals improve their performance.

User Context:
- Name: {name}
- Role: {role}
{stats_line}
Guidelines:
1. Be encouraging and supportive - acknowledge their efforts
2. Provide specific, actionable advice based on the data
3. Focus on strategic insights, not just numbers
4. Suggest concrete next steps they can take
5. Be concise but comprehensive
6. NEVER make up data or statistics - only use what's provided in the context

Response Format:
- Use markdown headers (##) for main sections
- Use bullet points (-) for actionable items
- Use **bold** for emphasis"""

QUERY_INSTRUCTION = (
    "Based on the above query results, provide a clear, accurate answer to the question. "
    "Cite specific data points and explain what the results mean."
)

COACH_INSTRUCTION = (
    "Based on the above data, provide strategic coaching advice, actionable recommendations, "
    "and encouragement. Focus on what the user can do to improve their performance."
)


def _speaker(turn: ConversationTurn) -> str:
    return "User" if turn.role == "user" else "Assistant"


def build_classifier_prompt(message: str, history: list[ConversationTurn], window: int = 3) -> str:
    prompt = f'Message to classify: "{message}"'
    if history:
        lines = "\n".join(f"{_speaker(t)}: {t.content}" for t in history[-window:])
        prompt += f"\n\nConversation History:\n{lines}"
    return prompt + "\n\nClassify this message and return JSON with mode, confidence, and reason."


def build_system_prompt(mode: str, caller_id: str, role: str, stats: dict[str, Any] | None = None) -> str:
    if mode == "COACH":
        stats_line = f"- Recent Activity: {json.dumps(stats, default=str)}\n" if stats else ""
        return COACH_SYSTEM_PROMPT.format(name=caller_id, role=role, stats_line=stats_line)
    return QUERY_SYSTEM_PROMPT.format(name=caller_id, role=role)


def build_user_prompt(
    question: str,
    context: str,
    mode: str,
    history: list[ConversationTurn] | None = None,
    window: int = 5,
) -> str:
    """Question, recent history, then the retrieved context and the instruction."""
    prompt = f"Question: {question}\n\n"
    if history:
        prompt += "Previous Conversation:\n"
        for turn in history[-window:]:
            prompt += f"{_speaker(turn)}: {turn.content}\n\n"
        prompt += "\n"
    prompt += f"Database Context and Query Results:\n{context}\n\n"
    prompt += COACH_INSTRUCTION if mode == "COACH" else QUERY_INSTRUCTION
    return prompt
