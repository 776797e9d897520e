"""Prompt builders for the AI endpoints."""

from typing import Optional, Sequence

from anonqa.models.content import Question

CANDIDATE_PREFIX_CHARS = 50


def _has_text(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def build_answer_prompt(question_content: str, question_title: Optional[str] = None, context: Optional[str] = None) -> str:
    title_block = f"Title:\n`{question_title}`\n\n" if _has_text(question_title) else ""
    context_block = f"\nAdditional Context:\n`{context}`\n" if _has_text(context) else ""
    return f"""
**Role:** You are a helpful AI assistant.

**Objective:**
Provide a comprehensive, clear, and helpful answer to the given `[QUESTION]`.
If `[ADDITIONAL_CONTEXT]` is provided, use it to make the answer more relevant and accurate.

**Instructions:**

1.  Analyze the `[QUESTION]` thoroughly.
2.  If `[ADDITIONAL_CONTEXT]` is available, use it to tailor your response.
3.  The answer should be well-structured and easy to understand.
4.  Keep the language of the original `[QUESTION]`. Do not translate.
5.  **Output:** Provide *only* the answer text, without any preamble like "Here's an answer:".

**Input:**

{title_block}Question:
`{question_content}`
{context_block}
**Your Answer:**
"""


def build_question_prompt(topic: str, context: Optional[str] = None, count: int = 3) -> str:
    existing = context if _has_text(context) else "None provided."
    noun = "question" if count == 1 else "questions"
    return f"""
**Role:** You are an AI assistant specialized in question generation.

**Objective:**
Generate {count} concise and relevant {noun} about a given `[TOPIC]`.
If `[CONTEXT]` is provided, the new {noun} should refine it, dig deeper, or follow up on it while staying on the `[TOPIC]`.

**Instructions:**

1.  Each question must be 1-2 sentences long and distinct from the others.
2.  Do NOT simply rephrase the `[CONTEXT]`.
3.  **Language Strictness (Crucial):** Write in the *exact same language* as the `[TOPIC]`.
4.  **Output:** One question per line, without numbering, preamble or explanation.

**Input:**

Topic: `{topic}`
Context: `{existing}`

**Your Generated {noun.capitalize()}:**
"""


def candidate_label(question: Question) -> str:
    """Line used to show a candidate to the model (and to match its reply)."""
    if _has_text(question.title):
        return question.title.strip()
    return question.content.strip()[:CANDIDATE_PREFIX_CHARS]


def build_similar_prompt(question_text: str, candidates: Sequence[Question], limit: int) -> str:
    listing = "\n".join(f"- {candidate_label(q)}" for q in candidates)
    return f"""
Context:
You are an AI assistant helping users find existing questions similar to one they are about to ask.
Similar questions cover the same topic, ask about related concepts, or seek the same information.

Current Question:
"{question_text}"

Existing Questions:
{listing}

Task:
Select at most {limit} questions from "Existing Questions" that are most similar to the "Current Question".
Copy each selected question exactly as written above, one per line.
Do not number them or add any other text. If none are similar, reply with an empty message.
"""
