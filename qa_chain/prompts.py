"""Prompt templates for question rewriting and document combination.

Templates use ``str.format`` placeholders. A caller supplied system prompt is
inserted as literal text: any braces it contains are escaped so they never
become placeholders.
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from typing import FrozenSet, Optional


@dataclass(frozen=True)
class PromptTemplate:
    """A template string plus the placeholder names it expects."""

    template: str
    input_variables: FrozenSet[str] = field(default=frozenset())

    def __post_init__(self) -> None:
        if not self.input_variables:
            object.__setattr__(self, "input_variables", _placeholders(self.template))

    def format(self, **values: object) -> str:
        missing = self.input_variables - values.keys()
        if missing:
            raise KeyError(f"Missing prompt variables: {', '.join(sorted(missing))}")
        return self.template.format(**{name: values[name] for name in self.input_variables})


def _placeholders(template: str) -> FrozenSet[str]:
    return frozenset(name for _, name, _, _ in string.Formatter().parse(template) if name)


def _literal(text: str) -> str:
    return text.replace("{", "{{").replace("}", "}}")


CONDENSE_QUESTION_TEMPLATE = """Given the following conversation and a follow up question, rephrase the follow up question to be a standalone question, answer in the same language as the follow up question. include it in the standalone question.
If the follow up question seems to not require further information, like greeting, thanking, small talk, acknowledging answer etc., keep the standalone question same as the original.

Chat History:
{chat_history}
Follow Up Input: {question}
Standalone question:"""

DEFAULT_QA_TEMPLATE = """Use the following pieces of context to answer the question at the end. If you don't know the answer, just say that you don't know, don't try to make up an answer.

{context}

Question: {question}
Helpful Answer:"""

QA_TEMPLATE = """
--START OF USER MESSAGE:
{question}
--END OF USER MESSAGE--
--START OF CONTEXT DATA:
{context}
--END OF CONTEXT DATA--
NOW MAKE A DECISION:
If the user message seems to not require further information, like greeting, thanking, small talk, acknowledging your answer etc., respond naturally (e.g. "you are welcome", "have a great day") and ignore the rest of this prompt.
OTHERWISE:
If the user message is not related to the context data, say you don't know the answer.
If the user message is relevant to the context data, answer it using the context data and not prior knowledge."""

MAP_TEMPLATE = """Use the following portion of a long document to see if any of the text is relevant to answer the question.
Return any relevant text verbatim.
{context}
Question: {question}
Relevant text, if any:"""

DEFAULT_MAP_REDUCE_TEMPLATE = """Given the following extracted parts of a long document and a question, create a final answer.
If you don't know the answer, just say that you don't know. Don't try to make up an answer.

{summaries}

Question: {question}
Helpful Answer:"""

MAP_REDUCE_TEMPLATE = """Given the following extracted parts of a long document and a question, create a final answer.

{summaries}

Question: {question}
Helpful Answer:"""

REFINE_TEMPLATE = """The original question is as follows: {question}
We have provided an existing answer: {existing_answer}
We have the opportunity to refine the existing answer (only if needed) with some more context below.
------------
{context}
------------
Given the new context, refine the original answer to better answer the question.
If you can't find answer from the context, return the original answer."""

CONDENSE_QUESTION_PROMPT = PromptTemplate(CONDENSE_QUESTION_TEMPLATE)
MAP_PROMPT = PromptTemplate(MAP_TEMPLATE)
REFINE_PROMPT = PromptTemplate(REFINE_TEMPLATE)


def stuff_prompt(system_prompt: Optional[str] = None) -> PromptTemplate:
    if system_prompt:
        return PromptTemplate(f"{_literal(system_prompt)}\n{QA_TEMPLATE}")
    return PromptTemplate(DEFAULT_QA_TEMPLATE)


def map_reduce_prompt(system_prompt: Optional[str] = None) -> PromptTemplate:
    if system_prompt:
        return PromptTemplate(f"{_literal(system_prompt)}\n{MAP_REDUCE_TEMPLATE}")
    return PromptTemplate(DEFAULT_MAP_REDUCE_TEMPLATE)


def refine_question_prompt(system_prompt: Optional[str] = None) -> PromptTemplate:
    """Initial refine prompt; the system prompt becomes the instruction line."""
    header = "Context information is below. \n---------------------\n{context}\n---------------------\n"
    if system_prompt:
        body = (
            f"Given the context information and not prior knowledge, {_literal(system_prompt)}\n"
            "Answer the question: {question}.\nAnswer:"
        )
    else:
        body = "Given the context information and not prior knowledge, answer the question: {question}.\nAnswer:"
    return PromptTemplate(header + body)
