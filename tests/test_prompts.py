"""Tests for prompt templates and their system-prompt variants."""

import pytest

from qa_chain.prompts import (
    CONDENSE_QUESTION_PROMPT,
    DEFAULT_QA_TEMPLATE,
    MAP_PROMPT,
    REFINE_PROMPT,
    PromptTemplate,
    map_reduce_prompt,
    refine_question_prompt,
    stuff_prompt,
)

SYSTEM = 'Your name is "AI Assistant". If the answer is not included, say exactly "Hmm, I am not sure."'


def test_condense_prompt_placeholders():
    assert CONDENSE_QUESTION_PROMPT.input_variables == {"chat_history", "question"}
    assert "keep the standalone question same as the original" in CONDENSE_QUESTION_PROMPT.template


def test_map_reduce_without_system_prompt_uses_summaries_only():
    prompt = map_reduce_prompt()
    assert prompt.input_variables == {"summaries", "question"}
    assert "{context}" not in prompt.template
    assert "If you don't know the answer" in prompt.template


def test_map_reduce_with_system_prompt_drops_refusal_line():
    prompt = map_reduce_prompt(SYSTEM)
    assert prompt.template.startswith(SYSTEM + "\n")
    assert "If you don't know the answer" not in prompt.template
    assert prompt.input_variables == {"summaries", "question"}


def test_stuff_default_template_refuses_when_unsure():
    prompt = stuff_prompt()
    assert prompt.template == DEFAULT_QA_TEMPLATE
    assert prompt.input_variables == {"context", "question"}
    assert "just say that you don't know" in prompt.template


def test_stuff_with_system_prompt_is_prefixed():
    prompt = stuff_prompt(SYSTEM)
    assert prompt.template.startswith(SYSTEM + "\n")
    assert prompt.input_variables == {"context", "question"}
    rendered = prompt.format(context="CTX", question="Q?")
    assert rendered.startswith(SYSTEM)
    assert "CTX" in rendered and "Q?" in rendered


def test_refine_question_prompt_branches_on_system_prompt():
    plain = refine_question_prompt()
    custom = refine_question_prompt("answer like a pirate.")

    assert plain.input_variables == custom.input_variables == {"context", "question"}
    assert "not prior knowledge, answer the question: {question}." in plain.template
    assert "not prior knowledge, answer like a pirate.\nAnswer the question: {question}." in custom.template


def test_refine_and_map_prompt_placeholders():
    assert REFINE_PROMPT.input_variables == {"context", "question", "existing_answer"}
    assert MAP_PROMPT.input_variables == {"context", "question"}


def test_system_prompt_braces_stay_literal():
    prompt = stuff_prompt('Reply as JSON like {"answer": "..."}')
    assert prompt.input_variables == {"context", "question"}
    rendered = prompt.format(context="c", question="q")
    assert '{"answer": "..."}' in rendered


def test_format_reports_missing_variables():
    with pytest.raises(KeyError, match="existing_answer"):
        REFINE_PROMPT.format(context="c", question="q")


def test_format_ignores_extra_values():
    template = PromptTemplate("Hello {name}")
    assert template.format(name="Ada", unused="x") == "Hello Ada"
