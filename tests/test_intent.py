from __future__ import annotations

import pytest

from codeassist.errors import SchemaViolationError
from codeassist.routing.intent import classify
from codeassist.routing.intent import classify_request
from codeassist.routing.intent import has_term
from codeassist.routing.intent import route_for
from codeassist.routing.models import ClassifierContext


def test_rename_is_file_operation_requiring_confirmation() -> None:
    result = classify("rename file.ts to util.ts")
    assert result.primaryIntent == "file_operation"
    assert result.subIntent.operation == "rename"
    assert result.subIntent.target == "file"
    assert result.routingInfo.requiresUserConfirmation is True
    assert result.routingInfo.toolToCall == "file_operations"
    assert result.confidence == 0.9


def test_rename_without_destination_suggests_filename() -> None:
    result = classify("rename this file", ClassifierContext(hasAttachedFiles=True))
    assert result.primaryIntent == "suggest_filename"
    assert result.subIntent.target == "attached_item"
    assert result.routingInfo.requiresUserConfirmation is False


def test_create_folder_is_file_operation_not_generation() -> None:
    result = classify("create a folder for this code")
    assert result.primaryIntent == "file_operation"
    assert result.subIntent.operation == "create_folder"
    assert result.subIntent.target == "folder"


@pytest.mark.parametrize(
    ("prompt", "intent"),
    [
        ("Generate a python scraper for product prices", "generate_code"),
        ("write a function that parses csv", "generate_code"),
        ("update the login handler to log failures", "modify_code"),
        ("explain this code", "explain_code"),
        ("why does this throw an error?", "debug_code"),
        ("refactor the billing module", "refactor_code"),
        ("what time is it in Tokyo", "ask_question"),
    ],
)
def test_rule_table(prompt: str, intent: str) -> None:
    assert classify(prompt).primaryIntent == intent


def test_context_dependent_rules() -> None:
    assert classify("change the greeting").primaryIntent == "ask_question"
    assert classify("change the greeting", ClassifierContext(hasFileContent=True)).primaryIntent == "modify_code"
    assert classify("what is this", ClassifierContext(hasFileContent=True)).primaryIntent == "explain_code"


def test_word_level_matching() -> None:
    assert has_term("fix the bug", "fix*")
    assert not has_term("prefix the names", "fix*")
    assert has_term("what does it do", "what does")
    assert not has_term("tomato", "to")


@pytest.mark.parametrize("prompt", ["", "   ", "!!!", "ñandú 🚀", "a" * 5000])
def test_classifier_is_total(prompt: str) -> None:
    result = classify(prompt)
    assert 0 <= result.confidence <= 1
    assert result.primaryIntent == "ask_question"
    assert result.confidence == 0.5


def test_analysis() -> None:
    result = classify("Generate a React component with a submit button")
    assert result.subIntent.target == "ui_component"
    assert result.analysis.programmingLanguage == "javascript"
    assert result.analysis.fileType == "component"
    assert result.analysis.domainContext == "ui_components"
    assert "generate" in result.analysis.actionVerbs
    assert result.analysis.keywords[:3] == ["generate", "react", "component"]


def test_route_for() -> None:
    rename = route_for(classify("rename file.ts to util.ts"))
    assert (rename.needsRetrieval, rename.needsGeneration, rename.needsMerge) == (False, False, False)

    ctx = ClassifierContext(hasFileContent=True)
    modify = route_for(classify("update the handler", ctx), ctx)
    assert (modify.needsRetrieval, modify.needsGeneration, modify.needsMerge) == (True, True, True)

    generate = route_for(classify("generate a script"))
    assert (generate.needsRetrieval, generate.needsMerge) == (True, False)

    question = route_for(classify("hello there"))
    assert (question.needsRetrieval, question.needsGeneration) == (False, True)


def test_classify_request_validates_input() -> None:
    assert classify_request({"prompt": "explain this"}).primaryIntent == "explain_code"
    with pytest.raises(SchemaViolationError):
        classify_request({"context": {}})
    with pytest.raises(SchemaViolationError):
        classify_request({"prompt": "x", "context": {"hasFileContent": "maybe"}})
