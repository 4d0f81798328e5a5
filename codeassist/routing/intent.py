"""
Intent Classifier（规则表，非 AI）。

规则：
- 固定顺序的规则表，从上到下匹配，**第一个命中的规则生效**（不回溯）
- 每条规则自带固定 confidence、toolToCall、priority、expectedOutputType
- 全部不命中时落到 `ask_question`（0.5，永远不需要确认）
- 对任意字符串（包括空串）都有且只有一个结果
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from codeassist.errors import parse_input
from codeassist.routing.models import ClassifierContext
from codeassist.routing.models import ClassifyRequest
from codeassist.routing.models import IntentClassification
from codeassist.routing.models import OutputType
from codeassist.routing.models import PrimaryIntent
from codeassist.routing.models import Priority
from codeassist.routing.models import PromptAnalysis
from codeassist.routing.models import RouteDecision
from codeassist.routing.models import RoutingInfo
from codeassist.routing.models import SubIntent
from codeassist.routing.models import ToolName

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 10

STOPWORDS = {
    "the", "and", "but", "for", "with", "are", "was", "were", "been", "have", "has", "had",
    "does", "did", "will", "would", "could", "should", "can", "may", "might", "must", "you",
    "she", "they", "him", "her", "them", "your", "his", "its", "our", "their", "this", "that",
}

ACTION_VERBS = (
    "create", "generate", "build", "make", "write", "add", "modify", "update", "edit", "change",
    "fix", "debug", "refactor", "improve", "optimize", "rename", "move", "delete", "remove",
    "explain", "show", "display",
)

LANGUAGE_HINTS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("python", ("python", "py", "django", "flask", "pandas", "numpy")),
    ("javascript", ("javascript", "js", "node", "react", "vue", "angular")),
    ("typescript", ("typescript", "ts", "tsx")),
    ("java", ("java", "spring", "maven")),
    ("html", ("html", "webpage", "website")),
    ("css", ("css", "styling", "styles")),
    ("sql", ("sql", "database", "query")),
)

FILE_TYPE_HINTS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("component", ("component", "ui", "interface")),
    ("script", ("script", "automation", "tool")),
    ("utility", ("utility", "helper", "utils")),
    ("service", ("service", "api", "client")),
    ("configuration", ("config", "settings", "setup")),
)

DOMAIN_HINTS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("web_scraping", ("scraper", "scraping", "extract", "crawl", "beautifulsoup", "selenium")),
    ("data_processing", ("data", "csv", "json", "analysis", "processing", "pandas")),
    ("web_development", ("website", "webpage", "frontend", "backend", "api")),
    ("ui_components", ("component", "button", "form", "modal", "ui", "interface")),
    ("automation", ("automation", "automate", "script", "task", "workflow")),
)

GENERATION_TARGETS: tuple[tuple[str, str], ...] = (
    ("scraper", "web_scraper"),
    ("component", "ui_component"),
    ("script", "script"),
    ("function", "function"),
    ("class", "class"),
    ("module", "module"),
    ("service", "service"),
    ("utility", "utility"),
)


def has_term(text: str, *terms: str) -> bool:
    """
    词级匹配（text 需已小写）。

    - `term*`：以 term 开头的词（`generat*` 命中 generate/generated/generating）
    - 其它：整词或整短语（`what does`）
    """
    for term in terms:
        if term.endswith("*"):
            pattern = rf"\b{re.escape(term[:-1])}"
        else:
            pattern = rf"\b{re.escape(term)}\b"
        if re.search(pattern, text):
            return True
    return False


@dataclass(frozen=True)
class IntentRule:
    intent: PrimaryIntent
    confidence: float
    tool: ToolName
    priority: Priority
    output_type: OutputType
    requires_confirmation: bool
    matches: Callable[[str, ClassifierContext], bool]
    sub_intent: Callable[[str, ClassifierContext], SubIntent]


def _is_filename_suggestion(text: str, ctx: ClassifierContext) -> bool:
    return (
        (has_term(text, "suggest*") and has_term(text, "name*", "filename*"))
        or (has_term(text, "rename*") and not has_term(text, "to"))
        or has_term(text, "what should i call", "what should i name", "name suggestions")
    )


def _is_file_operation(text: str, ctx: ClassifierContext) -> bool:
    return (
        (has_term(text, "rename*") and has_term(text, "to"))
        or (has_term(text, "move*") and has_term(text, "to", "into"))
        or (has_term(text, "delete*") and has_term(text, "file*", "folder*"))
        or (has_term(text, "creat*") and has_term(text, "folder*", "director*"))
    )


def _is_generation(text: str, ctx: ClassifierContext) -> bool:
    return (
        has_term(text, "generat*")
        or (has_term(text, "creat*") and has_term(text, "script*", "file*", "code"))
        or (has_term(text, "write", "writing") and has_term(text, "code", "function*", "script*"))
        or (has_term(text, "build*") and has_term(text, "component*", "module*"))
    )


def _is_modification(text: str, ctx: ClassifierContext) -> bool:
    return (
        has_term(text, "modif*", "updat*", "edit*")
        or (has_term(text, "chang*") and ctx.hasFileContent)
        or (has_term(text, "add", "adds", "adding") and has_term(text, "function*", "method*", "code"))
    )


def _is_explanation(text: str, ctx: ClassifierContext) -> bool:
    return has_term(text, "explain*", "what does", "how does") or (has_term(text, "what is") and ctx.hasFileContent)


def _is_debugging(text: str, ctx: ClassifierContext) -> bool:
    return has_term(text, "fix*", "debug*", "error*", "issue*", "problem*", "bug", "bugs")


def _is_refactoring(text: str, ctx: ClassifierContext) -> bool:
    return has_term(text, "refactor*", "improv*", "optimi*", "clean up")


def _filename_sub_intent(text: str, ctx: ClassifierContext) -> SubIntent:
    return SubIntent(
        operation="suggest_names",
        target="attached_item" if ctx.hasAttachedFiles else "current_file",
        context="User wants filename suggestions",
    )


def _file_operation_sub_intent(text: str, ctx: ClassifierContext) -> SubIntent:
    if has_term(text, "rename*"):
        operation = "rename"
    elif has_term(text, "move*"):
        operation = "move"
    elif has_term(text, "delete*"):
        operation = "delete"
    else:
        operation = "create_folder"
    target = detect_file_operation_target(text=text)
    return SubIntent(operation=operation, target=target, context=f"User wants to {operation} {target}")


def _generation_sub_intent(text: str, ctx: ClassifierContext) -> SubIntent:
    target = detect_generation_target(text=text)
    return SubIntent(operation="create_file", target=target, context=f"User wants to generate new {target}")


def _modification_sub_intent(text: str, ctx: ClassifierContext) -> SubIntent:
    return SubIntent(
        operation="modify_existing",
        target=ctx.currentFileName or "current_file",
        context="User wants to modify existing code",
    )


def _explanation_sub_intent(text: str, ctx: ClassifierContext) -> SubIntent:
    return SubIntent(operation="explain", target="code_or_concept", context="User wants explanation or clarification")


def _debug_sub_intent(text: str, ctx: ClassifierContext) -> SubIntent:
    return SubIntent(operation="fix_errors", target="problematic_code", context="User needs help fixing code issues")


def _refactor_sub_intent(text: str, ctx: ClassifierContext) -> SubIntent:
    return SubIntent(
        operation="refactor",
        target=ctx.currentFileName or "code",
        context="User wants to improve code quality",
    )


# 顺序即优先级：第一个命中的规则生效
RULES: tuple[IntentRule, ...] = (
    IntentRule(
        intent="suggest_filename",
        confidence=0.95,
        tool="filename_suggester",
        priority="medium",
        output_type="filename_suggestions",
        requires_confirmation=False,
        matches=_is_filename_suggestion,
        sub_intent=_filename_sub_intent,
    ),
    IntentRule(
        intent="file_operation",
        confidence=0.9,
        tool="file_operations",
        priority="high",
        output_type="operation_confirmation",
        requires_confirmation=True,
        matches=_is_file_operation,
        sub_intent=_file_operation_sub_intent,
    ),
    IntentRule(
        intent="generate_code",
        confidence=0.9,
        tool="code_generator",
        priority="high",
        output_type="code_content",
        requires_confirmation=False,
        matches=_is_generation,
        sub_intent=_generation_sub_intent,
    ),
    IntentRule(
        intent="modify_code",
        confidence=0.85,
        tool="code_modifier",
        priority="high",
        output_type="code_content",
        requires_confirmation=False,
        matches=_is_modification,
        sub_intent=_modification_sub_intent,
    ),
    IntentRule(
        intent="explain_code",
        confidence=0.8,
        tool="code_explainer",
        priority="low",
        output_type="explanation_text",
        requires_confirmation=False,
        matches=_is_explanation,
        sub_intent=_explanation_sub_intent,
    ),
    IntentRule(
        intent="debug_code",
        confidence=0.85,
        tool="code_modifier",
        priority="high",
        output_type="code_content",
        requires_confirmation=False,
        matches=_is_debugging,
        sub_intent=_debug_sub_intent,
    ),
    IntentRule(
        intent="refactor_code",
        confidence=0.8,
        tool="code_modifier",
        priority="medium",
        output_type="code_content",
        requires_confirmation=False,
        matches=_is_refactoring,
        sub_intent=_refactor_sub_intent,
    ),
)

FALLBACK_CONFIDENCE = 0.5


def classify(prompt: str, context: ClassifierContext | None = None) -> IntentClassification:
    """
    把一条自由文本指令分类成一个 intent。

    - 输入：指令文本、编辑器上下文（缺省全部为 False/None）
    - 输出：`IntentClassification`（永远有结果，confidence ∈ [0, 1]）
    """
    ctx = context or ClassifierContext()
    text = prompt.lower()
    analysis = analyze_prompt(prompt=prompt)

    for rule in RULES:
        if not rule.matches(text, ctx):
            continue
        logger.info(f"Intent classified: intent={rule.intent}, confidence={rule.confidence}")
        return IntentClassification(
            primaryIntent=rule.intent,
            confidence=rule.confidence,
            subIntent=rule.sub_intent(text, ctx),
            routingInfo=RoutingInfo(
                toolToCall=rule.tool,
                priority=rule.priority,
                requiresUserConfirmation=rule.requires_confirmation,
                expectedOutputType=rule.output_type,
            ),
            analysis=analysis,
        )

    logger.info("Intent classified: intent=ask_question (fallback)")
    return IntentClassification(
        primaryIntent="ask_question",
        confidence=FALLBACK_CONFIDENCE,
        subIntent=SubIntent(),
        routingInfo=RoutingInfo(
            toolToCall="general_assistant",
            priority="medium",
            requiresUserConfirmation=False,
            expectedOutputType="explanation_text",
        ),
        analysis=analysis,
    )


def classify_request(request: ClassifyRequest | Mapping[str, object]) -> IntentClassification:
    parsed = parse_input(ClassifyRequest, request)
    return classify(prompt=parsed.prompt, context=parsed.context)


def route_for(classification: IntentClassification, context: ClassifierContext | None = None) -> RouteDecision:
    """intent -> 需要经过的阶段；file_operation 交给外部执行器，这里什么都不做。"""
    ctx = context or ClassifierContext()
    intent = classification.primaryIntent
    if intent == "file_operation":
        return RouteDecision(needsRetrieval=False, needsGeneration=False, needsMerge=False)
    if intent == "suggest_filename":
        return RouteDecision(needsRetrieval=False, needsGeneration=True, needsMerge=False)
    if intent == "generate_code":
        return RouteDecision(needsRetrieval=True, needsGeneration=True, needsMerge=ctx.hasFileContent)
    if intent in ("modify_code", "debug_code", "refactor_code"):
        return RouteDecision(needsRetrieval=True, needsGeneration=True, needsMerge=True)
    if intent == "explain_code":
        return RouteDecision(needsRetrieval=True, needsGeneration=True, needsMerge=False)
    return RouteDecision(needsRetrieval=ctx.hasFileContent or ctx.hasAttachedFiles, needsGeneration=True, needsMerge=False)


def analyze_prompt(prompt: str) -> PromptAnalysis:
    text = prompt.lower()
    return PromptAnalysis(
        keywords=extract_prompt_keywords(prompt=prompt),
        actionVerbs=[verb for verb in ACTION_VERBS if has_term(text, f"{verb}*")],
        programmingLanguage=_first_hint(text=text, table=LANGUAGE_HINTS),
        fileType=_first_hint(text=text, table=FILE_TYPE_HINTS),
        domainContext=_first_hint(text=text, table=DOMAIN_HINTS),
    )


def extract_prompt_keywords(prompt: str) -> list[str]:
    words = re.sub(r"[^a-z0-9\s]", " ", prompt.lower()).split()
    return [word for word in words if len(word) > 2 and word not in STOPWORDS][:MAX_KEYWORDS]


def detect_generation_target(text: str) -> str:
    for needle, target in GENERATION_TARGETS:
        if has_term(text, f"{needle}*"):
            return target
    return "code"


def detect_file_operation_target(text: str) -> str:
    if has_term(text, "folder*", "director*"):
        return "folder"
    if has_term(text, "file*"):
        return "file"
    if has_term(text, "script*"):
        return "script_file"
    if has_term(text, "component*"):
        return "component_file"
    return "item"


def _first_hint(text: str, table: tuple[tuple[str, tuple[str, ...]], ...]) -> str | None:
    for value, needles in table:
        if has_term(text, *needles):
            return value
    return None
