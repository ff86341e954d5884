"""
Deterministic tool planner.

Maps (category, keywords, strategy) to an ordered list of index lookups. The
plan always ends with a career lookup unless a call that already yields
careers (trace_pathway, get_careers) is present. Career-goal CIP codes are
searched alongside the keywords, and on their own only when there are no
keywords.
"""
import re
from typing import List, Optional, Union

from pathways.core.logging import get_logger
from pathways.services.ai.schema import (
    KeywordSet,
    QueryCategory,
    SearchStrategy,
    ToolCall,
    ToolName,
    ToolPlan,
)

logger = get_logger(__name__)

CIP_2DIGIT_RE = re.compile(r"^\d{2}$")
CAREER_YIELDING_TOOLS = {ToolName.GET_CAREERS, ToolName.TRACE_PATHWAY, ToolName.TRACE_FROM_HS}


def plan_tools(
    category: Union[QueryCategory, str],
    keyword_set: KeywordSet,
    strategy: Optional[SearchStrategy] = None,
) -> ToolPlan:
    """
    Build the tool plan for one attempt.

    Raises:
        ValueError: if category is not a known query category
    """
    category = QueryCategory(category)
    strategy = strategy or SearchStrategy()
    keywords = tuple(keyword_set.keywords)
    target_codes = tuple(keyword_set.target_cip_codes)
    broad_codes = tuple(k for k in keywords if CIP_2DIGIT_RE.match(k))

    calls: List[ToolCall] = []
    if target_codes and not keywords:
        reasoning = "Career goals map to CIP codes"
        calls.append(ToolCall(name=ToolName.GET_COLLEGE_BY_CIP, args=target_codes))
        calls.append(ToolCall(name=ToolName.GET_CAREERS, args=target_codes))
    elif broad_codes:
        reasoning = "Keywords contain 2-digit CIP codes"
        calls.append(ToolCall(name=ToolName.EXPAND_CIP, args=broad_codes))
        calls.append(ToolCall(name=ToolName.GET_COLLEGE_BY_CIP, args=broad_codes))
    elif keywords:
        reasoning = "Trace pathway from keywords"
        calls.append(ToolCall(name=ToolName.TRACE_PATHWAY, args=keywords))
        if strategy.include_related_fields or strategy.broaden_scope:
            reasoning = "Trace pathway and search related fields"
            calls.append(ToolCall(name=ToolName.SEARCH_HS_PROGRAMS, args=keywords))
            calls.append(ToolCall(name=ToolName.SEARCH_COLLEGE_PROGRAMS, args=keywords))
    else:
        reasoning = "No keywords, career overview only"

    if target_codes and keywords and not any(call.name == ToolName.GET_COLLEGE_BY_CIP for call in calls):
        reasoning = f"{reasoning}, plus career-goal CIP codes"
        calls.insert(0, ToolCall(name=ToolName.GET_COLLEGE_BY_CIP, args=target_codes))

    if not any(call.name in CAREER_YIELDING_TOOLS for call in calls):
        calls.append(ToolCall(name=ToolName.GET_CAREERS, args=("all",)))

    plan = ToolPlan(calls=tuple(calls), reasoning=reasoning)
    logger.info(
        "tool_plan_created",
        category=category.value,
        tools=plan.tool_names,
        reasoning=reasoning,
    )
    return plan
