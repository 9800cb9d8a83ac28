"""Prompt builders for the enhancement service.

Each builder returns OpenAI-format chat messages. Every prompt ends with the
exact JSON shape expected back; the client validates replies against the
matching model in ``enhancement.schemas``.
"""

from __future__ import annotations

import json

from goal_tracker.enhancement.schemas import (
    BreakdownRequest,
    GoalContext,
    GoalEnhancementRequest,
    TaskAnalysisRequest,
    TimeEstimateRequest,
    ToolsRequest,
)

_JSON_ONLY = "Respond ONLY with valid JSON, no additional text."


def _context_line(context: GoalContext | None) -> str:
    if context is None:
        return "Standalone task"
    if context.goal_category:
        return f'Part of goal "{context.goal_title}" ({context.goal_category})'
    return f'Part of goal "{context.goal_title}"'


def goal_enhancement_messages(request: GoalEnhancementRequest) -> list[dict[str, str]]:
    prompt = f"""You are an expert productivity coach and goal-setting assistant. Enhance this goal with intelligent suggestions.

Goal Details:
- Title: "{request.title}"
- Description: "{request.description}"
- Category: "{request.category}"
- Deadline: "{request.deadline.isoformat()}"

Please provide:
1. 3-5 specific, actionable steps to achieve this goal
2. 3-4 meaningful milestones with realistic dates before the deadline
3. A brief insight about the goal

Requirements:
- Actions should be specific and measurable
- Include estimated impact scores (1-30)
- Milestones should be evenly distributed before the deadline

Respond with a JSON object in this exact format:
{{
  "actions": [
    {{"title": "Specific action step", "impact": 25, "category": "research|planning|execution|outreach|analysis"}}
  ],
  "milestones": [
    {{"title": "Milestone name", "description": "What this represents", "targetDate": "YYYY-MM-DD"}}
  ],
  "aiInsight": "Personalized insight about achieving this goal"
}}

{_JSON_ONLY}"""
    return [
        {
            "role": "system",
            "content": "You are a goal-setting expert. Always respond with valid JSON.",
        },
        {"role": "user", "content": prompt},
    ]


def _breakdown_instructions(depth_level: int) -> str:
    if depth_level == 0:
        return (
            "- Break this main action into logical phases/components\n"
            "- Each step should be a distinct workstream that could take 30-120 minutes\n"
            "- Focus on major deliverables and key activities"
        )
    if depth_level == 1:
        return (
            "- Break this sub-action into very specific tasks\n"
            "- Each micro-task should take 15-45 minutes\n"
            "- Include exact tools, websites, or resources to use"
        )
    return (
        "- Create ultra-specific micro-steps\n"
        "- Each step should take 5-20 minutes\n"
        "- Make it so specific that anyone could follow the steps"
    )


def breakdown_messages(request: BreakdownRequest) -> list[dict[str, str]]:
    notes = f"\nNotes: {request.notes}" if request.notes else ""
    prompt = f"""Break down this action into 3-5 very specific, actionable micro-tasks.

CONTEXT:
{_context_line(request.goal_context)}
Action to break down: "{request.title}"{notes}
Breakdown level: {request.depth_level} (0 = main action, 1+ = sub-actions, 2+ = micro-tasks)

INSTRUCTIONS:
{_breakdown_instructions(request.depth_level)}

Respond with a JSON object in this exact format:
{{
  "subActions": [
    {{
      "title": "Very specific action with tools/resources mentioned",
      "description": "Detailed explanation including exact steps",
      "estimatedMinutes": 25,
      "category": "research|planning|execution|review|communication",
      "tools": ["Specific tool or website name"],
      "deliverable": "Exactly what you'll have when done"
    }}
  ],
  "reasoning": "Why this breakdown approach makes sense"
}}

{_JSON_ONLY}"""
    return [
        {
            "role": "system",
            "content": (
                "You are a productivity expert who breaks down complex tasks into "
                "manageable steps. Always respond with valid JSON."
            ),
        },
        {"role": "user", "content": prompt},
    ]


def time_estimate_messages(request: TimeEstimateRequest) -> list[dict[str, str]]:
    notes = f"\n- Notes: {request.notes}" if request.notes else ""
    prompt = f"""Estimate how long this task will take a focused person to complete.

TASK:
- Title: "{request.title}"
- Context: {_context_line(request.goal_context)}
- Impact score: {request.impact}
- Depth in the plan: {request.depth_level} (0 = top-level action){notes}

Respond with a JSON object in this exact format:
{{"estimatedMinutes": 45}}

{_JSON_ONLY}"""
    return [
        {
            "role": "system",
            "content": "You estimate task durations in minutes. Always respond with valid JSON.",
        },
        {"role": "user", "content": prompt},
    ]


def task_analysis_messages(request: TaskAnalysisRequest) -> list[dict[str, str]]:
    task = request.task
    other_goals = "\n".join(f"- {g.title} ({g.category})" for g in request.prior_goals) or "- none"
    prompt = f"""You are an expert productivity analyst and collaboration specialist. Analyze this task and provide comprehensive insights.

TASK DETAILS:
- Title: "{task.title}"
- Type: {task.type}
- Context: {_context_line(request.context)}
- Impact Score: {task.impact if task.impact is not None else "N/A"}
- Due Date: {task.date.isoformat() if task.date else "N/A"}

USER'S OTHER GOALS:
{other_goals}

Respond with a JSON object in this exact format:
{{
  "complexity": {{"level": 7, "reasoning": "...", "skills": ["..."], "challenges": ["..."], "successFactors": ["..."]}},
  "strategy": {{"priority": "High|Medium|Low", "fitWithGoals": "...", "dependencies": ["..."], "roi": "..."}},
  "collaboration": {{"helpfulSkills": ["..."], "collaboratorTypes": ["..."], "communities": ["..."], "mentorProfile": "..."}},
  "resources": {{"tools": ["..."], "learning": ["..."], "communities": ["..."], "experts": ["..."]}},
  "similarTopics": {{"categories": ["..."], "keywords": ["..."], "industries": ["..."], "projectTypes": ["..."]}},
  "summary": "...",
  "timeEstimate": "2-3 hours",
  "difficultyTips": ["..."]
}}

{_JSON_ONLY}"""
    return [
        {
            "role": "system",
            "content": "You analyze tasks for productivity planning. Always respond with valid JSON.",
        },
        {"role": "user", "content": prompt},
    ]


def tools_messages(request: ToolsRequest) -> list[dict[str, str]]:
    goals = json.dumps(
        [g.model_dump(mode="json", by_alias=True) for g in request.goals],
        ensure_ascii=False,
    )
    prompt = f"""Based on these user goals: {goals}, generate personalized productivity tools.

Create content that includes:
1. An inspirational quote with author and specific context for why it relates to their goals
2. A dopamine boost technique (scientifically-backed, 5-15 minutes)
3. A focus session with specific steps tailored to their goal type
4. 2-3 relevant resources (books, podcasts, articles) with summaries and key takeaways
5. 2-3 habit recommendations with scientific backing

Return as valid JSON with this structure:
{{
  "tools": {{
    "inspiration": {{"quote": "...", "author": "...", "context": "..."}},
    "dopamineBoost": {{"title": "...", "technique": "...", "duration": "...", "description": "..."}},
    "focusSession": {{"title": "...", "method": "...", "duration": 25, "steps": ["..."]}},
    "resources": [{{"title": "...", "type": "book|podcast|article|course", "summary": "...", "keyTakeaways": ["..."], "relevance": "..."}}],
    "habits": [{{"title": "...", "frequency": "...", "description": "...", "scientificBasis": "..."}}]
  }}
}}

{_JSON_ONLY}"""
    return [
        {
            "role": "system",
            "content": (
                "You are a productivity and goal achievement expert. Generate "
                "personalized, science-backed tools. Always return valid JSON only."
            ),
        },
        {"role": "user", "content": prompt},
    ]
