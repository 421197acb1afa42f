"""
Prompt templates for the content generation service.

Every template asks for bare JSON; ``generation.generate_json`` owns the
parsing and the fallback when the model ignores that instruction.
"""

from __future__ import annotations

import json
from typing import Dict, List, Sequence

_JSON_ONLY = "Return ONLY valid JSON. No markdown, no explanation, no backticks."


def prescan_prompt(route: str, title: str) -> str:
    return f"""Look at this screenshot of a page at route "{route}" with title "{title}".

Rate this page's DOCUMENTATION VALUE on a scale of 1-10:

10 = Core product feature with real functionality (task management, project views, team settings, dashboards with data, CRM contacts, forms that create or edit records)
8 = Important settings or configuration page (account, workspace, integrations, billing)
6 = Useful secondary feature (activity log, search results, file browser, notifications WITH content)
4 = Reference or showcase page (component library, style guide, demo with sample data)
2 = Empty state with no real content (empty inbox, empty list with only a "Create your first X" prompt)
1 = Onboarding, tutorial, marketing or error page

Rules:
- Mostly empty pages with a single "create your first X" prompt score 2-3 at most
- "Getting Started", "Welcome", "Tutorial", "Onboarding" or "Tour" pages score 1-2
- Pages with real data, forms or populated tables score 7+
- Core workflows score 9-10

{_JSON_ONLY}
{{"score": 8, "reason": "Project board with columns, filters and task cards", "suggestedName": "Project Board", "pageType": "core_feature"}}"""


def understanding_prompt(feature_name: str, route: str, description: str) -> str:
    return f"""You are documenting the "{feature_name}" page (route "{route}") of a web application.
Known context: {description}

Study the screenshot and describe the page for an end-user guide:
- purpose: one sentence on what the page is for
- userGoals: 1-4 things a user comes here to do
- interactiveElements: main-content controls worth understanding (ignore global nav). For each give
  "description", "type" (button | tab | dropdown | modal_trigger | form | toggle | filter | search | link | table | other)
  and "probeInstruction", a single safe click that reveals what it does
- isEmptyState: true if the page shows no real data yet
- emptyStateCta: label of the call-to-action button on an empty page, else null
- relatedFeatures: names of other app areas this page links to
- complexity: "simple" (static, nothing to interact with), "moderate", or "complex"

{_JSON_ONLY}
{{"purpose": "...", "userGoals": ["..."], "interactiveElements": [{{"description": "New project button", "type": "modal_trigger", "probeInstruction": "Click the New project button"}}], "isEmptyState": false, "emptyStateCta": null, "relatedFeatures": [], "complexity": "moderate"}}"""


def screenshot_plan_prompt(feature_name: str, purpose: str, goals: Sequence[str],
                           probe_notes: Sequence[str], max_plans: int) -> str:
    goals_text = "\n".join(f"- {g}" for g in goals) or "- (none reported)"
    notes_text = "\n".join(f"- {n}" for n in probe_notes) or "- (no probes run)"
    return f"""You are planning screenshots for the "{feature_name}" section of a user guide.
Page purpose: {purpose}
User goals:
{goals_text}
What probing the page revealed:
{notes_text}

The screenshot shows the page's default state, which is already captured.
Plan at most {max_plans} additional screenshots, each showing a VISUALLY DISTINCT state
that teaches the reader something (an open dialog, a filled form, a different tab...).

Never plan irreversible or communicating actions: no delete, remove, send, invite, share,
pay, cancel, deactivate or reset. Use realistic sample values when typing.

For each plan give "description", "actions" (ordered natural-language browser instructions),
"value" (one line on why the shot helps a reader), "submitAfter" (true only if clicking a safe
Save/Apply/Search button afterwards shows a useful result) and "captureResult".

{_JSON_ONLY}
[{{"description": "Create project dialog", "actions": ["Click the New project button", "Type 'Website redesign' into the Name field"], "value": "Shows the fields needed to start a project", "submitAfter": false, "captureResult": false}}]"""


def content_changed_prompt() -> str:
    return f"""The first image is a page before an action; the second is the same page after it.
Ignore cursor position, hover highlights, focus rings, timestamps and minor layout jitter.
Did the MAIN CONTENT AREA change in a way a reader would notice (new dialog, new panel,
different tab content, filled-in form, new results)?

{_JSON_ONLY}
{{"changed": true, "reason": "A create-project dialog opened"}}"""


def safe_submit_query() -> str:
    return (
        "Find the submit/save/apply button for the form or panel that is currently open. "
        "Only report buttons labeled like Save, Save Changes, Update, Create, Add, Apply, "
        "Search, Filter, Next or Submit. Do NOT report Delete, Remove, Send, Invite, Share, "
        "Pay, Cancel, Deactivate or Reset buttons. Report each button's exact label text."
    )


def screen_analysis_prompt(nav_label: str, route: str, dom_excerpt: str,
                           prd_summary: Dict) -> str:
    context = json.dumps(prd_summary, ensure_ascii=False)[:2000] if prd_summary else "{}"
    return f"""You are writing end-user documentation for one screen of a web application.
Screen: "{nav_label}" at route "{route}".
Product context: {context}
Page markup excerpt:
{dom_excerpt[:6000]}

From the screenshot and markup, return:
- title: short screen title
- summary: 1-2 sentences on what the user sees and can do
- elements: list of {{"label", "purpose"}} for the visible controls
- workflows: short step lists for tasks started from this screen
- confidence: 1-5, how sure you are the description is accurate

{_JSON_ONLY}
{{"title": "...", "summary": "...", "elements": [], "workflows": [], "confidence": 4}}"""


def prd_summary_prompt(prd_text: str) -> str:
    return f"""Summarize this product requirements document for a documentation writer.

{prd_text}

Return keys: product_name, product_purpose, target_users (list), main_features (list of
{{"name", "description"}}), key_workflows (list of {{"name", "steps"}}), user_roles (list),
terminology (object of term -> definition).

{_JSON_ONLY}"""


def element_resolution_prompt(instruction: str, candidates: List[Dict]) -> str:
    listing = "\n".join(
        f'[{c["index"]}] <{c["tag"]}{" type=" + c["type"] if c.get("type") else ""}> '
        f'{c.get("text", "")!r} {c.get("hint", "")}'.rstrip()
        for c in candidates
    )
    return f"""You control a web browser. Instruction: "{instruction}"

Interactive elements on the page (index, tag, visible text, hints):
{listing}

Pick the element and method that carry out the instruction.
"method" is one of: click, fill, select, check, press.
"argument" is the text to type (fill), the option label (select) or the key (press); else "".
Keep any %placeholder% tokens in the argument exactly as written.
If no element fits, return {{"index": -1}}.

{_JSON_ONLY}
{{"index": 3, "method": "click", "argument": ""}}"""


def observation_prompt(query: str, candidates: List[Dict]) -> str:
    listing = "\n".join(
        f'[{c["index"]}] <{c["tag"]}> {c.get("text", "")!r} {c.get("hint", "")}'.rstrip()
        for c in candidates
    )
    return f"""Query: "{query}"

Elements on the page (index, tag, visible text, hints):
{listing}

List the elements that answer the query, each with a short human-readable description
(include link targets as href="..." when relevant).

{_JSON_ONLY}
[{{"index": 0, "description": "Projects link in sidebar href=\\"/projects\\""}}]"""
