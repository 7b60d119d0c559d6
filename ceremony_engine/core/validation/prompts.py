"""Prompt templates for validation.

Each template pairs with a ``*_values`` builder producing the placeholder
values; the generation client renders them.  Work item text only ever
enters through values, so braces inside a description stay literal.
"""

from __future__ import annotations

from ceremony_engine.core.validation.models import WorkItem, WorkItemType

EPIC_VALIDATION_TEMPLATE = """\
# Epic to Validate

**Epic ID:** {{EPIC_ID}}
**Epic Name:** {{EPIC_NAME}}
**Domain:** {{DOMAIN}}
**Description:** {{DESCRIPTION}}

**Features:**
{{FEATURES}}

**Dependencies:**
{{DEPENDENCIES}}

**Stories:**
{{STORY_COUNT}} stories defined

**Epic Context:**
```
{{CONTEXT}}
```

Validate this Epic from your domain expertise perspective and return JSON validation results following the specified format.
"""

STORY_VALIDATION_TEMPLATE = """\
# Story to Validate

**Story ID:** {{STORY_ID}}
**Story Name:** {{STORY_NAME}}
**User Type:** {{USER_TYPE}}
**Description:** {{DESCRIPTION}}

**Acceptance Criteria:**
{{ACCEPTANCE}}

**Dependencies:**
{{DEPENDENCIES}}

**Parent Epic:**
- Name: {{EPIC_NAME}}
- Domain: {{EPIC_DOMAIN}}
- Features: {{EPIC_FEATURES}}

**Story Context:**
```
{{CONTEXT}}
```

Validate this Story from your domain expertise perspective and return JSON validation results following the specified format.
"""

VALIDATOR_SELECTION_TEMPLATE = """\
Select the most relevant validators for the following {{ITEM_KIND}}:

**{{ITEM_KIND}} Name:** {{NAME}}
**Domain:** {{DOMAIN}}
**Description:** {{DESCRIPTION}}
{{DETAILS}}

Available validators:
{{AVAILABLE}}

Select 5-8 relevant validators from the available list and return as JSON:
{"validators": ["validator-..."], "reasoning": "..."}
"""


def _numbered(items: list[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def _dependencies(item: WorkItem) -> str:
    return ", ".join(item.dependencies) if item.dependencies else "None"


def epic_validation_values(epic: WorkItem, context: str) -> dict[str, object]:
    return {
        "EPIC_ID": epic.id,
        "EPIC_NAME": epic.name,
        "DOMAIN": epic.domain,
        "DESCRIPTION": epic.description,
        "FEATURES": list(epic.features),
        "DEPENDENCIES": _dependencies(epic),
        "STORY_COUNT": len(epic.children),
        "CONTEXT": context,
    }


def story_validation_values(
    story: WorkItem,
    context: str,
    epic: WorkItem | None = None,
) -> dict[str, object]:
    parent = epic or WorkItem(id="", domain=story.domain, features=story.features)
    return {
        "STORY_ID": story.id,
        "STORY_NAME": story.name,
        "USER_TYPE": story.user_type,
        "DESCRIPTION": story.description,
        "ACCEPTANCE": _numbered(story.acceptance),
        "DEPENDENCIES": _dependencies(story),
        "EPIC_NAME": parent.name,
        "EPIC_DOMAIN": parent.domain,
        "EPIC_FEATURES": ", ".join(parent.features),
        "CONTEXT": context,
    }


def validation_prompt(
    item: WorkItem,
    context: str,
    parent: WorkItem | None = None,
) -> tuple[str, dict[str, object]]:
    """Template and values for the item prompt shared by every validator."""
    if item.type is WorkItemType.STORY:
        return STORY_VALIDATION_TEMPLATE, story_validation_values(item, context, parent)
    return EPIC_VALIDATION_TEMPLATE, epic_validation_values(item, context)


def selection_values(item: WorkItem, available: list[str]) -> dict[str, object]:
    if item.type is WorkItemType.STORY:
        details = f"**User Type:** {item.user_type}\n**Acceptance Criteria:**\n{_numbered(item.acceptance)}"
    else:
        details = f"**Features:** {', '.join(item.features)}"
    return {
        "ITEM_KIND": item.type.value.capitalize(),
        "NAME": item.name,
        "DOMAIN": item.domain,
        "DESCRIPTION": item.description,
        "DETAILS": details,
        "AVAILABLE": available,
    }
