"""Prompt rendering with Jinja2 template support.

A unit's ``role`` may contain Jinja2 template syntax.  It is rendered as the
system prompt; the user prompt describes what this particular run is for --
the routine goal for scheduled/manual runs, or the work item for
task-driven ones.

Template variables available in ``role``:

- ``unit_name``    : str        -- the unit's display name
- ``owner_id``     : str        -- owning user
- ``trigger_type`` : str        -- scheduled / manual / task_driven
- ``tool_servers`` : list[str]  -- declared tool server types
- ``guardrails``   : list[str]  -- from ``config.guardrails``
- ``date``         : str        -- current date (YYYY-MM-DD)

Example template::

    You are {{ unit_name }}, a release manager.
    {% if guardrails %}Never: {{ guardrails | join('; ') }}{% endif %}
"""

from __future__ import annotations

from datetime import datetime

import jinja2

from autocrew.agent_runtime.models.common import utcnow
from autocrew.agent_runtime.models.enums import TriggerType
from autocrew.agent_runtime.models.unit import UnitOfWork, WorkItem

_ENV = jinja2.Environment(autoescape=False, trim_blocks=True, lstrip_blocks=True)  # noqa: S701

_DEFAULT_ROLE = "You are {{ unit_name }}, an autonomous agent."

_ROUTINE_TEMPLATE = _ENV.from_string(
    """\
Routine: {{ unit.name }}
Date: {{ date }}
Trigger: {{ trigger_type }}
{% if unit.last_run_at %}
Previous run: {{ unit.last_run_at.strftime('%Y-%m-%d %H:%M UTC') }}
{% endif %}

Goal:
{{ unit.goal or 'No goal configured; review recent activity and report anything notable.' }}
"""
)

_WORK_ITEM_TEMPLATE = _ENV.from_string(
    """\
Task: {{ item.title }}
Priority: {{ item.priority }}
Date: {{ date }}

{{ item.description or 'No further description provided.' }}

When you are done, reply with a short summary of what you did.
"""
)


def render_system_prompt(
    unit: UnitOfWork,
    trigger_type: TriggerType,
    *,
    now: datetime | None = None,
    extra_vars: dict[str, object] | None = None,
) -> str:
    """Render the unit's role.  Roles without template syntax are returned unchanged."""
    now = now or utcnow()
    template_vars: dict[str, object] = {
        "unit_name": unit.name,
        "owner_id": unit.owner_id,
        "trigger_type": trigger_type.value,
        "tool_servers": unit.tool_servers,
        "guardrails": list(unit.config.get("guardrails") or []),
        "date": now.strftime("%Y-%m-%d"),
    }
    if extra_vars:
        template_vars.update(extra_vars)

    raw = unit.role or _DEFAULT_ROLE
    if "{{" not in raw and "{%" not in raw:
        return raw
    return _ENV.from_string(raw).render(**template_vars)


def render_user_prompt(
    unit: UnitOfWork,
    trigger_type: TriggerType,
    work_item: WorkItem | None = None,
    *,
    now: datetime | None = None,
) -> str:
    now = now or utcnow()
    date = now.strftime("%Y-%m-%d")
    if work_item is not None:
        return _WORK_ITEM_TEMPLATE.render(item=work_item, date=date)
    return _ROUTINE_TEMPLATE.render(unit=unit, trigger_type=trigger_type.value, date=date)
