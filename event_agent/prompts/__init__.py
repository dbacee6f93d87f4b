"""系统提示词加载工具。

按 Agent 类型与语言(locale) 从 prompts/<locale> 目录读取 system prompt，
并可把会话 context 中的组织者资料追加为 "User Context" 段落。
"""

from pathlib import Path
from typing import Any, Dict, Optional


PROMPTS_DIR = Path(__file__).resolve().parent

_PROMPT_FILES = {
    "event-planner": "event_planner_system.md",
}


def load_system_prompt(agent_type: str = "event-planner", locale: str = "en") -> str:
    """根据 Agent 类型和语言加载系统提示词文本。"""

    fname = _PROMPT_FILES.get(agent_type)
    if fname is None:
        raise ValueError(f"Unknown agent type: {agent_type}")
    return (PROMPTS_DIR / locale / fname).read_text(encoding="utf-8").strip()


def render_system_prompt(base: str, context: Optional[Dict[str, Any]] = None) -> str:
    profile = (context or {}).get("profile")
    if not isinstance(profile, dict) or not profile:
        return base
    event_types = profile.get("eventTypes") or []
    lines = [
        "## User Context:",
        f"- Organization: {profile.get('organizationName') or 'Not set'}",
        f"- Event Types: {', '.join(event_types) if event_types else 'Not specified'}",
        f"- Experience: {profile.get('experienceLevel') or 'Unknown'}",
    ]
    return base + "\n\n" + "\n".join(lines)
