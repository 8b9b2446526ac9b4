import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .plan_layout import PlanNode

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class SplitPlanError(ValueError):
    pass


@dataclass(frozen=True)
class ProjectBrief:
    name: str = ""
    architecture: str = ""
    invariants: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SplitPrompt:
    id: str
    title: str
    prompt: str = ""
    dependencies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SplitPlan:
    project: ProjectBrief
    prompts: Tuple[SplitPrompt, ...]


def parse_split_plan(raw_text: str) -> SplitPlan:
    payload = extract_json_object(raw_text)
    return sanitize_split_plan(payload)


def extract_json_object(raw_text: str) -> Dict[str, Any]:
    text = (raw_text or "").strip()
    match = _FENCE_PATTERN.search(text)
    if match and match.group(1):
        text = match.group(1).strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start < 0 or end <= start:
            raise SplitPlanError("Failed to parse the plan: no JSON object found.") from None
        try:
            parsed = json.loads(text[start : end + 1])
        except json.JSONDecodeError as exc:
            raise SplitPlanError(f"Failed to parse the plan: {exc}") from exc
    if not isinstance(parsed, dict):
        raise SplitPlanError("Failed to parse the plan: expected a JSON object.")
    return parsed


def sanitize_split_plan(raw: Dict[str, Any]) -> SplitPlan:
    raw_project = raw.get("project") if isinstance(raw.get("project"), dict) else {}
    invariants = raw_project.get("invariants")
    project = ProjectBrief(
        name=str(raw_project.get("name", "")).strip(),
        architecture=str(raw_project.get("architecture", "")).strip(),
        invariants=tuple(str(item).strip() for item in invariants if str(item).strip())
        if isinstance(invariants, list)
        else (),
    )

    raw_prompts = raw.get("prompts")
    if raw_prompts is None:
        raw_prompts = raw.get("plan")
    if not isinstance(raw_prompts, list):
        raise SplitPlanError("The plan has no prompt list.")

    prompts: List[SplitPrompt] = []
    used_ids = set()
    for index, item in enumerate(raw_prompts, start=1):
        if not isinstance(item, dict):
            continue
        base_id = str(item.get("id", "")).strip() or str(index)
        prompt_id = base_id
        suffix = 2
        while prompt_id in used_ids:
            prompt_id = f"{base_id}_{suffix}"
            suffix += 1
        used_ids.add(prompt_id)

        raw_deps = item.get("dependencies")
        dependencies: List[str] = []
        for dep in raw_deps if isinstance(raw_deps, list) else []:
            dep_id = str(dep).strip()
            if dep_id and dep_id != prompt_id and dep_id not in dependencies:
                dependencies.append(dep_id)

        prompts.append(
            SplitPrompt(
                id=prompt_id,
                title=str(item.get("title", "")).strip() or f"Prompt {prompt_id}",
                prompt=str(item.get("prompt", "")).strip(),
                dependencies=tuple(dependencies),
            )
        )

    if not prompts:
        raise SplitPlanError("The AI failed to generate a valid decomposition plan.")
    return SplitPlan(project=project, prompts=tuple(prompts))


def to_plan_nodes(plan: SplitPlan) -> List[PlanNode]:
    return [PlanNode(id=p.id, title=p.title, dependencies=p.dependencies) for p in plan.prompts]


def ordered_prompts_markdown(plan: SplitPlan) -> str:
    return "\n\n---\n\n".join(prompt.prompt for prompt in plan.prompts if prompt.prompt)
