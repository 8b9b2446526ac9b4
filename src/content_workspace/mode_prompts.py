from typing import Dict, List, Sequence, Tuple

from .modes import Mode
from .session_store import SessionRecord

DOCUMENT_BREAK = "\n\n--- DOCUMENT BREAK ---\n\n"

REWRITE_LENGTH_WORDS: Dict[str, str] = {
    "short": "around 250 words",
    "medium": "around 750 words",
    "long": "around 2000 words",
}

SUMMARY_FORMAT_HINTS: Dict[str, str] = {
    "default": "a concise summary followed by a bulleted list of key highlights",
    "bullets": "a bulleted list only, one key point per bullet",
    "executive": "a short executive brief: context, findings, recommended actions",
    "outline": "a nested outline of the document structure with one line per heading",
}

JSON_OUTPUT_KEYS: Dict[Mode, Tuple[str, ...]] = {
    Mode.REASONING_STUDIO: ("finalResponseMd", "reasoningTreeJson"),
    Mode.SCAFFOLDER: ("scaffoldScript", "scaffoldPlanJson"),
    Mode.PROMPT_ENHANCER: ("enhancedPromptMd", "enhancedPromptJson"),
    Mode.AGENT_DESIGNER: ("designMarkdown", "designPlanJson", "designFlowDiagram"),
}

SYSTEM_INSTRUCTIONS: Dict[Mode, str] = {
    Mode.TECHNICAL: "You are an expert technical writer. Summaries are faithful to the source and never invent facts.",
    Mode.STYLE_EXTRACTOR: "You are a literary analyst who describes writing style precisely and with examples.",
    Mode.REWRITER: "You are a skilled author who rewrites material into a new narrative while preserving its facts.",
    Mode.MATH_FORMATTER: (
        "You reformat documents for MathJax. Inline math uses $...$ and display math uses $$...$$. "
        "Do not change the wording of the text."
    ),
    Mode.REASONING_STUDIO: "You are a careful reasoning engine that records every step of its thinking.",
    Mode.SCAFFOLDER: "You are a senior software architect who plans projects for an AI coding agent.",
    Mode.REQUEST_SPLITTER: "You decompose large specifications into small prompts that can be built in order.",
    Mode.PROMPT_ENHANCER: "You turn raw requests into structured, unambiguous prompts for autonomous agents.",
    Mode.AGENT_DESIGNER: "You design multi-agent systems with clear roles, tools and hand-offs.",
}

JSON_REPLY_RULE = "Reply with a single JSON object and nothing else. Required keys: {keys}."

NEXT_STEPS_PROMPT = (
    "Based on the following output, suggest 3 to 5 concrete next steps the user could take. "
    "Reply with a JSON array of short strings and nothing else.\n\n--- OUTPUT ---\n{context}"
)
NEXT_STEPS_CONTEXT_LIMIT = 3000


def join_documents(documents: Sequence[str]) -> str:
    return DOCUMENT_BREAK.join(doc for doc in documents if doc.strip())


def build_mode_prompt(mode: Mode, session: SessionRecord, documents: Sequence[str]) -> str:
    """Returns the user prompt for a one-shot mode run.

    ``documents`` are already wrapped with their document markers.
    """
    corpus = join_documents(documents)
    lines: List[str] = []

    if mode == Mode.TECHNICAL:
        fmt = SUMMARY_FORMAT_HINTS.get(session.summary_format, SUMMARY_FORMAT_HINTS["default"])
        lines.append(f"Summarize the content below. Output format: {fmt}.")
        if session.use_hierarchical:
            lines.append("Summarize each document separately first, then merge the partial summaries.")
        corpus = join_documents([*documents, session.summary_text_input])
    elif mode == Mode.STYLE_EXTRACTOR:
        target = session.style_target.strip() or "all speakers"
        lines.append(f"Analyze the writing style of {target} in the content below.")
        lines.append("Describe tone, vocabulary, sentence structure and recurring devices, quoting short examples.")
    elif mode == Mode.REWRITER:
        length = REWRITE_LENGTH_WORDS.get(session.rewrite_length, REWRITE_LENGTH_WORDS["medium"])
        lines.append(f"Rewrite the material below into a new narrative of {length}.")
        if session.rewrite_style.strip():
            lines.append(f"Write in this style: {session.rewrite_style.strip()}")
        if session.rewrite_instructions.strip():
            lines.append(f"Follow these instructions: {session.rewrite_instructions.strip()}")
    elif mode == Mode.MATH_FORMATTER:
        lines.append("Reformat every mathematical expression in the documents below for MathJax.")
        lines.append("Return the complete documents in Markdown.")
    elif mode == Mode.REASONING_STUDIO:
        lines.append(f"Goal: {session.reasoning_prompt.strip()}")
        lines.append(
            "Work through the goal step by step. finalResponseMd is the polished answer in Markdown; "
            "reasoningTreeJson is a tree of steps, each with id, title, detail and children."
        )
    elif mode == Mode.SCAFFOLDER:
        lines.append(f"Project description: {session.scaffolder_prompt.strip()}")
        lines.append(
            "scaffoldScript is a shell script that creates the directory tree and stub files; "
            "scaffoldPlanJson lists each file with path, purpose and the prompt an AI agent needs to build it."
        )
    elif mode == Mode.REQUEST_SPLITTER:
        lines.append(
            'Split the specification below into independent prompts. Reply with a JSON object '
            '{"project": {"name", "architecture", "invariants"}, "prompts": [{"id", "title", "prompt", '
            '"dependencies"}]} and nothing else.'
        )
        corpus = join_documents([session.request_splitter_spec, *documents])
    elif mode == Mode.PROMPT_ENHANCER:
        lines.append(f"Raw request: {session.prompt_enhancer_input.strip()}")
        lines.append(
            "enhancedPromptMd is the rewritten prompt in Markdown with role, context, task, constraints "
            "and output format sections; enhancedPromptJson holds the same sections as keys."
        )
    elif mode == Mode.AGENT_DESIGNER:
        lines.append(f"System goal: {session.agent_goal.strip()}")
        lines.append(
            "designMarkdown explains the system; designPlanJson lists the agents with role, tools and inputs; "
            "designFlowDiagram is a Mermaid flowchart of the hand-offs."
        )
    else:
        raise ValueError(f"Mode {mode.value} has no one-shot prompt.")

    keys = JSON_OUTPUT_KEYS.get(mode)
    if keys:
        lines.append(JSON_REPLY_RULE.format(keys=", ".join(keys)))
    if corpus:
        lines.append(f"\n{corpus}")
    return "\n".join(lines)


def build_next_steps_prompt(output_text: str) -> str:
    return NEXT_STEPS_PROMPT.format(context=output_text[:NEXT_STEPS_CONTEXT_LIMIT])
