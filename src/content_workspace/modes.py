from enum import Enum
from typing import Dict, List, Union


class Mode(str, Enum):
    TECHNICAL = "technical"
    STYLE_EXTRACTOR = "styleExtractor"
    REWRITER = "rewriter"
    MATH_FORMATTER = "mathFormatter"
    REASONING_STUDIO = "reasoningStudio"
    SCAFFOLDER = "scaffolder"
    REQUEST_SPLITTER = "requestSplitter"
    PROMPT_ENHANCER = "promptEnhancer"
    AGENT_DESIGNER = "agentDesigner"
    CHAT = "chat"


MODE_LABELS: Dict[Mode, str] = {
    Mode.TECHNICAL: "Technical Summarizer",
    Mode.STYLE_EXTRACTOR: "Style Extractor",
    Mode.REWRITER: "Rewriter",
    Mode.MATH_FORMATTER: "Math Formatter",
    Mode.REASONING_STUDIO: "Reasoning Studio",
    Mode.SCAFFOLDER: "Project Scaffolder",
    Mode.REQUEST_SPLITTER: "Request Splitter",
    Mode.PROMPT_ENHANCER: "Prompt Enhancer",
    Mode.AGENT_DESIGNER: "Agent Designer",
    Mode.CHAT: "LLM Chat",
}

MODE_DESCRIPTIONS: Dict[Mode, str] = {
    Mode.TECHNICAL: "Upload files, or paste text below, to get a concise summary and key highlights.",
    Mode.STYLE_EXTRACTOR: "Upload one or more text files to analyze and extract a unique writing style model.",
    Mode.REWRITER: "Upload documents and images, provide a style and instructions, and rewrite them into a new narrative.",
    Mode.MATH_FORMATTER: "Upload LaTeX or Markdown documents to reformat mathematical notation for MathJax rendering.",
    Mode.REASONING_STUDIO: "Input a complex goal and receive a polished answer with a full reasoning trace.",
    Mode.SCAFFOLDER: "Describe a project to generate a code scaffold with prompts for an AI coding agent.",
    Mode.REQUEST_SPLITTER: "Input a large specification to decompose it into a sequence of buildable implementation prompts.",
    Mode.PROMPT_ENHANCER: "Take a raw request and transform it into a structured, agent-ready prompt.",
    Mode.AGENT_DESIGNER: "Design a multi-agent system by defining a high-level goal and its operational parameters.",
    Mode.CHAT: "Engage in an interactive, streaming conversation with the AI. Attach context files as needed.",
}

RESET_BUTTON_TEXT: Dict[Mode, str] = {
    Mode.TECHNICAL: "Summarize Another",
    Mode.STYLE_EXTRACTOR: "Extract Another",
    Mode.REWRITER: "Rewrite Another",
    Mode.MATH_FORMATTER: "Format Another",
    Mode.REASONING_STUDIO: "New Reasoning Task",
    Mode.SCAFFOLDER: "New Project Scaffold",
    Mode.REQUEST_SPLITTER: "New Split Request",
    Mode.PROMPT_ENHANCER: "Enhance Another Prompt",
    Mode.AGENT_DESIGNER: "Design Another Agent",
    Mode.CHAT: "New Chat",
}


def list_modes() -> List[Mode]:
    return list(Mode)


def coerce_mode(mode: Union[Mode, str]) -> Mode:
    if isinstance(mode, Mode):
        return mode
    try:
        return Mode(str(mode))
    except ValueError:
        raise ValueError(f"Unknown mode: {mode}") from None


def get_mode_label(mode: Union[Mode, str]) -> str:
    return MODE_LABELS[coerce_mode(mode)]


def get_submit_label(mode: Union[Mode, str], file_count: int = 0, text_input: str = "") -> str:
    resolved = coerce_mode(mode)
    if resolved == Mode.TECHNICAL:
        if text_input.strip():
            return "Summarize Text"
        return f"Summarize {file_count} file(s)" if file_count > 0 else "Summarize"
    if resolved == Mode.STYLE_EXTRACTOR:
        return f"Extract Style from {file_count} file(s)" if file_count > 0 else "Extract Style"
    if resolved == Mode.REWRITER:
        return f"Rewrite {file_count} item(s)" if file_count > 0 else "Rewrite"
    if resolved == Mode.MATH_FORMATTER:
        return f"Format {file_count} file(s)" if file_count > 0 else "Format Math"
    return {
        Mode.REASONING_STUDIO: "Run Reasoning Engine",
        Mode.SCAFFOLDER: "Generate Project Scaffold",
        Mode.REQUEST_SPLITTER: "Split Request",
        Mode.PROMPT_ENHANCER: "Enhance Prompt",
        Mode.AGENT_DESIGNER: "Design Agent System",
        Mode.CHAT: "Send",
    }[resolved]
