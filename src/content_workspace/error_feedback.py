from typing import Dict

from .session_store import AppState, SessionRecord


def build_error_feedback(session: SessionRecord) -> Dict[str, str]:
    if session.is_streaming_response:
        return {
            "level": "info",
            "title": "Generating response",
            "message": "The assistant is responding.",
            "guidance": "Use Stop to cancel; your message stays in the history.",
        }

    if session.error is not None:
        message = session.error.message.strip()
        details = (session.error.details or "").strip()
        if "requires an API key" in message:
            guidance = "Add the key in settings, or pick a provider that runs locally, then send again."
        else:
            guidance = "Your earlier messages are intact. Adjust the request if needed and retry."
        return {
            "level": "error",
            "title": "Request Failed",
            "message": message + (f" Details: {details}" if details else ""),
            "guidance": guidance,
        }

    if session.app_state == AppState.PROCESSING:
        return {
            "level": "info",
            "title": session.progress.stage,
            "message": session.progress.message,
            "guidance": "",
        }

    return {"level": "none", "title": "", "message": "", "guidance": ""}
