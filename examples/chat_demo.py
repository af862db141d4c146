"""Minimal demonstration of a streamed chat turn."""

from zeno_core import build_chat_service

if __name__ == "__main__":
    service = build_chat_service()
    question = "Explain what a context window is in two sentences."
    turn = service.stream(question)
    print("User:", question)
    print("ZENO: ", end="", flush=True)
    for event in turn.events():
        payload = event.to_dict()
        if "content" in payload:
            print(payload["content"], end="", flush=True)
        elif "error" in payload:
            print("\n[error]", payload["error"])
    print("\nSession:", turn.session_id)
