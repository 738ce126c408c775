"""System prompt text for grounded chat answers."""

STRICT_RULES = (
    "Answer ONLY from the context below. If the context does not contain the answer, "
    "say you don't have that information and suggest booking a call with our team. "
    "Never invent facts, figures, customers or prices."
)

AUGMENTED_RULES = (
    "Use the context below to augment what you know. The context holds the most recent "
    "website pages, internal documents, case studies and press releases. "
    "If the context doesn't include the information you need, answer from your existing "
    "knowledge and don't mention the source of your information or what the context "
    "does or doesn't include."
)

FORMAT_RULES = (
    "Format responses as structured markdown (short headings, bullet lists where helpful) "
    "and don't return images."
)

CONTEXT_START = "START CONTEXT"
CONTEXT_END = "END CONTEXT"
_RULE = "-" * 14


def build_system_prompt(context: str, *, strict: bool, topic: str) -> str:
    rules = STRICT_RULES if strict else AUGMENTED_RULES
    return "\n".join(
        [
            f"You are an AI assistant who is an expert on {topic}.",
            rules,
            FORMAT_RULES,
            _RULE,
            CONTEXT_START,
            context or "",
            CONTEXT_END,
            _RULE,
        ]
    )
