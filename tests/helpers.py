from __future__ import annotations


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


GENERIC_ERROR = (
    "src/components/Form.tsx(12,5): error TS2344: Type 'Props' does not satisfy the constraint "
    "'Record<string, unknown>'. The generic interface extends keyof typeof defaults."
)
FORMAT_ERROR = "src/components/Form.tsx:3:1 - Missing semicolon (semi)"


def analysis_payload(*errors: str) -> dict:
    return {
        "success": True,
        "analysis": {
            "explanations": [
                {
                    "error": e,
                    "rootCause": "The generic parameter is narrower than its constraint.",
                    "suggestion": "Widen the constraint or narrow the argument.",
                    "codeExample": "type Props = Record<string, unknown>;",
                }
                for e in (errors or ("error",))
            ],
            "impactAssessment": "Build fails until resolved.",
            "bestPractices": ["Prefer explicit generic bounds."],
        },
    }
