from __future__ import annotations


class TriageGateError(Exception):
    pass


class ConfigParseError(TriageGateError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot parse {path}: {reason}")
        self.path = path
        self.reason = reason


class ConfigValidationError(TriageGateError):
    """Raised at load time with every violation found, not just the first."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Invalid triagegate configuration:\n" + "\n".join(f"- {e}" for e in errors))
        self.errors = list(errors)


class OrchestratorFailure(TriageGateError):
    """Any failed reasoning call. Each subclass counts once against the breaker."""


class InvocationTimeout(OrchestratorFailure):
    pass


class TransportFailure(OrchestratorFailure):
    pass


class InvalidResponseShape(OrchestratorFailure):
    pass


class UnknownExportFormat(TriageGateError):
    pass
