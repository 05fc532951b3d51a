from dataclasses import dataclass, field


class ErrorKind:
    SAFETY_BLOCKED = "safety_blocked"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    AUTH_ERROR = "auth_error"
    NETWORK_ERROR = "network_error"
    ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"
    UNKNOWN = "unknown"


RETRIABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.NETWORK_ERROR,
    ErrorKind.ALL_PROVIDERS_EXHAUSTED,
})


@dataclass
class ContextReport:
    max_context_tokens: int
    reserve_tokens: int
    prompt_tokens: int
    history_tokens: int
    file_tokens: int
    attachment_tokens: int
    kept_files: list[str] = field(default_factory=list)
    dropped_files: list[str] = field(default_factory=list)
