from graph_navigator.security.prompt_validator import PromptSecurityValidator, validate_user_prompt
from graph_navigator.security.redaction import SecretRedactionFilter, redact_secrets

__all__ = [
    "PromptSecurityValidator",
    "validate_user_prompt",
    "SecretRedactionFilter",
    "redact_secrets",
]
