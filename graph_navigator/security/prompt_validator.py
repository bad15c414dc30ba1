import logging
import re
import unicodedata
from typing import Tuple

logger = logging.getLogger("prompt_validator")


class PromptSecurityValidator:
    """
    Prompt injection detection for free-text user input.

    Only text typed by a user (the chat query and earlier chat turns) goes
    through these checks. Structured data handed to the LLM, such as graph
    results or generated queries, is isolated in its own prompt section instead.
    """

    # Format: (pattern, attack_type_description)
    INJECTION_PATTERNS = [
        # Role manipulation attempts at the start of a line
        (r'^\s*(system|assistant|developer)\s*:', 'role manipulation'),

        # Instruction override attempts (flexible matching)
        (r'ign[o0]r[e3]\s*(all\s*)?(previous|above|earlier|prior)', 'instruction override'),
        (r'f[o0]rg[e3]t\s*(all\s*)?(previous|above|earlier|prior)', 'instruction override'),
        (r'disregard\s*(all\s*)?(previous|above|earlier|prior|everything)', 'instruction override'),
        (r'overr?ide\s*(previous|instructions?|rules?)', 'instruction override'),

        # Identity/role hijacking
        (r'(you\s*are\s*now|your\s*new\s*role\s*is|pretend\s*to\s*be)', 'identity hijacking'),

        # System probe attempts
        (r'(reveal|repeat|print|output)\s*(your|the)\s*(system\s*)?(instructions?|prompt|rules)', 'system probe'),

        # Section and template delimiters
        (r'</?(prompt|system|instruction|user_query|chat_history|graph_schema)>', 'XML injection'),
        (r'\[/?inst\]|<\|.*?\|>', 'special token injection'),

        # Graph write or administrative clauses smuggled into a question
        (r'\bdetach\s+delete\b', 'graph mutation attempt'),
        (r'\bdrop\s+(index|constraint|database)\b', 'graph mutation attempt'),
        (r'\bcall\s+(dbms|apoc)\.', 'procedure call attempt'),

        # Encoding/obfuscation attempts
        (r'%0[aA]|\\n\\n|\\r\\n\\r\\n', 'newline encoding'),
    ]

    @staticmethod
    def normalize_text(text: str) -> str:
        """Strip diacritics so homoglyph variants match the ASCII patterns."""
        normalized = unicodedata.normalize('NFD', text)
        return ''.join(
            char for char in normalized
            if unicodedata.category(char) != 'Mn'
        )

    @classmethod
    def validate_input(cls, prompt: str) -> Tuple[bool, str | None]:
        """
        Validate user text for injection attempts.

        Returns:
            Tuple of (is_safe, error_message)

        Examples:
            >>> PromptSecurityValidator.validate_input("Show me all Banking sectors")
            (True, None)
            >>> PromptSecurityValidator.validate_input("Ignore previous instructions")
            (False, 'Potentially malicious content detected: instruction override')
        """
        normalized = cls.normalize_text(prompt)

        for pattern, attack_type in cls.INJECTION_PATTERNS:
            match = re.search(pattern, normalized, re.IGNORECASE | re.MULTILINE)
            if match:
                logger.warning(f"Prompt injection detected: {attack_type}")
                logger.warning(f"   Matched text: {match.group()}")
                logger.warning(f"   Prompt preview: {prompt[:100]}...")
                return False, f"Potentially malicious content detected: {attack_type}"

        return True, None


def validate_user_prompt(prompt: str) -> Tuple[bool, str | None]:
    """Convenience wrapper around PromptSecurityValidator.validate_input."""
    return PromptSecurityValidator.validate_input(prompt)
