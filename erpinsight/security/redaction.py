"""Masking of personal and financial data (LGPD) before it leaves the engine."""

import re
from typing import Any, List, Pattern, Tuple

REDACTED = "***REDACTED***"

SENSITIVE_KEYS = (
    "cpf", "cnpj", "rg", "phone", "telefone", "email",
    "pix", "pixkey", "bankaccount", "conta", "agencia",
    "salary", "salario", "password", "senha", "token",
)

# Order matters: formatted documents before bare digit runs.
_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}"), "**.***.***/****-**"),   # CNPJ
    (re.compile(r"\b\d{14}\b"), "**************"),                            # CNPJ, digits only
    (re.compile(r"\d{3}\.\d{3}\.\d{3}-\d{2}"), "***.***.***-**"),             # CPF
    (re.compile(r"\b\d{11}\b"), "***********"),                               # CPF, digits only
    (re.compile(r"\(\d{2}\)\s?\d{4,5}-?\d{4}"), "(XX) XXXXX-XXXX"),           # phone
    (re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "***@***.***"),
    (re.compile(r"pix:\s*[^\s,]+", re.IGNORECASE), "pix: " + REDACTED),
    (re.compile(r"ag[êe]ncia:?\s*\d+(-\d)?", re.IGNORECASE), "agência: ****"),
    (re.compile(r"conta:?\s*\d+-?\d*", re.IGNORECASE), "conta: ****-*"),
    (re.compile(r"sal[aá]rio:?\s*(R\$)?\s*[\d.,]+", re.IGNORECASE), "salário: R$ ***,**"),
    (re.compile(r"\b\d{2}\.\d{3}\.\d{3}-[\dxX]\b"), "**.***.***-*"),          # RG
]


def redact_sensitive_data(text: str) -> str:
    """Mask sensitive values in free text. Masks contain no digits."""
    if not text:
        return text
    result = text
    for pattern, mask in _PATTERNS:
        result = pattern.sub(mask, result)
    return result


_KEY_PARTS = re.compile(r"[A-Z]?[a-z0-9]+|[A-Z]+(?![a-z])")


def _is_sensitive_key(key: str) -> bool:
    # Whole-token match, so "target" or "merged" never hit "rg".
    text = str(key)
    if text.lower().replace("_", "").replace("-", "") in SENSITIVE_KEYS:
        return True
    return any(part.lower() in SENSITIVE_KEYS for part in _KEY_PARTS.findall(text))


def redact_sensitive_object(value: Any) -> Any:
    """Return a copy with sensitive keys masked and strings redacted, recursively."""
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if _is_sensitive_key(key) and not isinstance(item, (dict, list)):
                result[key] = REDACTED
            else:
                result[key] = redact_sensitive_object(item)
        return result
    if isinstance(value, (list, tuple)):
        return [redact_sensitive_object(item) for item in value]
    if isinstance(value, str):
        return redact_sensitive_data(value)
    return value
