"""
Centralized Error Response Builder for the Viseu letter guard.

Provides consistent error codes and i18n-ready messages for pipeline denials.
The municipal frontend is Portuguese, so "pt" is the default language with
English kept for operators and API clients.

The builder returns structured error dicts:
    {"code": "...", "message": "...", "details": {...}}
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# Error Code Constants
# =============================================================================

RATE_LIMITED = "RATE_LIMITED"
INPUT_REJECTED = "INPUT_REJECTED"
ABUSE_DETECTED = "ABUSE_DETECTED"
IDENTIFIER_BLOCKED = "IDENTIFIER_BLOCKED"
VALIDATION_ERROR = "VALIDATION_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"
FORBIDDEN = "FORBIDDEN"
NOT_FOUND = "NOT_FOUND"

# =============================================================================
# i18n Message Registry
#
# Maps (error_code, language) -> message. Falls back to "pt" when a
# translation is missing for the requested language.
# =============================================================================

_ERROR_MESSAGES: dict[str, dict[str, str]] = {
    RATE_LIMITED: {
        "pt": "Demasiados pedidos. Por favor, tente novamente mais tarde.",
        "en": "Too many requests. Please try again later.",
    },
    INPUT_REJECTED: {
        "pt": "Descrição contém conteúdo inválido.",
        "en": "The description contains invalid content.",
    },
    ABUSE_DETECTED: {
        "pt": "Comportamento abusivo detectado.",
        "en": "Abusive behaviour detected.",
    },
    IDENTIFIER_BLOCKED: {
        "pt": "Acesso bloqueado devido a abuso anterior. Contacte o administrador.",
        "en": "Access blocked due to previous abuse. Contact the administrator.",
    },
    VALIDATION_ERROR: {
        "pt": "Dados inválidos. Verifique o seu pedido.",
        "en": "Invalid input. Please check your request.",
    },
    INTERNAL_ERROR: {
        "pt": "Não foi possível processar o seu pedido. Por favor, tente novamente.",
        "en": "An internal error occurred. Please try again.",
    },
    FORBIDDEN: {
        "pt": "Não tem permissão para realizar esta ação.",
        "en": "You do not have permission to perform this action.",
    },
    NOT_FOUND: {
        "pt": "O recurso pedido não foi encontrado.",
        "en": "The requested resource was not found.",
    },
}

_DEFAULT_LANG = "pt"


# =============================================================================
# Error Response Builder
# =============================================================================


def get_error_message(code: str, lang: str = _DEFAULT_LANG) -> str:
    """
    Get a translated error message for a given error code.

    Falls back to Portuguese if the requested language is not available,
    and to a generic message if the error code is unknown.
    """
    messages = _ERROR_MESSAGES.get(code, {})
    return messages.get(lang, messages.get(_DEFAULT_LANG, "Ocorreu um erro."))


def build_error_response(
    code: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
    lang: str = _DEFAULT_LANG,
) -> dict[str, Any]:
    """
    Build a structured error response dict.

    Args:
        code: Error code constant (e.g. RATE_LIMITED, INPUT_REJECTED)
        message: Optional override message (bypasses i18n lookup)
        details: Optional additional error details
        lang: ISO 639-1 language code for the message lookup

    Returns:
        {"code": str, "message": str} plus "details" when given
    """
    resolved_message = message if message is not None else get_error_message(code, lang)
    error: dict[str, Any] = {
        "code": code,
        "message": resolved_message,
    }
    if details is not None:
        error["details"] = details
    return error


__all__ = [
    "RATE_LIMITED",
    "INPUT_REJECTED",
    "ABUSE_DETECTED",
    "IDENTIFIER_BLOCKED",
    "VALIDATION_ERROR",
    "INTERNAL_ERROR",
    "FORBIDDEN",
    "NOT_FOUND",
    "get_error_message",
    "build_error_response",
]
