"""Error taxonomy for the inbound message pipeline."""

from typing import Optional

DEFAULT_APOLOGY = "Desculpe, tive uma instabilidade para concluir seu pedido agora. Pode tentar novamente em instantes?"

USER_MESSAGES = {
    "VALIDATION_ERROR": "Não consegui entender sua mensagem. Pode reformular, por favor?",
    "RATE_LIMITED": "Você está enviando muitas mensagens. Por favor, aguarde um momento antes de enviar outra.",
    "AI_GENERATION_FAILED": "Desculpe, não consegui processar sua mensagem agora. Pode tentar novamente em instantes?",
    "AI_TIMEOUT": "Desculpe, estou demorando mais que o normal para responder. Pode enviar sua mensagem novamente?",
    "WHATSAPP_SEND_FAILED": DEFAULT_APOLOGY,
    "LOCK_TIMEOUT": "Estou finalizando sua mensagem anterior. Já te respondo!",
    "NOT_FOUND": "Não encontrei essa informação. Pode verificar e tentar de novo?",
}


class ConciergeError(Exception):
    """Base error carrying a code and a retryable flag."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        retryable: bool = False,
        status_code: Optional[int] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.retryable = retryable
        self.context = context or {}

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context,
        }


class ValidationError(ConciergeError):
    code = "VALIDATION_ERROR"
    status_code = 400


class AuthError(ConciergeError):
    code = "AUTH_ERROR"
    status_code = 401


class RateLimitError(ConciergeError):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, message: str, *, reset_in: int = 0, context: Optional[dict] = None):
        super().__init__(message, context={**(context or {}), "reset_in": reset_in})
        self.reset_in = reset_in


class LockTimeoutError(ConciergeError):
    code = "LOCK_TIMEOUT"
    status_code = 409

    def __init__(self, message: str, *, context: Optional[dict] = None):
        super().__init__(message, retryable=True, context=context)


class AIGenerationError(ConciergeError):
    code = "AI_GENERATION_FAILED"


class WhatsAppError(ConciergeError):
    """Reply dispatch failure. `retryable` decides requeue vs. apology."""

    code = "WHATSAPP_SEND_FAILED"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = True,
        provider_status: Optional[int] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, retryable=retryable, context=context)
        self.provider_status = provider_status


class NotFoundError(ConciergeError):
    code = "NOT_FOUND"
    status_code = 404


def is_retryable(exc: BaseException) -> bool:
    """Classified errors use their flag, anything unclassified is retried."""
    if isinstance(exc, ConciergeError):
        return exc.retryable
    return True


def get_user_friendly_message(exc: BaseException) -> str:
    if isinstance(exc, ConciergeError):
        return USER_MESSAGES.get(exc.code, DEFAULT_APOLOGY)
    return DEFAULT_APOLOGY


def wrap_error(exc: BaseException, context: Optional[dict] = None) -> ConciergeError:
    """Wrap an arbitrary exception, keeping its retry classification."""
    if isinstance(exc, ConciergeError):
        if context:
            exc.context.update(context)
        return exc
    return ConciergeError(str(exc) or type(exc).__name__, retryable=is_retryable(exc), context=context)
