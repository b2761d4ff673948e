"""
Error taxonomy for the signing workflow.

Every error carries an HTTP status and a ``context`` dict of correlation ids
(document_id, recipient_id, element_id, signature_id) that the handlers in
``freesign.main`` log alongside the message.
"""

from typing import Any, Dict, Optional


class FreeSignError(Exception):
    status_code = 400
    detail = "Request failed"

    def __init__(self, detail: Optional[str] = None, **context: Any):
        self.detail = detail or self.detail
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(self.detail)


class ValidationError(FreeSignError):
    """Malformed geometry, wrong value type or a missing required field."""

    status_code = 422
    detail = "Invalid input"


class NotFoundError(FreeSignError):
    status_code = 404
    detail = "Not found"


class Unauthorized(FreeSignError):
    """Recipient token rejected.

    The message is fixed: callers must not be able to tell a wrong token
    from an expired one or from a token of another document.
    """

    status_code = 404
    detail = "Invalid signing link"

    def __init__(self, **context: Any):
        super().__init__(None, **context)


class ConflictError(FreeSignError):
    status_code = 409
    detail = "Conflict"


class PreconditionError(FreeSignError):
    status_code = 400
    detail = "Precondition failed"


class AuditLogWriteError(FreeSignError):
    """The signature was stored but its audit entry was not.

    The signature is kept; the caller retries the audit write with
    ``POST /signatures/{signature_id}/audit/retry``.
    """

    status_code = 500
    detail = "Signature saved but the audit log entry could not be written"

    def __init__(self, signature_id: int, **context: Any):
        self.signature_id = signature_id
        super().__init__(None, signature_id=signature_id, **context)


class DispatchError(FreeSignError):
    status_code = 502
    detail = "Sending the document for signature failed"
