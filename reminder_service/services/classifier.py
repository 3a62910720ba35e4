"""Send outcome classification.

Rules are applied in a fixed order and the first match wins:

1. an explicit permanence hint from the adapter
2. numeric provider status codes (SMTP-style)
3. network-level signals
4. malformed or missing recipient signals
5. anything else is treated as transient
"""

import re

from reminder_service.services.outcomes import Classification, DeliveryClass, SendOutcome

TRANSIENT_STATUS_CODES = frozenset({421, 450, 451, 452})

_NETWORK_CODE = re.compile(r"ECONNRESET|ETIMEDOUT|ECONNREFUSED|EAI_AGAIN|ENOTFOUND|Timeout", re.I)
_NETWORK_TEXT = re.compile(r"socket|connect|network", re.I)
_RECIPIENT_TEXT = re.compile(r"No recipients defined|EENVELOPE|address|recipient", re.I)


def classify(outcome: SendOutcome) -> Classification:
    """Classify one send outcome as success, transient or permanent."""
    if outcome.success:
        return Classification(DeliveryClass.SUCCESS)

    code = outcome.error_code or ""
    text = outcome.error_text or ""

    if outcome.permanent is not None:
        if outcome.permanent:
            return Classification(DeliveryClass.PERMANENT, "adapter_permanent", text or None)
        return Classification(DeliveryClass.TRANSIENT, "adapter_transient", text or None)

    status = outcome.status_code
    if status is not None:
        if status in TRANSIENT_STATUS_CODES:
            return Classification(DeliveryClass.TRANSIENT, f"smtp_{status}", text or None)
        if status >= 500:
            return Classification(DeliveryClass.PERMANENT, f"smtp_{status}", text or None)
        if status // 100 == 4:
            return Classification(DeliveryClass.TRANSIENT, f"smtp_{status}", text or None)

    if _NETWORK_CODE.search(code) or _NETWORK_TEXT.search(text):
        return Classification(DeliveryClass.TRANSIENT, code or "network", text or None)

    if _RECIPIENT_TEXT.search(text):
        return Classification(DeliveryClass.PERMANENT, code or "format", text or None)

    return Classification(DeliveryClass.TRANSIENT, code or "unknown", text or None)
