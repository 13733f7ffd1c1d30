from voicelink.utils.telephony import (
    TelephonyClient,
    compute_signature,
    get_telephony_client,
    validate_signature,
)

__all__ = [
    "TelephonyClient",
    "compute_signature",
    "get_telephony_client",
    "validate_signature",
]
