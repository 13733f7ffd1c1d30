from voicelink.services.rates import RateQuote, RateTable
from voicelink.services.ledger import BalanceAudit, LedgerService
from voicelink.services.admission import AdmissionResult, CallAdmissionService
from voicelink.services.settlement import SettlementResult, SettlementService

__all__ = [
    "RateQuote",
    "RateTable",
    "BalanceAudit",
    "LedgerService",
    "AdmissionResult",
    "CallAdmissionService",
    "SettlementResult",
    "SettlementService",
]
