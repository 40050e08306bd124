from flockcare.services import batch_service, ledger_service


__all__ = [
    "batch_service",
    "ledger_service",
]
