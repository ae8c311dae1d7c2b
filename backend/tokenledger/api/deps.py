"""Shared API dependencies"""
from fastapi import Request

from tokenledger.services.ledger_session import LedgerSession


def get_ledger_session(request: Request) -> LedgerSession:
    """The ledger session created at application startup"""
    return request.app.state.ledger_session
