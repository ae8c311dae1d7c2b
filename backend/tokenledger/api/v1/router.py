"""API v1 router aggregation"""
from fastapi import APIRouter

from tokenledger.api.v1 import blocks, captable, transactions

api_router = APIRouter()

api_router.include_router(blocks.router, prefix="/blocks", tags=["Blocks"])
api_router.include_router(captable.router, prefix="/captable", tags=["Cap Table"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["Transactions"])
