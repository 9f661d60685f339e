from fastapi import Request

from premium_gateway.config import Settings
from premium_gateway.paypal import PayPalClient
from premium_gateway.reconciler import Reconciler
from premium_gateway.store import UserStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> UserStore:
    return request.app.state.store


def get_provider(request: Request) -> PayPalClient:
    return request.app.state.provider


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler
