"""
Service container shared by the routes, built once in the server lifespan
"""
from dataclasses import dataclass

from fastapi import Request

from config import AppConfig
from services.checkout import CheckoutService
from services.history import HistoryService
from services.notifications import NotificationDispatcher
from services.reconciler import PaymentReconciler
from services.sakurupiah import SakurupiahService
from services.transaction_store import TransactionStore
from services.warranty import WarrantyService


@dataclass
class ShopServices:
    config: AppConfig
    store: TransactionStore
    gateway: SakurupiahService
    checkout: CheckoutService
    reconciler: PaymentReconciler
    warranty: WarrantyService
    history: HistoryService
    dispatcher: NotificationDispatcher


def get_services(request: Request) -> ShopServices:
    return request.app.state.services


def get_store(request: Request) -> TransactionStore:
    return get_services(request).store


def get_checkout(request: Request) -> CheckoutService:
    return get_services(request).checkout


def get_reconciler(request: Request) -> PaymentReconciler:
    return get_services(request).reconciler


def get_warranty(request: Request) -> WarrantyService:
    return get_services(request).warranty


def get_history(request: Request) -> HistoryService:
    return get_services(request).history
