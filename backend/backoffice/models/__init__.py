from .catalog import Product, Combo, ComboItem, InventoryRecord, InventoryMovement
from .orders import Order, OrderItem, OrderStatusHistory
from .remittances import (
    RemittanceType,
    Remittance,
    RemittanceStatusHistory,
    BankTransfer,
    Recipient,
    RecipientBankAccount,
    ExchangeRate,
)
from .payments import PaymentAccount, PaymentAccountTransaction
from .activity import ActivityLog, DocumentSequence

__all__ = [
    'Product', 'Combo', 'ComboItem', 'InventoryRecord', 'InventoryMovement',
    'Order', 'OrderItem', 'OrderStatusHistory',
    'RemittanceType', 'Remittance', 'RemittanceStatusHistory', 'BankTransfer',
    'Recipient', 'RecipientBankAccount', 'ExchangeRate',
    'PaymentAccount', 'PaymentAccountTransaction',
    'ActivityLog', 'DocumentSequence',
]
