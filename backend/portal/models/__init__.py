from .tenancy import Organization, Project
from .auth import User
from .invoices import Invoice, InvoiceEvent
from .files import FileAsset, ApprovalEvent
from .shipments import Shipment, ShipmentEvent
from .security import SecurityEvent

__all__ = [
    'Organization', 'Project',
    'User',
    'Invoice', 'InvoiceEvent',
    'FileAsset', 'ApprovalEvent',
    'Shipment', 'ShipmentEvent',
    'SecurityEvent',
]
