"""ORM models backing the reference collaborator stores."""

from gst_kernel.models.alert import AlertModel
from gst_kernel.models.counterparty import CounterpartyRecordModel
from gst_kernel.models.filing import FilingReturnModel
from gst_kernel.models.ledger import ItcLedgerEntryModel
from gst_kernel.models.purchase import PurchaseModel
from gst_kernel.models.sales_invoice import SalesInvoiceModel

__all__ = [
    "AlertModel",
    "CounterpartyRecordModel",
    "FilingReturnModel",
    "ItcLedgerEntryModel",
    "PurchaseModel",
    "SalesInvoiceModel",
]
