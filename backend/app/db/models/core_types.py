import enum

class PurchaseStatus(str, enum.Enum):
    unused = "UNUSED"
    partial = "PARTIAL"
    used = "USED"

class TaxType(str, enum.Enum):
    taxable = "TAXABLE"
    tax_exempt = "TAX_EXEMPT"

class DeliveryStatus(str, enum.Enum):
    pending = "PENDING"
    delivered = "DELIVERED"
    cancelled = "CANCELLED"

class PurchaseLinkStatus(str, enum.Enum):
    unlinked = "UNLINKED"
    linked = "LINKED"
