from clinic.models.account import Account
from clinic.models.record import StoredRecord
from clinic.models.blob import Blob

__all__ = ["Account", "StoredRecord", "Blob"]
