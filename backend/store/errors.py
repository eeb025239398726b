from errors import DistribError


class StoreError(DistribError):
    """Content store errors"""
    pass


class InvalidIdentifier(StoreError, ValueError):
    """Identifier does not have the YYYYMMDD-HHMMSS-hhhhhh shape"""
    pass


class EntryNotFound(StoreError, LookupError):
    """Well-formed identifier with nothing stored under it"""
    pass


class PersistenceError(StoreError):
    """Reading or writing the storage directory failed"""
    pass
