from errors import DistribError


class PushError(DistribError):
    """Uploading a document to a peer failed"""
    pass
