from errors import DistribError


class TransportError(DistribError):
    """UDP socket could not be opened or bound"""
    pass


class MalformedMessage(DistribError):
    """Discovery datagram did not parse"""
    pass
