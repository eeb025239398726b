class DistribError(Exception):
    """Base exception for distrib errors"""
    pass
