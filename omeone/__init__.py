"""
OmeoneChain off-chain services
"""

__version__ = "0.1.0"
