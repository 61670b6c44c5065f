"""pindeploy - deploy static builds to IPFS through Pinata."""

__version__ = "0.1.0"
