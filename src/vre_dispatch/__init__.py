"""vre_dispatch - payment webhook to locked VRE token delivery."""

__version__ = "0.1.0"
