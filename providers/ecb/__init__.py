"""
ECB Provider

FX reference rates from the European Central Bank (EUR base), rebased to USD
by the FX service.
"""

from .api_client import ECBAPIClient, parse_ecb_rates

__all__ = ["ECBAPIClient", "parse_ecb_rates"]
