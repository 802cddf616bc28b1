"""
Upstream Provider Clients Package

This package contains one subfolder per upstream provider. Each has an
api_client.py implementing one of the contracts in core.provider_interface
on top of the shared retrying aiohttp client in providers/http.py:

- coingecko: MarketDataProvider (listings, prices, history)
- coinmarketcap: ListingProvider (coin map, latest listings)
- ecb: RatesProvider (FX reference rates)

The caching layer never depends on these modules directly; they are wired in
at startup, so tests can substitute fakes.
"""
