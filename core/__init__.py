"""
Core Package

Contains the provider-agnostic core logic including:
- ProviderInterface: Abstract contracts every upstream price provider follows
- Schemas: Pydantic models for normalized data structures (coins, prices, history, FX)
- Errors: The error taxonomy shared by stores, services and routes
- Config / Logging: Settings loaded from the environment and the application logger

This layer keeps the caching layer independent of any provider's wire format.
"""
