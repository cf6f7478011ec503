"""Reflection token with fee redistribution and automatic liquidity."""
