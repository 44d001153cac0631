"""
Exchange Connectors Package

Each venue has its own subfolder with:
- api_client.py: REST dispatcher (signing, result policy)
- ws_client.py: WebSocket stream sessions
- __init__.py: Caller-facing market class

Only Binance USD-M Futures is implemented.
"""
