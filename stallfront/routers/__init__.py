"""API routers, one module per route group."""
