"""Background workers (arq) for queue drains and maintenance sweeps."""
