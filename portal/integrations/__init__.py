"""External service gateways (hosted auth + object storage)."""
