from prometheus_client import Gauge, Counter

# Define metrics
health_gauge = Gauge('ethbalance_exporter_health', 'Health status of the exporter (1 = healthy, 0 = unhealthy)')
last_successful_scrape = Gauge('ethbalance_last_successful_scrape_timestamp', 'Timestamp of the last successful scrape')
scrape_failures_total = Counter('ethbalance_scrape_failures_total', 'Total number of failed balance scrapes', ['prefix'])
rpc_health = Gauge('ethbalance_rpc_health', 'RPC endpoint health status (1 = healthy, 0 = unhealthy)', ['prefix'])
balance_ether = Gauge(
    'ethbalance_balance_ether',
    'Native token balance of an address in ether',
    ['prefix', 'name', 'label']
)
