from typing import Optional
from prometheus_client import Counter, Histogram, Gauge, Info, generate_latest
from prometheus_client.core import CollectorRegistry
import boto3
import logging

from evshare.core.environment import cloudwatch_enabled, get_cloudwatch_region, is_production

logger = logging.getLogger(__name__)

# Prometheus Registry
REGISTRY = CollectorRegistry()

# Service call metrics
service_requests_total = Counter(
    'evshare_service_requests_total',
    'Total service operation calls',
    ['status', 'service', 'method'],
    registry=REGISTRY
)

service_duration_seconds = Histogram(
    'evshare_service_duration_seconds',
    'Service operation duration in seconds',
    ['service', 'method'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0],
    registry=REGISTRY
)

system_info = Info(
    'evshare_info',
    'System information',
    registry=REGISTRY
)

# Upgrade voting metrics
proposal_transitions_total = Counter(
    'evshare_upgrade_proposal_transitions_total',
    'Upgrade proposal status transitions',
    ['status'],
    registry=REGISTRY
)

votes_cast_total = Counter(
    'evshare_upgrade_votes_total',
    'Votes cast on upgrade proposals',
    ['decision'],
    registry=REGISTRY
)

fund_debited_total = Counter(
    'evshare_fund_debited_total',
    'Total amount debited from vehicle funds for executed upgrades',
    registry=REGISTRY
)

pending_proposals_gauge = Gauge(
    'evshare_pending_proposals',
    'Pending upgrade proposals observed on the last pending-list read',
    ['vehicle_id'],
    registry=REGISTRY
)

# CloudWatch Client
cloudwatch = None
if cloudwatch_enabled():
    try:
        cloudwatch = boto3.client('cloudwatch', region_name=get_cloudwatch_region())
    except Exception as e:
        logger.warning(f"CloudWatch client initialization failed: {e}")
        cloudwatch = None

class PrometheusMetricsCollector:
    """Metrics collector with Prometheus and optional CloudWatch forwarding"""

    def __init__(self):
        system_info.info({
            'version': '1.0.0',
            'environment': 'production' if is_production() else 'development',
            'service': 'evshare-upgrades'
        })

    def record_service_call(
        self,
        service_name: str,
        method_name: str,
        duration_seconds: float,
        success: bool,
        user_id: Optional[int] = None
    ):
        """Record one service call to Prometheus and CloudWatch"""

        status = 'success' if success else 'error'

        service_requests_total.labels(
            status=status,
            service=service_name,
            method=method_name
        ).inc()

        service_duration_seconds.labels(
            service=service_name,
            method=method_name
        ).observe(duration_seconds)

        if cloudwatch:
            try:
                self._send_to_cloudwatch([
                    {
                        'MetricName': 'ServiceRequests',
                        'Value': 1,
                        'Unit': 'Count',
                        'Dimensions': [
                            {'Name': 'Status', 'Value': status},
                            {'Name': 'Service', 'Value': service_name}
                        ]
                    },
                    {
                        'MetricName': 'ServiceDuration',
                        'Value': duration_seconds * 1000,  # ms
                        'Unit': 'Milliseconds',
                        'Dimensions': [
                            {'Name': 'Service', 'Value': service_name},
                            {'Name': 'Method', 'Value': method_name}
                        ]
                    }
                ])
            except Exception as e:
                logger.error(f"Failed to send metrics to CloudWatch: {e}")

    def record_transition(self, status: str):
        proposal_transitions_total.labels(status=status).inc()

    def record_vote(self, is_approve: bool):
        votes_cast_total.labels(decision='approve' if is_approve else 'reject').inc()

    def record_fund_debit(self, amount: float):
        fund_debited_total.inc(amount)

    def update_pending_proposals(self, vehicle_id: int, count: int):
        pending_proposals_gauge.labels(vehicle_id=str(vehicle_id)).set(count)

    def _send_to_cloudwatch(self, metric_data: list):
        if not cloudwatch:
            return

        cloudwatch.put_metric_data(
            Namespace='EvShare/Upgrades',
            MetricData=metric_data
        )

    def get_prometheus_metrics(self) -> bytes:
        """Get Prometheus metrics in text format"""
        return generate_latest(REGISTRY)

# Global instance
prometheus_collector = PrometheusMetricsCollector()
