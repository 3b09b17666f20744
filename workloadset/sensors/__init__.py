"""WorkloadSet Operator Sensor Framework.

Hook-based instrumentation of reconcile passes, child actions, revisions
and status writes.

- OperatorSensor: base class defining the lifecycle hooks
- SensorDelegate: fans events out to several sensor backends
- PrometheusMonitor: exports the events as Prometheus metrics
"""

from workloadset.sensors.base import OperatorSensor
from workloadset.sensors.delegate import SensorDelegate
from workloadset.sensors.prometheus import PrometheusMonitor
from workloadset.sensors.server import init_metrics_server

__all__ = [
    'OperatorSensor',
    'SensorDelegate',
    'PrometheusMonitor',
    'init_metrics_server',
]
