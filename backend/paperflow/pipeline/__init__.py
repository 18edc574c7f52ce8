"""
Pipeline Package
════════════════

  coordinator.py  PipelineCoordinator: stage handlers + recovery
  dispatch.py     EventPublisher implementations (in-process bus, Celery)
  retry.py        RetryPolicy used around the enrichment stage
"""

from paperflow.pipeline.coordinator import PipelineCoordinator
from paperflow.pipeline.dispatch import CeleryEventPublisher, EventPublisher, LocalEventBus
from paperflow.pipeline.retry import RetryPolicy

__all__ = [
    "CeleryEventPublisher",
    "EventPublisher",
    "LocalEventBus",
    "PipelineCoordinator",
    "RetryPolicy",
]
