"""
Workflows module - event, digest and summary orchestration.
"""
from workflows.digest import DigestGenerator, GeneratedDigest
from workflows.factory import Services, create_services_from_config
from workflows.pipeline import EventPipeline, PeriodRollupJob, RollupReport
from workflows.summary import StreamingSummaryWriter, SummaryAggregator, SummaryStatus

__all__ = [
    "DigestGenerator",
    "GeneratedDigest",
    "EventPipeline",
    "PeriodRollupJob",
    "RollupReport",
    "Services",
    "StreamingSummaryWriter",
    "SummaryAggregator",
    "SummaryStatus",
    "create_services_from_config",
]
