from segment_engine.models.customer import Customer, CustomerMetric, CustomerSubscription
from segment_engine.models.customer_segment import CustomerSegment
from segment_engine.models.segment_assignment import SegmentAssignment
from segment_engine.models.segment_analytics import SegmentAnalytics

__all__ = [
    "Customer",
    "CustomerMetric",
    "CustomerSubscription",
    "CustomerSegment",
    "SegmentAssignment",
    "SegmentAnalytics",
]
