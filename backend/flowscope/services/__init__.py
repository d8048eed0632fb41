"""Services package."""

from flowscope.services.flow_id_extractor import flow_id_extractor
from flowscope.services.ingestion_service import ingestion_service
from flowscope.services.kafka_service import kafka_service
from flowscope.services.message_normalizer import message_normalizer
from flowscope.services.storage_service import storage_service

__all__ = [
    "flow_id_extractor",
    "ingestion_service",
    "kafka_service",
    "message_normalizer",
    "storage_service",
]
