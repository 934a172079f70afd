"""crmflow: transcript-to-CRM reconciliation engine.

Turns free-form conversation transcripts into deduplicated, correctly
ordered create/update operations against a CRM whose object schema is
discovered at runtime.
"""

__version__ = "0.1.0"

from crmflow.config import CrmflowConfig
from crmflow.context import EngineContext
from crmflow.extract.llm_client import LLMClient
from crmflow.extract.models import Action, ActionType, EntityCandidate, ProcessResult
from crmflow.pipeline import CRMProcessor, run_process
from crmflow.store.base import RecordStore, RecordStoreError
from crmflow.store.http import HttpRecordStore

__all__ = [
    "__version__",
    "Action",
    "ActionType",
    "CRMProcessor",
    "CrmflowConfig",
    "EngineContext",
    "EntityCandidate",
    "HttpRecordStore",
    "LLMClient",
    "ProcessResult",
    "RecordStore",
    "RecordStoreError",
    "run_process",
]
