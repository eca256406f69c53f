"""
Publish CI scan reports to DefectDojo.
- DefectDojoClient: REST calls (lookups, pagination, engagement creation, import/reimport)
- RetryExecutor: the single retry policy every client call goes through
- DefectDojoPublisher: the pipeline step that sequences lookup, creation and upload
"""
from .client import DefectDojoClient, Endpoint, ScanUpload
from .config import GlobalSettings, StepSettings, effective_settings, load_global_settings, resolve
from .errors import AbortError, ApiClientError, ApiConnectionError, ApiProtocolError
from .publisher import DefectDojoPublisher
from .retry import RetryExecutor
